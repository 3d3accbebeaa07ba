from __future__ import annotations

import logging
import uuid
from enum import IntEnum
from typing import Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from cc_backend import GenerationGateway, SourceCitation
from cc_config import load_settings
from cc_errors import (
    ContentCockpitError,
    GenerationFailure,
    InputValidationError,
    InvalidTransitionError,
    WorkflowBusyError,
)

logger = logging.getLogger(__name__)

# ============================================================
# Article wizard workflow
#
# Transitions are pure: (state, intent) -> (new state, request | None).
# The request is a command for the gateway; WizardController executes it
# and folds the outcome back in with complete() / fail().
# ============================================================


# ═══════════════════════════════════════════════════════════
# 1) Steps
# ═══════════════════════════════════════════════════════════
class Step(IntEnum):
    TOPIC_INPUT = 0
    RESEARCH = 1
    OUTLINE = 2
    CONTENT_PART_1 = 3
    CONTENT_PART_2 = 4
    CONTENT_PART_3 = 5
    COMPLETED = 6


STEP_SEQUENCE: Tuple[Step, ...] = tuple(sorted(Step))
DRAFT_STEPS: Tuple[Step, ...] = STEP_SEQUENCE[1:-1]
CONTENT_PARTS: Dict[Step, int] = {
    Step.CONTENT_PART_1: 1,
    Step.CONTENT_PART_2: 2,
    Step.CONTENT_PART_3: 3,
}

STEP_LABELS: Dict[Step, str] = {
    Step.RESEARCH:       "Research",
    Step.OUTLINE:        "Outline & SEO",
    Step.CONTENT_PART_1: "Part 1",
    Step.CONTENT_PART_2: "Part 2",
    Step.CONTENT_PART_3: "Part 3",
    Step.COMPLETED:      "Done",
}

STEP_TITLES: Dict[Step, str] = {
    Step.RESEARCH:       "Step 1: Web research",
    Step.OUTLINE:        "Step 2: Outline & SEO",
    Step.CONTENT_PART_1: "Step 3: Article part 1 (introduction)",
    Step.CONTENT_PART_2: "Step 4: Article part 2 (main body)",
    Step.CONTENT_PART_3: "Step 5: Article part 3 (conclusion)",
}


def next_step(step: Step) -> Step:
    idx = STEP_SEQUENCE.index(step)
    if idx + 1 >= len(STEP_SEQUENCE):
        raise InvalidTransitionError("The workflow is already complete.")
    return STEP_SEQUENCE[idx + 1]


def is_terminal(step: Step) -> bool:
    return step == STEP_SEQUENCE[-1]


def produces_draft(step: Step) -> bool:
    return step in DRAFT_STEPS


def step_status(current: Step, step: Step) -> Literal["done", "active", "upcoming"]:
    """Position of ``step`` relative to ``current`` for the step indicator."""
    if step < current:
        return "done"
    return "active" if step == current else "upcoming"


# ═══════════════════════════════════════════════════════════
# 2) Commands (generation requests) and results
# ═══════════════════════════════════════════════════════════
class _Request(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    run_id: int
    step: Step


class ResearchRequest(_Request):
    kind: Literal["research"] = "research"
    topic: str


class OutlineRequest(_Request):
    kind: Literal["outline"] = "outline"
    topic: str
    research: str
    citations: Tuple[SourceCitation, ...] = ()
    internal_links: Tuple[str, ...] = ()


class ContentPartRequest(_Request):
    kind: Literal["content_part"] = "content_part"
    topic: str
    outline: str
    previous_content: str = ""
    part: int


class RevisionRequest(_Request):
    kind: Literal["revise"] = "revise"
    content: str
    feedback: str


class ProductionRequest(_Request):
    kind: Literal["production"] = "production"
    content: str


GenerationRequest = Union[ResearchRequest, OutlineRequest, ContentPartRequest, RevisionRequest, ProductionRequest]


class GenerationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    citations: Tuple[SourceCitation, ...] = ()


# ═══════════════════════════════════════════════════════════
# 3) State
# ═══════════════════════════════════════════════════════════
class WizardState(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: int = 0
    internal_links: Tuple[str, ...] = ()

    topic: str = ""
    step: Step = Step.TOPIC_INPUT
    artifacts: Dict[Step, str] = Field(default_factory=dict)
    citations: Tuple[SourceCitation, ...] = ()

    # Revision loop: draft under review, VIEWING (editing=False) or EDITING
    draft: Optional[str] = None
    editing: bool = False
    feedback: str = ""

    production: Optional[str] = None
    production_attempted: bool = False

    pending: Optional[GenerationRequest] = None
    error: Optional[str] = None

    @property
    def busy(self) -> bool:
        return self.pending is not None

    @property
    def final_article(self) -> Optional[str]:
        if self.step != Step.COMPLETED:
            return None
        parts = [self.artifacts.get(s) for s in CONTENT_PARTS]
        if any(p is None for p in parts):
            return None
        return "".join(parts)  # type: ignore[arg-type]


Transition = Tuple[WizardState, Optional[GenerationRequest]]


def initial_state(internal_links: Optional[Sequence[str]] = None) -> WizardState:
    links = load_settings().internal_links if internal_links is None else internal_links
    return WizardState(internal_links=tuple(links))


# ═══════════════════════════════════════════════════════════
# 4) Transitions
# ═══════════════════════════════════════════════════════════
def _ensure_idle(state: WizardState) -> None:
    if state.pending is not None:
        raise WorkflowBusyError("A generation is already running. Please wait for it to finish.")


def request_for_step(state: WizardState, step: Step) -> GenerationRequest:
    """Build the request issued on entering ``step``, from the accepted artifacts."""
    art = state.artifacts
    common = {"run_id": state.run_id, "step": step}

    if step == Step.RESEARCH:
        return ResearchRequest(topic=state.topic, **common)
    if step == Step.OUTLINE:
        return OutlineRequest(
            topic=state.topic,
            research=art[Step.RESEARCH],
            citations=state.citations,
            internal_links=state.internal_links,
            **common,
        )
    if step in CONTENT_PARTS:
        part = CONTENT_PARTS[step]
        previous = "".join(art[s] for s in CONTENT_PARTS if CONTENT_PARTS[s] < part)
        return ContentPartRequest(
            topic=state.topic,
            outline=art[Step.OUTLINE],
            previous_content=previous,
            part=part,
            **common,
        )
    if step == Step.COMPLETED:
        article = state.final_article
        if article is None:
            raise InvalidTransitionError("The article is not complete yet.")
        return ProductionRequest(content=article, **common)
    raise InvalidTransitionError(f"No generation is issued for step {step.name}.")


def _dispatch(state: WizardState, step: Step) -> Transition:
    request = request_for_step(state, step)
    update: dict = {"pending": request, "error": None}
    if isinstance(request, ProductionRequest):
        update["production_attempted"] = True
    return state.model_copy(update=update), request


def start(state: WizardState, topic: str) -> Transition:
    _ensure_idle(state)
    if state.step != Step.TOPIC_INPUT:
        raise InvalidTransitionError("The workflow has already started. Reset to begin a new article.")
    topic = (topic or "").strip()
    if not topic:
        raise InputValidationError("Please enter a topic for the blog article.")
    started = state.model_copy(update={"topic": topic, "step": Step.RESEARCH, "error": None})
    return _dispatch(started, Step.RESEARCH)


def accept(state: WizardState) -> Transition:
    _ensure_idle(state)
    if not produces_draft(state.step):
        raise InvalidTransitionError("There is nothing to accept at this step.")
    if state.draft is None:
        raise InvalidTransitionError("There is no draft to accept yet.")
    if state.step in state.artifacts:
        raise InvalidTransitionError(f"{STEP_LABELS[state.step]} has already been accepted.")

    new_step = next_step(state.step)
    advanced = state.model_copy(update={
        "artifacts": {**state.artifacts, state.step: state.draft},
        "step": new_step,
        "draft": None,
        "editing": False,
        "feedback": "",
        "error": None,
    })
    if is_terminal(new_step):
        # COMPLETED entry: package the article once, only if nothing is cached
        if advanced.production is not None or advanced.production_attempted:
            return advanced, None
    return _dispatch(advanced, new_step)


def retry(state: WizardState) -> Transition:
    """Re-issue the current step's generation after a failure."""
    _ensure_idle(state)
    if produces_draft(state.step):
        if state.draft is not None:
            raise InvalidTransitionError("A draft is already available. Accept it or request changes.")
        return _dispatch(state, state.step)
    if is_terminal(state.step):
        if state.production is not None:
            raise InvalidTransitionError("The production HTML has already been generated.")
        return _dispatch(state, state.step)
    raise InvalidTransitionError("Enter a topic and start the workflow first.")


def reset(state: WizardState) -> Transition:
    # run_id changes so any late result from the discarded run is ignored
    return WizardState(run_id=state.run_id + 1, internal_links=state.internal_links), None


def toggle_editing(state: WizardState) -> Transition:
    _ensure_idle(state)
    if state.draft is None or not produces_draft(state.step):
        raise InvalidTransitionError("There is no draft to edit.")
    if state.editing:
        return state.model_copy(update={"editing": False, "feedback": ""}), None
    return state.model_copy(update={"editing": True, "error": None}), None


def submit_feedback(state: WizardState, feedback: str) -> Transition:
    _ensure_idle(state)
    if not state.editing or state.draft is None:
        raise InvalidTransitionError("Open the editor before requesting changes.")
    if not (feedback or "").strip():
        raise InputValidationError("Please describe the changes you want.")
    request = RevisionRequest(
        run_id=state.run_id,
        step=state.step,
        content=state.draft,
        feedback=feedback.strip(),
    )
    return state.model_copy(update={"feedback": feedback, "pending": request, "error": None}), request


# ═══════════════════════════════════════════════════════════
# 5) Folding results back in
# ═══════════════════════════════════════════════════════════
def _is_pending(state: WizardState, request: GenerationRequest) -> bool:
    return state.pending is not None and state.pending.request_id == request.request_id


def complete(state: WizardState, request: GenerationRequest, result: GenerationResult) -> WizardState:
    if not _is_pending(state, request):
        logger.info("♻️  Discarding stale %s result", request.kind)
        return state

    update: dict = {"pending": None, "error": None}
    if isinstance(request, ProductionRequest):
        update["production"] = result.text
    elif isinstance(request, RevisionRequest):
        update.update(draft=result.text, editing=False, feedback="")
    else:
        update["draft"] = result.text
        if isinstance(request, ResearchRequest):
            update["citations"] = tuple(result.citations)
    return state.model_copy(update=update)


def fail(state: WizardState, request: GenerationRequest, message: str) -> WizardState:
    if not _is_pending(state, request):
        logger.info("♻️  Discarding stale %s failure", request.kind)
        return state
    if isinstance(request, ProductionRequest):
        message = f"The final article package could not be generated: {message}"
    return state.model_copy(update={"pending": None, "error": message})


def execute(gateway: GenerationGateway, request: GenerationRequest) -> GenerationResult:
    """Run one request against the gateway. Exactly one gateway call per request."""
    citations: Tuple[SourceCitation, ...] = ()
    if isinstance(request, ResearchRequest):
        research = gateway.research(request.topic)
        text, citations = research.text, tuple(research.citations)
    elif isinstance(request, OutlineRequest):
        text = gateway.outline(
            request.topic, request.research, list(request.citations), list(request.internal_links),
        )
    elif isinstance(request, ContentPartRequest):
        text = gateway.content_part(request.topic, request.outline, request.previous_content, request.part)
    elif isinstance(request, RevisionRequest):
        text = gateway.revise(request.content, request.feedback)
    elif isinstance(request, ProductionRequest):
        text = gateway.production_package(request.content)
    else:
        raise TypeError(f"Unknown request: {request!r}")

    if not (text or "").strip():
        raise GenerationFailure("The model returned an empty response. Please try again.")
    return GenerationResult(text=text, citations=citations)


# ═══════════════════════════════════════════════════════════
# 6) Driver
# ═══════════════════════════════════════════════════════════
class WizardController:
    """Owns the wizard state; the UI reads ``state`` and calls the intent methods."""

    def __init__(self, gateway: GenerationGateway, state: Optional[WizardState] = None,
                 internal_links: Optional[Sequence[str]] = None) -> None:
        self._gateway = gateway
        self._state = state if state is not None else initial_state(internal_links)

    @property
    def state(self) -> WizardState:
        return self._state

    def start(self, topic: str) -> WizardState:
        return self._handle(start, topic)

    def accept(self) -> WizardState:
        return self._handle(accept)

    def retry(self) -> WizardState:
        return self._handle(retry)

    def reset(self) -> WizardState:
        return self._handle(reset)

    def toggle_editing(self) -> WizardState:
        return self._handle(toggle_editing)

    def submit_feedback(self, feedback: str) -> WizardState:
        return self._handle(submit_feedback, feedback)

    def _handle(self, transition: Callable[..., Transition], *args: object) -> WizardState:
        try:
            state, request = transition(self._state, *args)
        except ContentCockpitError as exc:
            logger.info("🚫 %s rejected: %s", transition.__name__, exc)
            self._state = self._state.model_copy(update={"error": str(exc)})
            return self._state

        self._state = state
        if request is not None:
            self._run(request)
        return self._state

    def _run(self, request: GenerationRequest) -> None:
        logger.info("➡️  %s for %s", request.kind, request.step.name)
        try:
            result = execute(self._gateway, request)
        except ContentCockpitError as exc:
            logger.warning("❌ %s failed: %s", request.kind, exc)
            self._state = fail(self._state, request, str(exc))
            return
        except Exception:
            logger.exception("❌ %s failed unexpectedly", request.kind)
            self._state = fail(self._state, request, "An unexpected error occurred. Please try again.")
            return
        self._state = complete(self._state, request, result)
        logger.info("✅ %s ready (%s)", request.kind, self._state.step.name)


def artifact_map(state: WizardState) -> List[Tuple[str, str]]:
    """Accepted artifacts in step order, labelled for display/export."""
    return [(STEP_LABELS[s], state.artifacts[s]) for s in STEP_SEQUENCE if s in state.artifacts]
