import pytest

from cc_backend import SourceCitation
from cc_errors import InputValidationError, InvalidTransitionError, WorkflowBusyError
from cc_workflow import (
    ContentPartRequest,
    GenerationResult,
    OutlineRequest,
    ProductionRequest,
    ResearchRequest,
    RevisionRequest,
    STEP_SEQUENCE,
    Step,
    WizardState,
    accept,
    complete,
    fail,
    is_terminal,
    next_step,
    reset,
    retry,
    start,
    step_status,
    submit_feedback,
    toggle_editing,
)

LINKS = ("https://example.org/", "https://example.org/blog/")


def fresh():
    return WizardState(internal_links=LINKS)


def reviewing(step, draft="draft", **kw):
    """State sitting at ``step`` with a draft under review."""
    artifacts = {s: s.name.lower() for s in STEP_SEQUENCE if Step.TOPIC_INPUT < s < step}
    return WizardState(internal_links=LINKS, topic="Hundetraining", step=step,
                       artifacts=artifacts, draft=draft, **kw)


def test_step_sequence_is_linear():
    assert STEP_SEQUENCE[0] == Step.TOPIC_INPUT
    assert STEP_SEQUENCE[-1] == Step.COMPLETED
    step = Step.TOPIC_INPUT
    visited = [step]
    while not is_terminal(step):
        step = next_step(step)
        visited.append(step)
    assert visited == list(STEP_SEQUENCE)
    with pytest.raises(InvalidTransitionError):
        next_step(Step.COMPLETED)


def test_step_status():
    assert step_status(Step.OUTLINE, Step.RESEARCH) == "done"
    assert step_status(Step.OUTLINE, Step.OUTLINE) == "active"
    assert step_status(Step.OUTLINE, Step.CONTENT_PART_1) == "upcoming"


@pytest.mark.parametrize("topic", ["", "   ", "\n\t"])
def test_start_rejects_blank_topic(topic):
    with pytest.raises(InputValidationError):
        start(fresh(), topic)


def test_start_moves_to_research_and_emits_request():
    state, request = start(fresh(), "  Hundetraining ")
    assert state.step == Step.RESEARCH
    assert state.topic == "Hundetraining"
    assert isinstance(request, ResearchRequest)
    assert request.topic == "Hundetraining"
    assert state.pending == request
    assert state.draft is None


def test_start_only_from_topic_input():
    with pytest.raises(InvalidTransitionError):
        start(reviewing(Step.OUTLINE), "again")


def test_accept_stores_artifact_and_dispatches_outline():
    cites = (SourceCitation(uri="http://a", title="A"),)
    state, request = accept(reviewing(Step.RESEARCH, draft="R", citations=cites))
    assert state.step == Step.OUTLINE
    assert state.artifacts == {Step.RESEARCH: "R"}
    assert state.draft is None
    assert isinstance(request, OutlineRequest)
    assert request.research == "R"
    assert request.citations == cites
    assert request.internal_links == LINKS


def test_content_part_requests_carry_prior_content():
    state, request = accept(reviewing(Step.OUTLINE, draft="O"))
    assert isinstance(request, ContentPartRequest)
    assert (request.part, request.outline, request.previous_content) == (1, "O", "")

    state = WizardState(internal_links=LINKS, topic="t", step=Step.CONTENT_PART_1, draft="A",
                        artifacts={Step.RESEARCH: "R", Step.OUTLINE: "O"})
    state, request = accept(state)
    assert (request.part, request.previous_content) == (2, "A")

    state = complete(state, request, GenerationResult(text="B"))
    state, request = accept(state)
    assert (request.part, request.previous_content) == (3, "AB")


def test_accept_requires_draft():
    with pytest.raises(InvalidTransitionError):
        accept(reviewing(Step.OUTLINE, draft=None))
    with pytest.raises(InvalidTransitionError):
        accept(fresh())


def test_accept_into_completed_requests_production_once():
    state, request = accept(reviewing(Step.CONTENT_PART_3, draft="C"))
    assert state.step == Step.COMPLETED
    assert isinstance(request, ProductionRequest)
    assert request.content == "content_part_1content_part_2C"
    assert state.production_attempted


def test_final_article_is_plain_concatenation():
    parts = {Step.CONTENT_PART_1: "A", Step.CONTENT_PART_2: "B", Step.CONTENT_PART_3: "C"}
    assert WizardState(step=Step.COMPLETED, artifacts=parts).final_article == "ABC"
    assert WizardState(step=Step.CONTENT_PART_3, artifacts=parts).final_article is None
    missing = {Step.CONTENT_PART_1: "A", Step.CONTENT_PART_2: "B"}
    assert WizardState(step=Step.COMPLETED, artifacts=missing).final_article is None


def test_every_accept_clears_draft_and_sets_exactly_one_artifact():
    state, request = start(fresh(), "topic")
    passed = []
    while not is_terminal(state.step):
        state = complete(state, request, GenerationResult(text=f"out-{state.step.name}"))
        passed.append(state.step)
        state, request = accept(state)
        assert state.draft is None
        assert list(state.artifacts) == passed
        assert state.artifacts[passed[-1]] == f"out-{passed[-1].name}"
    assert isinstance(request, ProductionRequest)


def test_pending_request_blocks_intents():
    state, _ = start(fresh(), "topic")
    for transition in (accept, retry, toggle_editing):
        with pytest.raises(WorkflowBusyError):
            transition(state)
    with pytest.raises(WorkflowBusyError):
        submit_feedback(state, "x")


def test_failure_keeps_step_and_allows_retry():
    state, request = start(fresh(), "topic")
    state = fail(state, request, "boom")
    assert state.step == Step.RESEARCH
    assert state.draft is None and not state.artifacts
    assert state.error == "boom"
    assert not state.busy

    state, again = retry(state)
    assert isinstance(again, ResearchRequest)
    assert again.request_id != request.request_id


def test_retry_rejected_while_draft_exists():
    with pytest.raises(InvalidTransitionError):
        retry(reviewing(Step.OUTLINE))
    with pytest.raises(InvalidTransitionError):
        retry(fresh())


def test_production_failure_is_prefixed():
    state, request = accept(reviewing(Step.CONTENT_PART_3, draft="C"))
    state = fail(state, request, "quota")
    assert state.error == "The final article package could not be generated: quota"
    assert state.production is None


def test_stale_result_after_reset_is_discarded():
    state, request = start(fresh(), "topic")
    state, none = reset(state)
    assert none is None
    after = complete(state, request, GenerationResult(text="late"))
    assert after == state
    assert after.draft is None and after.step == Step.TOPIC_INPUT


def test_reset_clears_everything_but_links():
    busy = reviewing(Step.COMPLETED, draft=None, production="<html/>", production_attempted=True,
                     citations=(SourceCitation(uri="http://a"),), error="x")
    state, _ = reset(busy)
    assert state.step == Step.TOPIC_INPUT
    assert state.topic == ""
    assert state.artifacts == {}
    assert state.citations == ()
    assert state.draft is None and state.production is None
    assert state.error is None
    assert state.internal_links == LINKS
    assert state.run_id == busy.run_id + 1


def test_toggle_editing_discards_only_feedback():
    state, _ = toggle_editing(reviewing(Step.OUTLINE, draft="D"))
    assert state.editing
    state = state.model_copy(update={"feedback": "typed"})
    state, _ = toggle_editing(state)
    assert not state.editing
    assert state.feedback == ""
    assert state.draft == "D"


def test_toggle_editing_needs_draft():
    with pytest.raises(InvalidTransitionError):
        toggle_editing(reviewing(Step.OUTLINE, draft=None))


def test_submit_feedback_validation():
    viewing = reviewing(Step.OUTLINE, draft="D")
    with pytest.raises(InvalidTransitionError):
        submit_feedback(viewing, "shorter")

    editing, _ = toggle_editing(viewing)
    with pytest.raises(InputValidationError):
        submit_feedback(editing, "   ")

    state, request = submit_feedback(editing, "shorter please")
    assert isinstance(request, RevisionRequest)
    assert (request.content, request.feedback) == ("D", "shorter please")
    assert state.editing and state.feedback == "shorter please"


def test_revision_result_replaces_draft_and_returns_to_viewing():
    editing, _ = toggle_editing(reviewing(Step.OUTLINE, draft="D"))
    state, request = submit_feedback(editing, "more")
    state = complete(state, request, GenerationResult(text="D2"))
    assert state.draft == "D2"
    assert not state.editing
    assert state.feedback == ""
    assert Step.OUTLINE not in state.artifacts


def test_revision_failure_stays_in_editing():
    editing, _ = toggle_editing(reviewing(Step.OUTLINE, draft="D"))
    state, request = submit_feedback(editing, "more")
    state = fail(state, request, "nope")
    assert state.editing
    assert state.feedback == "more"
    assert state.draft == "D"
    assert state.error == "nope"
