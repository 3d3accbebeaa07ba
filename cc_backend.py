from __future__ import annotations

import base64
import functools
import logging
import re
import time
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypedDict, TypeVar

import requests
from pydantic import BaseModel, ConfigDict, Field

from langgraph.graph import StateGraph, START, END
from langchain_groq import ChatGroq
from langchain_core.messages import SystemMessage, HumanMessage

from cc_config import Settings, load_settings
from cc_errors import GenerationFailure, ImageGenerationFailure

logger = logging.getLogger(__name__)

# ============================================================
# Generation Gateway
#
# Five text operations consumed by the wizard (research, outline,
# content_part, revise, production_package) plus the independent
# image operation. Every provider error leaves this module as a
# GenerationFailure / ImageGenerationFailure with a readable message.
# ============================================================


# ═══════════════════════════════════════════════════════════
# 1) Schemas
# ═══════════════════════════════════════════════════════════
class SourceCitation(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str = ""

    @property
    def label(self) -> str:
        return self.title or self.uri


class ResearchResult(BaseModel):
    text: str
    citations: List[SourceCitation] = Field(default_factory=list)


class QueryPlan(BaseModel):
    queries: List[str] = Field(
        default_factory=list,
        description="3–6 specific web search queries aimed at authoritative sources.",
    )


class ReferenceImage(BaseModel):
    """Reference image for style transfer; ``data`` is raw base64 (no data-URL prefix)."""
    model_config = ConfigDict(frozen=True)

    data: str
    mime_type: str = "image/jpeg"

    @classmethod
    def from_bytes(cls, raw: bytes, mime_type: Optional[str] = None) -> "ReferenceImage":
        return cls(data=base64.b64encode(raw).decode("ascii"), mime_type=mime_type or "image/jpeg")

    @classmethod
    def from_data_url(cls, url: str) -> "ReferenceImage":
        header, _, data = url.partition(",")
        mime = header[5:].split(";", 1)[0] if header.startswith("data:") else ""
        return cls(data=data, mime_type=mime or "image/jpeg")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class ResearchState(TypedDict):
    topic: str
    queries: List[str]
    raw: List[dict]
    citations: List[SourceCitation]
    text: str


class GenerationGateway(Protocol):
    def research(self, topic: str) -> ResearchResult: ...

    def outline(self, topic: str, research: str, citations: Sequence[SourceCitation],
                internal_links: Sequence[str]) -> str: ...

    def content_part(self, topic: str, outline: str, previous_content: str, part: int) -> str: ...

    def revise(self, content: str, feedback: str) -> str: ...

    def production_package(self, content: str) -> str: ...


class ImageGateway(Protocol):
    def generate_image(self, prompt: str, reference: Optional[ReferenceImage] = None) -> str: ...


# ═══════════════════════════════════════════════════════════
# 2) LLM
# ═══════════════════════════════════════════════════════════
@functools.lru_cache(maxsize=1)
def _chat_model() -> ChatGroq:
    settings = load_settings()
    if not settings.groq_api_key:
        raise GenerationFailure("GROQ_API_KEY is not set. Add it to your environment or .env file.")
    return ChatGroq(
        model=settings.text_model,
        temperature=settings.temperature,
        api_key=settings.groq_api_key,
    )


_FENCE_RE = re.compile(r"^```[a-zA-Z]*\s*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)


def _strip_fences(text: str) -> str:
    """Models like to wrap HTML in ```html fences; the renderer wants the bare markup."""
    m = _FENCE_RE.match(text.strip())
    return m.group("body").strip() if m else text.strip()


def _message_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, list):
        content = "".join(c.get("text", "") if isinstance(c, dict) else str(c) for c in content)
    return (content or "").strip()


def _complete(system: str, human: str) -> str:
    text = _message_text(_chat_model().invoke([
        SystemMessage(content=system),
        HumanMessage(content=human),
    ]))
    if not text:
        raise ValueError("model returned an empty response")
    return text


F = TypeVar("F", bound=Callable[..., Any])


def _operation(name: str, message: str) -> Callable[[F], F]:
    """Log the call and turn any provider error into a GenerationFailure."""
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.time()
            logger.info("📡 %s: request sent", name)
            try:
                result = fn(*args, **kwargs)
            except GenerationFailure:
                logger.exception("❌ %s failed", name)
                raise
            except Exception as exc:
                logger.exception("❌ %s failed", name)
                raise GenerationFailure(message) from exc
            logger.info("✅ %s: done in %.1fs", name, time.time() - started)
            return result
        return wrapper  # type: ignore[return-value]
    return decorator


def _brand(template: str, settings: Optional[Settings] = None) -> str:
    settings = settings or load_settings()
    return template.format(brand=settings.brand, language=settings.language)


# ═══════════════════════════════════════════════════════════
# 3) Research (query planning → Tavily → synthesis)
# ═══════════════════════════════════════════════════════════
QUERY_SYSTEM = """You plan web research for a long-form blog article.

Return 3–6 specific search queries that will surface CREDIBLE, CURRENT sources:
  - peer-reviewed studies and research articles
  - universities, research institutes, public health bodies
  - established specialist magazines

Avoid queries that would pull forums, social media or unverified blogs.
Output must strictly match the QueryPlan schema.
"""

RESEARCH_SYSTEM = """You are a research synthesizer for the {brand} blog. Write in {language}.

Credibility of sources is your top priority. Only use modern, scientifically sound
terminology and concepts; outdated or refuted theories must not appear. The focus is
on positive reinforcement and welfare-friendly approaches.

Structure:
1. Synthesis of the research: the most important findings.
2. Fit with the {brand} philosophy: how the findings support a positive approach.
3. SEO & linking: 5–7 relevant keywords and 2–3 suggested internal links.

Use clear paragraphs to separate the parts. When sources are given, cite them as [n].
"""


def _tavily_search(query: str, max_results: int = 5) -> List[dict]:
    from langchain_community.tools.tavily_search import TavilySearchResults

    tool = TavilySearchResults(max_results=max_results)
    results = tool.invoke({"query": query})
    return [{
        "title":   r.get("title") or "",
        "url":     r.get("url") or "",
        "snippet": r.get("content") or r.get("snippet") or "",
    } for r in (results or []) if isinstance(r, dict)]


def route_research(state: ResearchState) -> str:
    return "plan_queries" if load_settings().tavily_api_key else "synthesize"


def plan_queries_node(state: ResearchState) -> dict:
    settings = load_settings()
    planner = _chat_model().with_structured_output(QueryPlan)
    plan = planner.invoke([
        SystemMessage(content=QUERY_SYSTEM),
        HumanMessage(content=f"Topic: {state['topic']}"),
    ])
    queries = [q.strip() for q in plan.queries if q and q.strip()][: settings.research_max_queries]
    logger.info("🔎 Research: %d queries planned", len(queries))
    return {"queries": queries or [state["topic"]]}


def search_node(state: ResearchState) -> dict:
    settings = load_settings()
    raw: List[dict] = []
    for q in state.get("queries") or []:
        try:
            raw.extend(_tavily_search(q, max_results=settings.research_max_results))
        except Exception as exc:
            logger.warning("⚠️  Search failed for %r: %s", q, exc)

    dedup: dict = {}
    for r in raw:
        if r.get("url") and r["url"] not in dedup:
            dedup[r["url"]] = r
    citations = [SourceCitation(uri=r["url"], title=r.get("title") or "") for r in dedup.values()]
    logger.info("🔎 Research: %d results → %d unique sources", len(raw), len(citations))
    return {"raw": list(dedup.values()), "citations": citations}


def synthesize_node(state: ResearchState) -> dict:
    raw = state.get("raw") or []
    if raw:
        sources_text = "\n".join(
            f"[{i+1}] {r.get('title') or r['url']} | {r['url']}\n    {(r.get('snippet') or '')[:600]}"
            for i, r in enumerate(raw)
        )
    else:
        sources_text = "No web results available; rely on established scientific knowledge."

    text = _complete(
        _brand(RESEARCH_SYSTEM),
        f"Topic: {state['topic']}\n\nSources:\n{sources_text}\n",
    )
    return {"text": text}


def build_research_graph():
    g = StateGraph(ResearchState)
    g.add_node("plan_queries", plan_queries_node)
    g.add_node("search",       search_node)
    g.add_node("synthesize",   synthesize_node)

    g.add_conditional_edges(START, route_research, {"plan_queries": "plan_queries", "synthesize": "synthesize"})
    g.add_edge("plan_queries", "search")
    g.add_edge("search",       "synthesize")
    g.add_edge("synthesize",   END)
    return g.compile()


research_graph = build_research_graph()


# ═══════════════════════════════════════════════════════════
# 4) Outline, content parts, revision, production package
# ═══════════════════════════════════════════════════════════
OUTLINE_SYSTEM = """You are a senior editor for the {brand} blog. Write in {language}.

From the research provided, create a DETAILED outline for a blog article.

Requirements:
1. SEO-optimised structure: clear title (H1), then logical sections (H2, H3).
2. Depth: every section carries concrete, actionable information.
3. {brand} philosophy: positive, science-based, welfare-friendly.
4. Readability: short paragraphs and clear calls to action.

Expected outline:
- SEO title (H1)
- Introduction (H2)
- 3–4 main sections (H2/H3)
- Conclusion (H2)
- Meta information (SEO title, description, keywords)
Weave the internal links in where they fit.
"""

CONTENT_SYSTEM = """You are a senior writer for the {brand} blog. Write in {language}.

Write ONLY the next part of the article, following the outline and continuing
seamlessly from the content written so far. Never repeat what is already written.

- Keep the positive, scientific tone and the {brand} philosophy
- Clear, understandable language; SEO keywords woven in naturally
- Length: about 300–500 words

Formatting (HTML fragment, no <html>/<body>):
- <h2>/<h3> for headings, <p> for paragraphs
- <strong> for key terms, <ul>/<li> for lists where useful

OUTPUT: ONLY the HTML of this part. No preamble.
"""

REVISE_SYSTEM = """You revise blog content for the {brand} blog. Write in {language}.

- Apply ALL of the feedback
- Keep the existing HTML structure
- Improve readability and clarity
- Strengthen the {brand} philosophy and SEO
- Keep the positive, scientific tone

OUTPUT: ONLY the full revised content. No preamble.
"""

PRODUCTION_SYSTEM = """You turn finished article HTML into production code for WordPress.

Requirements:
1. No <script> tags: only HTML and CSS.
2. Exactly one <style> tag inside the block.
3. Hardened specificity: scope rules with
   :is(.entry-content,.wp-block-post-content,.post-content,.wp-block-group,.prose,body)
   and use !important sparingly on links/buttons.
4. Icons as inline markup (<span class="paw">🐾</span>), not ::before.
5. Full bleed on desktop: width:100vw with margin-left/right: calc(50% - 50vw).
6. Readable inner container .article-inner with max-width:1200px and padding.
7. Animation without JS: a fadeUp keyframe with staggered animation-delay on .fade-in-element.

Result: ONE block for the "Custom HTML" widget, robust against theme collisions.
OUTPUT: ONLY the code.
"""


def format_source_list(citations: Sequence[SourceCitation]) -> str:
    return "\n".join(f"- {c.title}: {c.uri}" for c in citations if c.uri)


class LangChainGateway:
    """Text operations backed by the LangChain chat model and the research graph."""

    @_operation("research", "Web research failed. Please try again later.")
    def research(self, topic: str) -> ResearchResult:
        out = research_graph.invoke({
            "topic": topic, "queries": [], "raw": [], "citations": [], "text": "",
        })
        return ResearchResult(text=out["text"], citations=out.get("citations") or [])

    @_operation("outline", "Creating the outline failed. Please try again later.")
    def outline(self, topic: str, research: str, citations: Sequence[SourceCitation],
                internal_links: Sequence[str]) -> str:
        return _complete(_brand(OUTLINE_SYSTEM), (
            f"Topic: {topic}\n\n"
            f"Research results:\n{research}\n\n"
            f"Sources:\n{format_source_list(citations)}\n\n"
            f"Internal links:\n{', '.join(internal_links)}\n"
        ))

    @_operation("content_part", "Writing the article part failed. Please try again later.")
    def content_part(self, topic: str, outline: str, previous_content: str, part: int) -> str:
        return _strip_fences(_complete(_brand(CONTENT_SYSTEM), (
            f"Write part {part} of the blog article on \"{topic}\".\n\n"
            f"Outline:\n{outline}\n\n"
            f"Content written so far:\n{previous_content}\n"
        )))

    @_operation("revise", "Revising the content failed. Please try again later.")
    def revise(self, content: str, feedback: str) -> str:
        return _strip_fences(_complete(_brand(REVISE_SYSTEM), (
            f"Current content:\n{content}\n\n"
            f"Feedback:\n{feedback}\n"
        )))

    @_operation("production_package", "Generating the WordPress HTML failed. Please try again later.")
    def production_package(self, content: str) -> str:
        return _strip_fences(_complete(PRODUCTION_SYSTEM, f"Content:\n{content}\n"))


# ═══════════════════════════════════════════════════════════
# 5) Images (HuggingFace Inference API)
# ═══════════════════════════════════════════════════════════
HF_ROUTER_URL = "https://router.huggingface.co/hf-inference/models"
NEGATIVE_PROMPT = "blurry, low quality, watermark, text overlay, distorted, ugly"


def _post_image(url: str, headers: dict, payload: dict) -> requests.Response:
    return requests.post(url, headers=headers, json=payload, timeout=120)


def _generate_image_hf(prompt: str, reference: Optional[ReferenceImage], settings: Settings) -> bytes:
    """
    Text-to-image, or image-to-image when a reference image is given.

    Setup:
      1. https://huggingface.co/settings/tokens → New token → Read access
      2. Add to .env: HF_TOKEN=hf_...
    """
    if not settings.hf_token:
        raise ImageGenerationFailure(
            "HF_TOKEN missing. Get a free token at https://huggingface.co/settings/tokens"
        )

    if reference is not None:
        model_id = settings.image_edit_model
        payload = {
            "inputs": reference.data,
            "parameters": {
                "prompt": f"Create an image in the style of the reference image showing: {prompt}",
                "negative_prompt": NEGATIVE_PROMPT,
            },
        }
    else:
        model_id = settings.image_model
        payload = {
            "inputs": f"Create a professional image on the topic: {prompt}",
            "parameters": {
                "negative_prompt": NEGATIVE_PROMPT,
                "num_inference_steps": 25,
                "guidance_scale": 7.5,
            },
        }

    headers = {
        "Authorization": f"Bearer {settings.hf_token}",
        "Content-Type": "application/json",
    }
    url = f"{HF_ROUTER_URL}/{model_id}"
    logger.info("🎨 Image: %s", model_id)

    last_error = None
    for attempt in range(2):
        try:
            resp = _post_image(url, headers, payload)
        except requests.exceptions.Timeout as exc:
            raise ImageGenerationFailure("Image generation timed out after 120s.") from exc
        except requests.exceptions.RequestException as exc:
            raise ImageGenerationFailure(f"Image service unreachable: {exc}") from exc

        ct = resp.headers.get("Content-Type", "")
        logger.info("   HTTP %s | Content-Type: %s", resp.status_code, ct)

        if resp.status_code == 200:
            if "image" in ct:
                logger.info("   ✅ Got image (%d KB)", len(resp.content) // 1024)
                return resp.content
            last_error = f"200 but Content-Type={ct}: {resp.text[:200]}"
            break

        if resp.status_code == 503 and attempt == 0:
            wait = min(int(float(resp.headers.get("X-WaitFor", "20"))), 40)
            logger.info("   ⏳ Model loading, waiting %ss...", wait)
            time.sleep(wait)
            continue

        if resp.status_code == 401:
            raise ImageGenerationFailure("HF_TOKEN invalid/expired.")
        if resp.status_code == 429:
            last_error = "Rate-limited (free tier quota)"
        elif resp.status_code == 503:
            last_error = "Model still loading"
        else:
            last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
        break

    raise ImageGenerationFailure(f"Image generation failed. Last error: {last_error}")


class HuggingFaceImageGateway:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings

    def generate_image(self, prompt: str, reference: Optional[ReferenceImage] = None) -> str:
        """Return the generated image as base64 (PNG/JPEG bytes, no data-URL prefix)."""
        settings = self._settings or load_settings()
        try:
            raw = _generate_image_hf(prompt, reference, settings)
        except ImageGenerationFailure:
            logger.exception("❌ Image generation failed")
            raise
        except Exception as exc:
            logger.exception("❌ Image generation failed")
            raise ImageGenerationFailure("Image generation failed. Please try again later.") from exc
        return base64.b64encode(raw).decode("ascii")
