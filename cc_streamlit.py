from __future__ import annotations
import base64
import re
from typing import List

import pandas as pd
import streamlit as st

from cc_backend import HuggingFaceImageGateway, LangChainGateway, ReferenceImage, SourceCitation
from cc_config import configure_logging
from cc_images import IMAGE_FILTERS, ImageStudio, apply_filter, download_filename
from cc_workflow import (
    STEP_LABELS,
    STEP_SEQUENCE,
    STEP_TITLES,
    Step,
    WizardController,
    WizardState,
    artifact_map,
    step_status,
)


# ═══════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════
def safe_slug(title: str) -> str:
    s = re.sub(r"[^a-z0-9 _-]+", "", title.strip().lower())
    return re.sub(r"\s+", "_", s).strip("_") or "blog"


def sources_frame(citations: List[SourceCitation]) -> pd.DataFrame:
    return pd.DataFrame([{"title": c.label, "url": c.uri} for c in citations])


def spinner_label(step: Step) -> str:
    return {
        Step.RESEARCH:       "Researching credible sources…",
        Step.OUTLINE:        "Building the outline…",
        Step.CONTENT_PART_1: "Writing part 1…",
        Step.CONTENT_PART_2: "Writing part 2…",
        Step.CONTENT_PART_3: "Writing part 3…",
        Step.COMPLETED:      "Generating the final WordPress HTML…",
    }.get(step, "Working…")


def get_wizard() -> WizardController:
    if "wizard" not in st.session_state:
        st.session_state["wizard"] = WizardController(LangChainGateway())
    return st.session_state["wizard"]


def get_studio() -> ImageStudio:
    if "studio" not in st.session_state:
        st.session_state["studio"] = ImageStudio(HuggingFaceImageGateway())
    return st.session_state["studio"]


# ── Callbacks (run before the next script pass) ────────────
def _on_reset():
    get_wizard().reset()
    st.session_state["topic_input"] = ""
    st.session_state["feedback_input"] = ""
    st.session_state["active_tool"] = "blog"


def _on_toggle_editing():
    get_wizard().toggle_editing()
    st.session_state["feedback_input"] = ""


def _on_apply_filter(suffix: str):
    st.session_state["image_prompt"] = apply_filter(st.session_state.get("image_prompt", ""), suffix)


# ═══════════════════════════════════════════════════════════
# Rendering
# ═══════════════════════════════════════════════════════════
def render_step_indicator(state: WizardState):
    if state.step == Step.TOPIC_INPUT:
        return
    steps = STEP_SEQUENCE[1:]
    cols = st.columns(len(steps))
    for col, step in zip(cols, steps):
        status = step_status(state.step, step)
        icon = {"done": "✅", "active": "🟠", "upcoming": "⚪"}[status]
        col.markdown(f"{icon} **{STEP_LABELS[step]}**" if status == "active" else f"{icon} {STEP_LABELS[step]}")
    st.progress((steps.index(state.step) + 1) / len(steps))


def render_draft(wizard: WizardController):
    state = wizard.state
    st.subheader(STEP_TITLES.get(state.step, "Current step"))
    with st.container(border=True):
        st.markdown(state.draft or "", unsafe_allow_html=True)

    if state.step == Step.RESEARCH and state.citations:
        st.markdown("#### Sources")
        st.dataframe(sources_frame(list(state.citations)), use_container_width=True, hide_index=True)

    if state.editing:
        st.markdown("#### Adjust content")
        st.caption('Describe the changes you want, e.g. "Add a section on puppy training" '
                   'or "Rephrase the second paragraph to sound more positive".')
        feedback = st.text_area("Your instructions", key="feedback_input", height=120)
        c1, c2 = st.columns(2)
        c1.button("Cancel", on_click=_on_toggle_editing)
        if c2.button("✏️ Request changes", type="primary", disabled=not (feedback or "").strip()):
            with st.spinner("Revising…"):
                wizard.submit_feedback(feedback)
            st.rerun()
    else:
        c1, c2 = st.columns(2)
        c1.button("✏️ Adjust", on_click=_on_toggle_editing)
        if c2.button("✅ Accept & continue", type="primary"):
            with st.spinner(spinner_label(STEP_SEQUENCE[STEP_SEQUENCE.index(state.step) + 1])):
                wizard.accept()
            st.rerun()


def render_completed(wizard: WizardController):
    state = wizard.state
    article = state.final_article or ""
    slug = safe_slug(state.topic)

    st.subheader("Finished blog article (preview)")
    with st.container(border=True):
        st.markdown(article, unsafe_allow_html=True)
    st.download_button("⬇️ Download article (HTML)", data=article.encode("utf-8"),
                       file_name=f"{slug}.html", mime="text/html")

    st.subheader("Complete HTML code for WordPress")
    if state.production:
        st.code(state.production, language="html")
        st.download_button("⬇️ Download WordPress HTML", data=state.production.encode("utf-8"),
                           file_name=f"{slug}_wordpress.html", mime="text/html")
    elif not state.busy:
        if st.button("🔁 Generate WordPress HTML again"):
            with st.spinner(spinner_label(Step.COMPLETED)):
                wizard.retry()
            st.rerun()

    with st.expander("Accepted steps"):
        for label, text in artifact_map(state):
            st.markdown(f"**{label}**")
            st.text(text[:1500])

    st.button("🆕 Start a new article", type="primary", on_click=_on_reset)


def render_image_panel():
    studio = get_studio()
    st.subheader("Image Generator")
    st.caption("Describe the image you want, optionally upload a reference image, and pick a style.")

    upload = st.file_uploader("Reference image (optional)", type=["png", "jpg", "jpeg", "webp"])
    if upload is not None:
        studio.set_reference(ReferenceImage.from_bytes(upload.getvalue(), upload.type))
        st.image(upload.getvalue(), caption="Preview", width=96)
    else:
        studio.set_reference(None)

    prompt = st.text_area("Image description (prompt)", key="image_prompt", height=100,
                          placeholder="e.g. 'A happy dog running across a sunny meadow'")

    st.markdown("**Style filters**")
    cols = st.columns(4)
    for i, (name, suffix) in enumerate(IMAGE_FILTERS):
        cols[i % 4].button(name, key=f"filter_{i}", on_click=_on_apply_filter, args=(suffix,))

    if st.button("🎨 Generate image", type="primary", disabled=not (prompt or "").strip()):
        with st.spinner("Generating image…"):
            studio.generate(prompt)

    state = studio.state
    if state.error:
        st.error(state.error)
    if state.image_b64:
        raw = base64.b64decode(state.image_b64)
        st.image(raw, caption=state.prompt, use_container_width=True)
        st.download_button("⬇️ Download", data=raw, file_name=download_filename(state.prompt), mime="image/png")


# ═══════════════════════════════════════════════════════════
# Streamlit UI
# ═══════════════════════════════════════════════════════════
configure_logging()
st.set_page_config(page_title="Content Cockpit", layout="wide")
st.title("Content Cockpit")
st.caption("High-quality blog and image content, step by step.")

wizard = get_wizard()
state = wizard.state
st.session_state.setdefault("active_tool", "blog")

with st.sidebar:
    st.header("Workflow")
    if state.step == Step.TOPIC_INPUT:
        st.radio("Choose your content tool", options=["blog", "image"], key="active_tool",
                 format_func=lambda t: "📝 Blog Generator" if t == "blog" else "🖼️ Image Generator")
    else:
        st.write(f"**Topic:** {state.topic}")
        st.write(f"**Step:** {STEP_LABELS.get(state.step, state.step.name)}")
        st.button("🔄 Start over", on_click=_on_reset)

render_step_indicator(state)

if state.step == Step.TOPIC_INPUT:
    if st.session_state["active_tool"] == "image":
        render_image_panel()
    else:
        st.subheader("What should the blog article be about?")
        st.caption("Enter a topic and the assistant walks you through research, outline and writing.")
        topic = st.text_input("Topic", key="topic_input",
                              placeholder="e.g. 'Reading your dog's body language correctly'")
        if st.button("🚀 Start research", type="primary", disabled=not (topic or "").strip()):
            with st.spinner(spinner_label(Step.RESEARCH)):
                wizard.start(topic)
            st.rerun()

elif state.step == Step.COMPLETED:
    render_completed(wizard)

elif state.draft is not None:
    render_draft(wizard)

elif not state.busy:
    st.info(f"No draft for **{STEP_LABELS[state.step]}** yet.")
    if st.button("🔁 Retry", type="primary"):
        with st.spinner(spinner_label(state.step)):
            wizard.retry()
        st.rerun()

if wizard.state.error:
    st.error(wizard.state.error)
