from __future__ import annotations

import logging
import re
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict

from cc_backend import ImageGateway, ReferenceImage
from cc_errors import ContentCockpitError, ImageGenerationFailure, InputValidationError, WorkflowBusyError

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════
# Style filters (name → prompt suffix)
# ═══════════════════════════════════════════════════════════
IMAGE_FILTERS: Tuple[Tuple[str, str], ...] = (
    ("Photorealistic", ", photorealistic, 8k, ultra-detailed, professional photography"),
    ("Cinematic",      ", cinematic look, film grain, dramatic lighting"),
    ("Watercolor",     ", in the style of a watercolor painting, soft edges, vivid colors"),
    ("Vintage",        ", in the style of a vintage photo, sepia tint, slightly soft focus"),
    ("Neon punk",      ", cyberpunk style, neon lights, futuristic"),
    ("Minimalist",     ", minimalist, clean line art, simple background"),
    ("Fantasy",        ", fantasy art, epic, mythical, glowing details"),
    ("Pop art",        ", pop art style, bold colors, comic look"),
    ("Isometric",      ", isometric 3D illustration, clean, vector graphic"),
    ("Abstract",       ", abstract art, geometric shapes, bold patterns"),
    ("Pencil sketch",  ", high-quality minimalist pencil drawing, clean lines, few subjects, "
                       "with subtle pop-art effects in the background"),
)


def apply_filter(prompt: str, suffix: str) -> str:
    """Append a style suffix unless the prompt already ends with it."""
    return prompt if prompt.endswith(suffix) else prompt + suffix


def download_filename(prompt: str) -> str:
    stem = re.sub(r"\s", "_", prompt[:20])
    return f"{stem or 'generated_image'}.png"


class ImageStudioState(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt: str = ""
    reference: Optional[ReferenceImage] = None
    image_b64: Optional[str] = None
    busy: bool = False
    error: Optional[str] = None


class ImageStudio:
    """Image panel flow; independent of the article wizard."""

    def __init__(self, gateway: ImageGateway) -> None:
        self._gateway = gateway
        self._state = ImageStudioState()

    @property
    def state(self) -> ImageStudioState:
        return self._state

    def set_prompt(self, prompt: str) -> None:
        self._state = self._state.model_copy(update={"prompt": prompt})

    def apply_filter(self, suffix: str) -> None:
        self.set_prompt(apply_filter(self._state.prompt, suffix))

    def set_reference(self, reference: Optional[ReferenceImage]) -> None:
        self._state = self._state.model_copy(update={"reference": reference})

    def generate(self, prompt: Optional[str] = None) -> ImageStudioState:
        if prompt is not None:
            self.set_prompt(prompt)
        state = self._state
        try:
            if state.busy:
                raise WorkflowBusyError("An image is already being generated.")
            if not state.prompt.strip():
                raise InputValidationError("Please enter a prompt for the image.")
        except ContentCockpitError as exc:
            self._state = state.model_copy(update={"error": str(exc)})
            return self._state

        self._state = state.model_copy(update={"busy": True, "error": None, "image_b64": None})
        try:
            image_b64 = self._gateway.generate_image(state.prompt, state.reference)
        except ImageGenerationFailure as exc:
            self._state = self._state.model_copy(update={"busy": False, "error": str(exc)})
            return self._state
        except Exception:
            logger.exception("❌ Image generation failed unexpectedly")
            self._state = self._state.model_copy(update={
                "busy": False, "error": "Image generation failed. Please try again later.",
            })
            return self._state

        self._state = self._state.model_copy(update={"busy": False, "image_b64": image_b64})
        logger.info("🖼️  Image ready (%d chars base64)", len(image_b64))
        return self._state
