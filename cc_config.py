from __future__ import annotations

import logging
import os
import sys
from functools import lru_cache
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv

load_dotenv()


# ═══════════════════════════════════════════════════════════
# Fixed configuration data
# ═══════════════════════════════════════════════════════════
# Passed verbatim (and in this order) into every outline request.
INTERNAL_LINKS: Tuple[str, ...] = (
    "https://www.willenskraft.co.at/",
    "https://www.willenskraft.co.at/hundetrainer-ausbildung/",
    "https://www.willenskraft.co.at/online-hundeschule/",
    "https://www.willenskraft.co.at/angebot-nach-regionen/",
    "https://www.willenskraft.co.at/blog-hunde-steiermark/",
    "https://www.willenskraft.co.at/graz-und-umgebung-martha-hoehr/",
    "https://www.willenskraft.co.at/kontakt-hundeschule/",
    "https://www.willenskraft.co.at/e-books-affirmationen-hund/",
    "https://www.willenskraft.co.at/hundeschule-bruck-leitha/",
)


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    groq_api_key: Optional[str] = None
    text_model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.4

    tavily_api_key: Optional[str] = None
    research_max_queries: int = 5
    research_max_results: int = 5

    hf_token: Optional[str] = None
    image_model: str = "stabilityai/stable-diffusion-xl-base-1.0"
    image_edit_model: str = "timbrooks/instruct-pix2pix"

    internal_links: Tuple[str, ...] = INTERNAL_LINKS
    brand: str = "Willenskraft"
    language: str = "German"
    log_level: str = "INFO"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


def _parse_links(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return INTERNAL_LINKS
    links = tuple(part.strip() for part in raw.split(",") if part.strip())
    return links or INTERNAL_LINKS


def settings_from_env() -> Settings:
    """Build settings from the process environment (``.env`` already loaded)."""
    defaults = Settings()
    return Settings(
        groq_api_key=_env("GROQ_API_KEY"),
        text_model=_env("CC_TEXT_MODEL") or defaults.text_model,
        temperature=float(_env("CC_TEMPERATURE") or defaults.temperature),
        tavily_api_key=_env("TAVILY_API_KEY"),
        research_max_queries=int(_env("CC_RESEARCH_MAX_QUERIES") or defaults.research_max_queries),
        research_max_results=int(_env("CC_RESEARCH_MAX_RESULTS") or defaults.research_max_results),
        hf_token=_env("HF_TOKEN"),
        image_model=_env("CC_IMAGE_MODEL") or defaults.image_model,
        image_edit_model=_env("CC_IMAGE_EDIT_MODEL") or defaults.image_edit_model,
        internal_links=_parse_links(_env("CC_INTERNAL_LINKS")),
        brand=_env("CC_BRAND") or defaults.brand,
        language=_env("CC_LANGUAGE") or defaults.language,
        log_level=(_env("CC_LOG_LEVEL") or defaults.log_level).upper(),
    )


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return settings_from_env()


def configure_logging(level: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger (idempotent)."""
    root = logging.getLogger()
    if not any(getattr(h, "_cc_handler", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
        handler._cc_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(level or load_settings().log_level)
