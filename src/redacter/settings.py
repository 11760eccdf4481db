"""Environment-driven settings for credentials and service endpoints.

Credentials and endpoints for every backend come from the environment; the
CLI uses these values as defaults and explicit flags win. The module has no
import-time side effects so tests can reset the cache between cases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional
import os


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    parts = [p.strip() for p in value.split(",") if p.strip()]
    return parts


def _parse_int(value: str | None, *, default: int) -> int:
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass
class Settings:
    """Service credentials, endpoints and tuning knobs."""

    gcp_project_id: Optional[str] = None
    gcp_dlp_info_types: List[str] = field(default_factory=list)
    aws_region: Optional[str] = None
    ms_presidio_text_analyze_url: Optional[str] = None
    ms_presidio_image_redact_url: Optional[str] = None
    open_ai_api_key: Optional[str] = None
    open_ai_model: str = "gpt-4o-mini"
    open_ai_url: str = "https://api.openai.com/v1/chat/completions"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "models/gemini-1.5-flash"
    gemini_url: str = "https://generativelanguage.googleapis.com/v1beta"
    request_timeout: int = 120
    workers: int = 4
    show_progress: bool = True
    hmac_key: Optional[str] = None

    @staticmethod
    def from_env() -> "Settings":
        return Settings(
            gcp_project_id=os.environ.get("GCP_PROJECT_ID")
            or os.environ.get("GOOGLE_CLOUD_PROJECT"),
            gcp_dlp_info_types=_split_csv(os.environ.get("REDACTER_GCP_DLP_INFO_TYPES")),
            aws_region=os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION"),
            ms_presidio_text_analyze_url=os.environ.get("REDACTER_MS_PRESIDIO_TEXT_ANALYZE_URL"),
            ms_presidio_image_redact_url=os.environ.get("REDACTER_MS_PRESIDIO_IMAGE_REDACT_URL"),
            open_ai_api_key=os.environ.get("OPENAI_API_KEY"),
            open_ai_model=os.environ.get("REDACTER_OPEN_AI_MODEL", "gpt-4o-mini"),
            open_ai_url=os.environ.get(
                "REDACTER_OPEN_AI_URL", "https://api.openai.com/v1/chat/completions"
            ),
            gemini_api_key=os.environ.get("GEMINI_API_KEY"),
            gemini_model=os.environ.get("REDACTER_GEMINI_MODEL", "models/gemini-1.5-flash"),
            gemini_url=os.environ.get(
                "REDACTER_GEMINI_URL", "https://generativelanguage.googleapis.com/v1beta"
            ),
            request_timeout=_parse_int(os.environ.get("REDACTER_REQUEST_TIMEOUT"), default=120),
            workers=_parse_int(os.environ.get("REDACTER_WORKERS"), default=4),
            show_progress=_parse_bool(os.environ.get("REDACTER_PROGRESS"), default=True),
            hmac_key=os.environ.get("REDACTER_HMAC_KEY"),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings."""
    return Settings.from_env()


def reset_settings_cache() -> None:
    """Reset cached settings (useful in tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
