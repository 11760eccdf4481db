"""DLP backend adapters and their registry."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence

from ..errors import ConfigurationError
from ..settings import Settings, get_settings
from .base import BackendDescriptor, ImageRedaction, Redacter


def _gcp_dlp(settings: Settings) -> Redacter:
    from .gcp_dlp import GcpDlpRedacter

    return GcpDlpRedacter(
        settings.gcp_project_id,
        info_types=settings.gcp_dlp_info_types,
        timeout=settings.request_timeout,
    )


def _aws_comprehend(settings: Settings) -> Redacter:
    from .aws_comprehend import AwsComprehendRedacter

    return AwsComprehendRedacter(region=settings.aws_region)


def _ms_presidio(settings: Settings) -> Redacter:
    from .ms_presidio import MsPresidioRedacter

    return MsPresidioRedacter(
        text_analyze_url=settings.ms_presidio_text_analyze_url,
        image_redact_url=settings.ms_presidio_image_redact_url,
        timeout=settings.request_timeout,
    )


def _gemini_llm(settings: Settings) -> Redacter:
    from .gemini_llm import GeminiLlmRedacter

    return GeminiLlmRedacter(
        settings.gemini_api_key,
        model=settings.gemini_model,
        url=settings.gemini_url,
        timeout=settings.request_timeout,
    )


def _open_ai_llm(settings: Settings) -> Redacter:
    from .open_ai_llm import OpenAiLlmRedacter

    return OpenAiLlmRedacter(
        settings.open_ai_api_key,
        model=settings.open_ai_model,
        url=settings.open_ai_url,
        timeout=settings.request_timeout,
    )


REDACTERS: Dict[str, Callable[[Settings], Redacter]] = {
    "gcp-dlp": _gcp_dlp,
    "aws-comprehend": _aws_comprehend,
    "ms-presidio": _ms_presidio,
    "gemini-llm": _gemini_llm,
    "open-ai-llm": _open_ai_llm,
}


def create_redacter(name: str, settings: Optional[Settings] = None) -> Redacter:
    factory = REDACTERS.get(name)
    if factory is None:
        raise ConfigurationError(
            f"Unknown redacter '{name}', expected one of: {', '.join(REDACTERS)}"
        )
    return factory(settings or get_settings())


def create_redacters(names: Sequence[str], settings: Optional[Settings] = None) -> List[Redacter]:
    """Instantiate backends in the order given; repeated names stay repeated."""
    return [create_redacter(n, settings) for n in names]


__all__ = [
    "REDACTERS",
    "BackendDescriptor",
    "ImageRedaction",
    "Redacter",
    "create_redacter",
    "create_redacters",
]
