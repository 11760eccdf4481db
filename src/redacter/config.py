"""Configuration primitives for a copy run."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Tuple


SAMPLING_TAIL_MODES = ("copy", "drop")


@dataclass
class RunConfig:
    """Runtime configuration for enumeration, conversion and redaction."""

    workers: int = 4
    max_size_limit: Optional[int] = None
    max_files_limit: Optional[int] = None
    filename_filter: Optional[str] = None
    mime_overrides: List[Tuple[str, str]] = field(default_factory=list)
    allow_unsupported_copies: bool = False
    sampling_size: Optional[int] = None
    sampling_tail: str = "copy"  # 'copy' or 'drop'
    limit_dlp_requests: Optional[str] = None
    csv_headers_disable: bool = False
    csv_delimiter: str = ","
    pdf_dpi: int = 200
    ocr_lang: str = "eng"
    fill_rgb: Tuple[int, int, int] = (0, 0, 0)
    retries: int = 3
    backoff: float = 0.5
    sniff_bytes: int = 2048
    fail_on_skipped: bool = False
    show_progress: bool = True

    def __post_init__(self) -> None:
        if self.sampling_tail not in SAMPLING_TAIL_MODES:
            raise ValueError(
                f"sampling_tail must be one of {SAMPLING_TAIL_MODES}, got {self.sampling_tail!r}"
            )
        if self.sampling_size is not None and self.sampling_size <= 0:
            raise ValueError("sampling_size must be positive")
        if self.workers < 1:
            raise ValueError("workers must be at least 1")


def parse_mime_override(value: str) -> Tuple[str, str]:
    """Parse a ``MIME=GLOB`` override such as ``text/plain=*.md``."""
    mime, sep, glob = value.partition("=")
    if not sep or not mime.strip() or not glob.strip():
        raise ValueError(f"invalid MIME=GLOB: no `=` found in `{value}`")
    if "/" not in mime:
        raise ValueError(f"invalid media type `{mime}`")
    return mime.strip().lower(), glob.strip()


__all__ = ["RunConfig", "parse_mime_override", "SAMPLING_TAIL_MODES"]
