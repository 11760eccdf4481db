"""Media type and content category resolution for listed entries."""

from __future__ import annotations

import fnmatch
import mimetypes
import threading
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ContentCategory, Entry

mimetypes.add_type("text/csv", ".csv")
mimetypes.add_type("application/yaml", ".yaml")
mimetypes.add_type("application/yaml", ".yml")
mimetypes.add_type("text/markdown", ".md")

_MAGIC: List[Tuple[bytes, str]] = [
    (b"%PDF-", "application/pdf"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"II*\x00", "image/tiff"),
    (b"MM\x00*", "image/tiff"),
]

# BITMAPCOREHEADER through BITMAPV5HEADER
_BMP_DIB_SIZES = {12, 40, 52, 56, 64, 108, 124}

_MARKUP_TEXT = {"html", "xml", "css", "markdown", "x-markdown", "yaml", "x-yaml"}
_MARKUP_APP = {"xml", "json", "yaml", "x-yaml", "xhtml+xml"}


def sniff_media_type(head: bytes) -> Optional[str]:
    """Recognize binary formats from their leading bytes."""
    if not head:
        return None
    if head[:4] == b"RIFF" and head[8:12] == b"WEBP":
        return "image/webp"
    if head[:2] == b"BM" and len(head) >= 18:
        if int.from_bytes(head[14:18], "little") in _BMP_DIB_SIZES:
            return "image/bmp"
    for magic, media_type in _MAGIC:
        if head.startswith(magic):
            return media_type
    return None


def category_for_mime(media_type: Optional[str]) -> ContentCategory:
    if not media_type:
        return ContentCategory.UNKNOWN
    main, _, sub = media_type.lower().split(";", 1)[0].strip().partition("/")
    if main == "text":
        if sub == "plain":
            return ContentCategory.PLAIN_TEXT
        if sub == "csv":
            return ContentCategory.TABLE
        if sub in _MARKUP_TEXT:
            return ContentCategory.MARKUP
    elif main == "application":
        if sub == "pdf":
            return ContentCategory.PDF
        if sub in _MARKUP_APP:
            return ContentCategory.MARKUP
    elif main == "image":
        return ContentCategory.IMAGE
    return ContentCategory.UNKNOWN


class ContentTypeResolver:
    """Resolve ``(media_type, category)`` once per entry.

    Order: user overrides (first matching ``MIME=GLOB`` rule wins), magic
    bytes, file extension, the provider-reported media type, then unknown.
    """

    def __init__(self, overrides: Sequence[Tuple[str, str]] = (), sniff_bytes: int = 2048):
        self.overrides = list(overrides)
        self.sniff_bytes = sniff_bytes
        self._cache: Dict[Tuple[str, str], Tuple[Optional[str], ContentCategory]] = {}
        self._lock = threading.Lock()

    def override_for(self, entry: Entry) -> Optional[str]:
        for media_type, glob in self.overrides:
            if fnmatch.fnmatchcase(entry.path, glob) or fnmatch.fnmatchcase(entry.name, glob):
                return media_type
        return None

    def _resolve(self, entry: Entry, head: Optional[bytes]) -> Optional[str]:
        override = self.override_for(entry)
        if override:
            return override
        sniffed = sniff_media_type((head or b"")[: self.sniff_bytes])
        if sniffed:
            return sniffed
        guessed = mimetypes.guess_type(entry.name)[0]
        if guessed:
            return guessed
        return entry.media_type

    def resolve(self, entry: Entry, head: Optional[bytes] = None) -> Tuple[Optional[str], ContentCategory]:
        with self._lock:
            cached = self._cache.get(entry.key)
        if cached is not None:
            return cached
        media_type = self._resolve(entry, head)
        result = (media_type, category_for_mime(media_type))
        with self._lock:
            return self._cache.setdefault(entry.key, result)


__all__ = ["ContentTypeResolver", "category_for_mime", "sniff_media_type"]
