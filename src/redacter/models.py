"""Core data model shared by storage, conversion and redaction stages."""

from __future__ import annotations

import posixpath
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Tuple

from .errors import ConfigurationError


SCHEMES = ("file", "s3", "gs", "zip", "clipboard")


@dataclass(frozen=True)
class StorageLocation:
    """Where a provider lives: a scheme plus a path or a bucket/key pair."""

    scheme: str
    path: str = ""
    bucket: Optional[str] = None
    key: str = ""

    @staticmethod
    def parse(uri: str) -> "StorageLocation":
        if "://" not in uri:
            return StorageLocation(scheme="file", path=uri)
        scheme, rest = uri.split("://", 1)
        scheme = scheme.lower()
        if scheme not in SCHEMES:
            raise ConfigurationError(f"Unknown file system is specified: {uri}")
        if scheme in ("s3", "gs"):
            bucket, _, key = rest.partition("/")
            if not bucket:
                raise ConfigurationError(f"Bucket is missing in {uri}")
            return StorageLocation(scheme=scheme, bucket=bucket, key=key)
        if scheme == "clipboard":
            if rest:
                raise ConfigurationError("Clipboard should be specified as clipboard://")
            return StorageLocation(scheme=scheme)
        return StorageLocation(scheme=scheme, path=rest)

    @property
    def uri(self) -> str:
        if self.scheme in ("s3", "gs"):
            return f"{self.scheme}://{self.bucket}/{self.key}"
        return f"{self.scheme}://{self.path}"


@dataclass(frozen=True)
class Entry:
    """One listed item, relative to the traversal root of its provider."""

    path: str
    location: StorageLocation
    size: Optional[int] = None
    media_type: Optional[str] = None
    modified: Optional[datetime] = None

    @property
    def name(self) -> str:
        return posixpath.basename(self.path)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.location.uri, self.path)


class ContentCategory(str, Enum):
    PLAIN_TEXT = "plain_text"
    MARKUP = "markup"
    TABLE = "table"
    IMAGE = "image"
    PDF = "pdf"
    UNKNOWN = "unknown"


class Support(str, Enum):
    NATIVE = "native"
    CONVERSION = "conversion"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class Box:
    """Pixel rectangle, half open on the right and bottom edges."""

    x1: float
    y1: float
    x2: float
    y2: float

    def scaled(self, sx: float, sy: float) -> "Box":
        return Box(self.x1 * sx, self.y1 * sy, self.x2 * sx, self.y2 * sy)


@dataclass(frozen=True)
class Finding:
    """A detected PII instance.

    Exactly one location family is set: ``start``/``end`` for text (character
    offsets in the decoded text), ``row``/``column`` for tables (optionally with
    ``start``/``end`` inside the cell), or ``box`` with ``space`` for images.
    ``space`` is the ``(width, height)`` of the image the box was measured on.
    """

    label: str = "PII"
    score: float = 1.0
    start: Optional[int] = None
    end: Optional[int] = None
    row: Optional[int] = None
    column: Optional[int] = None
    box: Optional[Box] = None
    space: Optional[Tuple[int, int]] = None

    @property
    def is_text(self) -> bool:
        return self.row is None and self.box is None and self.start is not None

    @property
    def is_cell(self) -> bool:
        return self.row is not None and self.column is not None

    @property
    def is_pixel(self) -> bool:
        return self.box is not None

    def scale_to(self, size: Tuple[int, int]) -> "Finding":
        """Return this pixel finding expressed in an image of ``size``."""
        if self.box is None:
            raise ValueError("Only pixel findings can be rescaled")
        if self.space is None or tuple(self.space) == tuple(size):
            return Finding(
                label=self.label, score=self.score, box=self.box, space=tuple(size)
            )
        sx = size[0] / float(self.space[0])
        sy = size[1] / float(self.space[1])
        return Finding(
            label=self.label,
            score=self.score,
            box=self.box.scaled(sx, sy),
            space=tuple(size),
        )


@dataclass(frozen=True)
class TextRegion:
    text: str
    box: Box


@dataclass
class Table:
    headers: List[str]
    rows: List[List[str]]


@dataclass
class RedactionRequest:
    """Payload handed to a backend chain.

    ``content`` is ``bytes`` before conversion and then a ``str`` (text), a
    :class:`Table`, or a PIL image depending on the route.
    """

    entry: Entry
    category: ContentCategory
    media_type: Optional[str]
    content: Any


@dataclass
class RedactedPart:
    """One output artifact of an item; PDFs produce one part per page."""

    data: bytes
    media_type: Optional[str] = None
    page: Optional[int] = None


class Outcome(str, Enum):
    REDACTED = "redacted"
    PASSTHROUGH_COPIED = "passthrough_copied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RedactionResult:
    entry: Entry
    outcome: Outcome
    parts: List[RedactedPart] = field(default_factory=list)
    category: ContentCategory = ContentCategory.UNKNOWN
    findings: int = 0
    backends: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    error_kind: Optional[str] = None
    sampled: bool = False
