"""Backend contract, capability descriptors and shared HTTP plumbing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, FrozenSet, List, Optional, Tuple

import orjson
import requests
from PIL import Image
from pydantic import BaseModel, ValidationError

from ..errors import (
    AuthenticationError,
    BackendUnavailableError,
    MalformedResponseError,
    QuotaExceededError,
    TransientRedactionError,
    UnsupportedCategoryError,
)
from ..models import Box, ContentCategory, Finding, Support, Table

TEXT_CATEGORIES = frozenset({ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP})

# Conversion routes, each names the intermediate form a backend receives.
TABLE_AS_TEXT = "table_as_text"
MARKUP_AS_TEXT = "markup_as_text"
IMAGE_OCR = "image_ocr"
PDF_IMAGES = "pdf_images"
PDF_OCR = "pdf_ocr"


@dataclass(frozen=True)
class BackendDescriptor:
    """What a backend can process, fixed for the life of the process."""

    name: str
    native: FrozenSet[ContentCategory] = field(default_factory=frozenset)
    edits_images: bool = False

    def conversion_routes(self, category: ContentCategory) -> Tuple[str, ...]:
        """Routes that bring ``category`` to a native category, preferred first."""
        text = ContentCategory.PLAIN_TEXT in self.native
        image = ContentCategory.IMAGE in self.native
        if category == ContentCategory.TABLE and text:
            return (TABLE_AS_TEXT,)
        if category == ContentCategory.MARKUP and text:
            return (MARKUP_AS_TEXT,)
        if category == ContentCategory.IMAGE and text:
            return (IMAGE_OCR,)
        if category == ContentCategory.PDF:
            routes = []
            if image:
                routes.append(PDF_IMAGES)
            if text:
                routes.append(PDF_OCR)
            return tuple(routes)
        return ()

    def support(self, category: ContentCategory) -> Support:
        if category in self.native:
            return Support.NATIVE
        if self.conversion_routes(category):
            return Support.CONVERSION
        return Support.UNSUPPORTED


@dataclass
class ImageRedaction:
    """Backend answer for an image: pixel findings or a finished image."""

    findings: List[Finding] = field(default_factory=list)
    image: Optional[Image.Image] = None


class Redacter:
    """Base class for DLP backends.

    Subclasses set :attr:`descriptor` and implement the detection methods
    for their native categories. Text findings are character offsets into
    the given text; table findings address cells; image findings are pixel
    boxes carrying the size of the image they were measured on.
    """

    descriptor: BackendDescriptor = BackendDescriptor(name="base")

    @property
    def name(self) -> str:
        return self.descriptor.name

    def detect_text(self, text: str) -> List[Finding]:
        raise UnsupportedCategoryError(f"{self.name} does not process text")

    def detect_table(self, table: Table) -> List[Finding]:
        raise UnsupportedCategoryError(f"{self.name} does not process tables")

    def redact_image(self, img: Image.Image, media_type: Optional[str]) -> ImageRedaction:
        raise UnsupportedCategoryError(f"{self.name} does not process images")

    def close(self) -> None:
        """Release network sessions."""


def _retry_after(response: requests.Response) -> str:
    value = response.headers.get("Retry-After")
    return f" (retry after {value}s)" if value else ""


class HttpRedacter(Redacter):
    """Redacter talking JSON over HTTP with requests.

    Transport and status errors are mapped onto the redaction error taxonomy;
    retries happen in the engine, not here.
    """

    def __init__(self, timeout: int = 120, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise TransientRedactionError(f"{self.name}: request timed out") from exc
        except requests.ConnectionError as exc:
            raise TransientRedactionError(f"{self.name}: connection failed: {exc}") from exc
        except requests.RequestException as exc:
            raise BackendUnavailableError(f"{self.name}: {exc}") from exc
        status = r.status_code
        if status == 429:
            raise QuotaExceededError(f"{self.name}: rate limited{_retry_after(r)}")
        if status in (401, 403):
            raise AuthenticationError(f"{self.name}: credentials rejected (HTTP {status})")
        if status >= 500:
            raise TransientRedactionError(f"{self.name}: HTTP {status}")
        if status >= 400:
            raise BackendUnavailableError(f"{self.name}: HTTP {status}: {r.text[:200]}")
        return r

    def _post_json(self, url: str, payload: Any, **kwargs) -> Any:
        r = self._request("POST", url, json=payload, **kwargs)
        return parse_json(r.content, self.name)

    def close(self) -> None:
        self.session.close()


def parse_json(raw: Any, backend: str) -> Any:
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as exc:
        raise MalformedResponseError(f"{backend}: response is not JSON") from exc


def validate(model, data: Any, backend: str):
    """Validate ``data`` into pydantic ``model`` or raise MalformedResponseError."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedResponseError(f"{backend}: unexpected response shape: {exc}") from exc


class TextCoords(BaseModel):
    x1: float
    y1: float
    x2: float
    y2: float
    text: Optional[str] = None


def coords_to_findings(coords: List[TextCoords], space: Tuple[int, int]) -> List[Finding]:
    return [
        Finding(label="PII", box=Box(c.x1, c.y1, c.x2, c.y2), space=space)
        for c in coords
        if c.x2 > c.x1 and c.y2 > c.y1
    ]


def normalize_items(payload: Any) -> List[Any]:
    """Extract a list of items from loosely structured LLM output."""
    if isinstance(payload, dict):
        for key in ("items", "pii", "entities"):
            if isinstance(payload.get(key), list):
                return payload[key]
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, str):
        trimmed = payload.strip()
        if trimmed.startswith("```"):
            body = trimmed[3:]
            if body.lower().startswith("json"):
                body = body[4:]
            closing = body.rfind("```")
            if closing != -1:
                body = body[:closing]
            trimmed = body.strip()
        try:
            return normalize_items(orjson.loads(trimmed))
        except orjson.JSONDecodeError:
            return []
    return []


def items_to_findings(text: str, items: List[Any]) -> List[Finding]:
    """Locate LLM-reported PII in ``text``.

    Items are strings or dicts with ``text`` and optional ``start``/``end``
    and ``label``. Offsets are kept only when they point at the reported
    text, and every other unclaimed occurrence of the value is redacted too.
    """
    used: List[Tuple[int, int]] = []
    out: List[Finding] = []

    def overlaps(a: Tuple[int, int]) -> bool:
        return any(not (a[1] <= b[0] or a[0] >= b[1]) for b in used)

    for it in items:
        if isinstance(it, str):
            it = {"text": it}
        if not isinstance(it, dict):
            continue
        value = it.get("text")
        if not isinstance(value, str) or not value:
            continue
        label = str(it.get("label") or "PII").upper()
        start, end = it.get("start"), it.get("end")
        if (
            isinstance(start, int)
            and isinstance(end, int)
            and 0 <= start < end <= len(text)
            and text[start:end] == value
            and not overlaps((start, end))
        ):
            used.append((start, end))
            out.append(Finding(label=label, start=start, end=end))
        pos = text.find(value)
        while pos != -1:
            span = (pos, pos + len(value))
            if not overlaps(span):
                used.append(span)
                out.append(Finding(label=label, start=span[0], end=span[1]))
            pos = text.find(value, pos + 1)
    return out

