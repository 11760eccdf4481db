"""Backend selection and redaction of a single item.

For every content category the engine picks one chain of backends in two
phases. Backends that handle the category natively win; only when there are
none, backends that can handle it after a conversion are used, with the
conversion route chosen by preference (PDF pages as images before PDF pages
through OCR). The chain is applied as a fold: each backend sees the output of
the previous one and findings accumulate.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from PIL import Image

from .config import RunConfig
from .convert import ContentConverter
from .convert.align import findings_to_regions, regions_text
from .convert.tables import apply_cell_findings, table_text, text_findings_to_cells
from .errors import (
    RETRYABLE_ERRORS,
    ConversionError,
    FatalError,
    RedacterError,
    error_kind,
)
from .image_redact import decode_image, encode_image, image_format, redact_image
from .logging import get_logger
from .models import (
    ContentCategory,
    Entry,
    Finding,
    Outcome,
    RedactedPart,
    RedactionRequest,
    RedactionResult,
    Support,
    Table,
)
from .redacters.base import (
    IMAGE_OCR,
    MARKUP_AS_TEXT,
    PDF_IMAGES,
    PDF_OCR,
    TABLE_AS_TEXT,
    Redacter,
)
from .throttle import RateLimiter, Unlimited

logger = get_logger(__name__)

ROUTE_PREFERENCE = (PDF_IMAGES, PDF_OCR, TABLE_AS_TEXT, MARKUP_AS_TEXT, IMAGE_OCR)


@dataclass
class EngineOptions:
    sampling_size: Optional[int] = None
    sampling_tail: str = "copy"
    allow_unsupported_copies: bool = False
    retries: int = 3
    backoff: float = 0.5
    fill_rgb: Tuple[int, int, int] = (0, 0, 0)
    mask: str = "X"

    @staticmethod
    def from_config(cfg: RunConfig) -> "EngineOptions":
        return EngineOptions(
            sampling_size=cfg.sampling_size,
            sampling_tail=cfg.sampling_tail,
            allow_unsupported_copies=cfg.allow_unsupported_copies,
            retries=cfg.retries,
            backoff=cfg.backoff,
            fill_rgb=tuple(cfg.fill_rgb),
        )


@dataclass(frozen=True)
class RedactPlan:
    """The chain chosen for one category; ``route`` is None for native chains."""

    support: Support
    backends: Tuple[Redacter, ...]
    route: Optional[str] = None

    @property
    def names(self) -> List[str]:
        return [b.name for b in self.backends]


def mask_text(text: str, findings: Sequence[Finding], mask: str = "X") -> str:
    """Replace every character covered by a text finding with ``mask``."""
    chars = list(text)
    for f in findings:
        if not f.is_text or f.end is None:
            continue
        for i in range(max(0, f.start), min(len(chars), f.end)):
            chars[i] = mask
    return "".join(chars)


def utf8_prefix(data: bytes, size: int) -> int:
    """Largest cut point ``<= size`` that does not split a UTF-8 character."""
    if size >= len(data):
        return len(data)
    cut = size
    while cut > 0 and (data[cut] & 0xC0) == 0x80:
        cut -= 1
    return cut


def rows_within(table: Table, size: int, delimiter: str = ",") -> int:
    """Number of leading rows whose delimited text fits in ``size`` bytes."""
    used = 0
    for i, row in enumerate(table.rows):
        used += len(delimiter.join(row).encode("utf-8")) + 1
        if used > size:
            return i
    return len(table.rows)


class RedactionEngine:
    """Resolve and apply the backend chain for each item.

    Parameters
    ----------
    redacters:
        Configured backends in user order.
    converter:
        Rendering, OCR and CSV conversions.
    options:
        Sampling, retry and fallback policy.
    limiter:
        Shared limiter every backend call goes through.
    sleep:
        Used for retry backoff; injectable for tests.
    """

    def __init__(
        self,
        redacters: Sequence[Redacter],
        converter: Optional[ContentConverter] = None,
        options: Optional[EngineOptions] = None,
        limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.redacters = list(redacters)
        self.converter = converter or ContentConverter()
        self.options = options or EngineOptions()
        self.limiter = limiter or Unlimited()
        self._sleep = sleep
        self._plans: Dict[ContentCategory, Tuple[Optional[RedactPlan], Optional[str]]] = {}
        self._lock = threading.Lock()

    # planning

    def _route_available(self, route: str) -> Optional[str]:
        if route in (PDF_IMAGES, PDF_OCR) and not self.converter.pdf_available():
            return "PDF renderer is not available"
        if route in (PDF_OCR, IMAGE_OCR) and not self.converter.ocr_available():
            return "OCR is not available"
        return None

    def _resolve(self, category: ContentCategory) -> Tuple[Optional[RedactPlan], Optional[str]]:
        native = tuple(
            r for r in self.redacters if r.descriptor.support(category) == Support.NATIVE
        )
        if native:
            return RedactPlan(Support.NATIVE, native), None
        reason = None
        for route in ROUTE_PREFERENCE:
            chain = tuple(
                r for r in self.redacters if route in r.descriptor.conversion_routes(category)
            )
            if not chain:
                continue
            missing = self._route_available(route)
            if missing:
                reason = reason or missing
                continue
            return RedactPlan(Support.CONVERSION, chain, route), None
        return None, reason or f"No redacter supports {category.value} content"

    def plan(self, category: ContentCategory) -> Tuple[Optional[RedactPlan], Optional[str]]:
        """Return the chain for ``category`` or ``(None, reason)``."""
        with self._lock:
            if category not in self._plans:
                self._plans[category] = self._resolve(category)
            return self._plans[category]

    # backend calls

    def _call(self, backend: Redacter, fn: Callable, *args):
        attempt = 0
        while True:
            try:
                with self.limiter.slot():
                    return fn(*args)
            except RETRYABLE_ERRORS as exc:
                if attempt >= self.options.retries:
                    raise
                delay = self.options.backoff * (2 ** attempt)
                logger.warning(
                    "Retrying backend call",
                    extra={
                        "extra": {
                            "backend": backend.name,
                            "attempt": attempt + 1,
                            "delay": delay,
                            "kind": error_kind(exc),
                        }
                    },
                )
                self._sleep(delay)
                attempt += 1

    # routes

    def _text(self, plan: RedactPlan, data: bytes) -> Tuple[bytes, int, bool]:
        opts = self.options
        cut = len(data)
        if opts.sampling_size is not None:
            cut = utf8_prefix(data, opts.sampling_size)
        try:
            text = data[:cut].decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ConversionError(f"Text content is not valid UTF-8: {exc}") from exc
        count = 0
        for backend in plan.backends:
            found = self._call(backend, backend.detect_text, text)
            count += len(found)
            text = mask_text(text, found, opts.mask)
        out = text.encode("utf-8")
        sampled = cut < len(data)
        if sampled and opts.sampling_tail == "copy":
            out += data[cut:]
        return out, count, sampled

    def _sample_table(self, table: Table) -> Tuple[Table, List[List[str]]]:
        size = self.options.sampling_size
        if size is None:
            return table, []
        n = rows_within(table, size, self.converter.csv_delimiter)
        return Table(table.headers, table.rows[:n]), table.rows[n:]

    def _table(self, plan: RedactPlan, data: bytes, as_text: bool) -> Tuple[bytes, int, bool]:
        table, tail = self._sample_table(self.converter.parse_table(data))
        count = 0
        for backend in plan.backends:
            if as_text:
                text, spans = table_text(table, self.converter.csv_delimiter)
                found = text_findings_to_cells(spans, self._call(backend, backend.detect_text, text))
            else:
                found = self._call(backend, backend.detect_table, table)
            count += len(found)
            table = apply_cell_findings(table, found, self.options.mask)
        sampled = bool(tail)
        if sampled and self.options.sampling_tail == "copy":
            table = Table(table.headers, table.rows + tail)
        return self.converter.serialize_table(table), count, sampled

    def _image(self, plan: RedactPlan, img: Image.Image, media_type: Optional[str]) -> Tuple[Image.Image, int]:
        count = 0
        for backend in plan.backends:
            res = self._call(backend, backend.redact_image, img, media_type)
            if res.image is not None and backend.descriptor.edits_images:
                img = res.image
                continue
            count += len(res.findings)
            img = redact_image(img, res.findings, self.options.fill_rgb)
        return img, count

    def _ocr_image(self, plan: RedactPlan, img: Image.Image) -> Tuple[Image.Image, int]:
        regions = self.converter.recognize(img)
        text = regions_text(regions)
        count = 0
        for backend in plan.backends:
            found = self._call(backend, backend.detect_text, text) if text else []
            pixels = findings_to_regions(regions, found, img.size)
            count += len(found)
            img = redact_image(img, pixels, self.options.fill_rgb)
        return img, count

    def _run(self, plan: RedactPlan, request: RedactionRequest) -> Tuple[List[RedactedPart], int, bool]:
        data: bytes = request.content
        category = request.category
        media_type = request.media_type
        route = plan.route
        if route in (PDF_IMAGES, PDF_OCR):
            parts: List[RedactedPart] = []
            count = 0
            for page, img in enumerate(self.converter.render_pdf(data)):
                if route == PDF_IMAGES:
                    img, found = self._image(plan, img, "image/png")
                else:
                    img, found = self._ocr_image(plan, img)
                count += found
                parts.append(RedactedPart(encode_image(img, "PNG"), "image/png", page=page))
            return parts, count, False
        if category == ContentCategory.TABLE:
            out, count, sampled = self._table(plan, data, as_text=route == TABLE_AS_TEXT)
            return [RedactedPart(out, media_type)], count, sampled
        if category == ContentCategory.IMAGE:
            src = decode_image(data)
            fmt = image_format(media_type, src)
            if route == IMAGE_OCR:
                img, count = self._ocr_image(plan, src)
            else:
                img, count = self._image(plan, src, media_type)
            return [RedactedPart(encode_image(img, fmt), media_type)], count, False
        out, count, sampled = self._text(plan, data)
        return [RedactedPart(out, media_type)], count, sampled

    def redact(
        self,
        entry: Entry,
        media_type: Optional[str],
        category: ContentCategory,
        data: bytes,
    ) -> RedactionResult:
        """Redact one fully buffered item and return its single result.

        Fatal errors propagate; every other redaction or conversion error is
        turned into a raw copy (when allowed) or a failed result.
        """
        plan, reason = self.plan(category)
        if plan is None:
            if self.options.allow_unsupported_copies:
                return RedactionResult(
                    entry,
                    Outcome.PASSTHROUGH_COPIED,
                    [RedactedPart(data, media_type)],
                    category=category,
                    reason=reason,
                )
            return RedactionResult(entry, Outcome.SKIPPED, category=category, reason=reason)

        request = RedactionRequest(entry, category, media_type, data)
        logger.info(
            "Redacting",
            extra={
                "extra": {
                    "path": entry.path,
                    "category": category.value,
                    "route": plan.route or "native",
                    "backends": plan.names,
                }
            },
        )
        try:
            parts, count, sampled = self._run(plan, request)
        except FatalError:
            raise
        except RedacterError as exc:
            kind = error_kind(exc)
            if self.options.allow_unsupported_copies:
                return RedactionResult(
                    entry,
                    Outcome.PASSTHROUGH_COPIED,
                    [RedactedPart(data, media_type)],
                    category=category,
                    reason=str(exc),
                    error_kind=kind,
                )
            return RedactionResult(
                entry, Outcome.FAILED, category=category, reason=str(exc), error_kind=kind
            )
        return RedactionResult(
            entry,
            Outcome.REDACTED,
            parts,
            category=category,
            findings=count,
            backends=plan.names,
            sampled=sampled,
        )

    def close(self) -> None:
        for r in self.redacters:
            r.close()


__all__ = [
    "EngineOptions",
    "RedactPlan",
    "RedactionEngine",
    "mask_text",
    "utf8_prefix",
    "rows_within",
]
