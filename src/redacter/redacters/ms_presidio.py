"""Microsoft Presidio backend (analyzer and image redactor services)."""

from __future__ import annotations

import io
from typing import List, Optional

import requests
from PIL import Image
from pydantic import BaseModel

from ..errors import ConfigurationError, MalformedResponseError
from ..image_redact import decode_image, encode_image, image_format
from ..models import ContentCategory, Finding
from .base import BackendDescriptor, HttpRedacter, ImageRedaction, validate

# Entity types ignored because they produce too many false positives.
DISALLOWED_ENTITY_TYPES = frozenset({"US_DRIVER_LICENSE"})


class _AnalyzedItem(BaseModel):
    entity_type: str
    start: Optional[int] = None
    end: Optional[int] = None
    score: float = 1.0


class MsPresidioRedacter(HttpRedacter):
    def __init__(
        self,
        text_analyze_url: Optional[str] = None,
        image_redact_url: Optional[str] = None,
        language: str = "en",
        timeout: int = 120,
        session: Optional[requests.Session] = None,
    ):
        if not text_analyze_url and not image_redact_url:
            raise ConfigurationError(
                "MsPresidio needs --ms-presidio-text-analyze-url and/or --ms-presidio-image-redact-url"
            )
        super().__init__(timeout=timeout, session=session)
        self.text_analyze_url = text_analyze_url
        self.image_redact_url = image_redact_url
        self.language = language
        native = set()
        if text_analyze_url:
            native |= {ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP}
        if image_redact_url:
            native.add(ContentCategory.IMAGE)
        self.descriptor = BackendDescriptor(
            name="ms-presidio", native=frozenset(native), edits_images=bool(image_redact_url)
        )

    def detect_text(self, text: str) -> List[Finding]:
        if not self.text_analyze_url:
            return super().detect_text(text)
        data = self._post_json(self.text_analyze_url, {"text": text, "language": self.language})
        if not isinstance(data, list):
            raise MalformedResponseError(
                f"{self.name}: expected a list of entities, got {type(data).__name__}"
            )
        findings: List[Finding] = []
        for raw in data:
            item = validate(_AnalyzedItem, raw, self.name)
            if item.entity_type in DISALLOWED_ENTITY_TYPES:
                continue
            start = 0 if item.start is None else item.start
            end = len(text) if item.end is None else item.end
            if start < end:
                findings.append(Finding(label=item.entity_type, score=item.score, start=start, end=end))
        return findings

    def redact_image(self, img: Image.Image, media_type: Optional[str]) -> ImageRedaction:
        if not self.image_redact_url:
            return super().redact_image(img, media_type)
        fmt = image_format(media_type, img)
        mime = media_type or "image/png"
        files = {"image": (f"image.{fmt.lower()}", io.BytesIO(encode_image(img, fmt)), mime)}
        r = self._request("POST", self.image_redact_url, files=files)
        return ImageRedaction(image=decode_image(r.content))
