"""Google Gemini backend over the Generative Language REST API."""

from __future__ import annotations

import base64
from typing import List, Optional

import requests
from PIL import Image
from pydantic import BaseModel

from ..errors import ConfigurationError, MalformedResponseError
from ..image_redact import encode_image
from ..models import ContentCategory, Finding
from .base import (
    BackendDescriptor,
    HttpRedacter,
    ImageRedaction,
    TextCoords,
    coords_to_findings,
    items_to_findings,
    normalize_items,
    parse_json,
    validate,
)
from .open_ai_llm import fit_within
from .prompts import image_prompt, text_prompt

_SAFETY = [
    {"category": c, "threshold": "BLOCK_NONE"}
    for c in (
        "HARM_CATEGORY_HATE_SPEECH",
        "HARM_CATEGORY_SEXUALLY_EXPLICIT",
        "HARM_CATEGORY_DANGEROUS_CONTENT",
        "HARM_CATEGORY_HARASSMENT",
    )
]


class _Part(BaseModel):
    text: Optional[str] = None


class _Content(BaseModel):
    parts: List[_Part] = []


class _Candidate(BaseModel):
    content: Optional[_Content] = None


class _GenerateResponse(BaseModel):
    candidates: List[_Candidate] = []


class GeminiLlmRedacter(HttpRedacter):
    descriptor = BackendDescriptor(
        name="gemini-llm",
        native=frozenset(
            {ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP, ContentCategory.IMAGE}
        ),
    )
    IMAGE_SIDE = 1024

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "models/gemini-1.5-flash",
        url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: int = 120,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError("Gemini API key is required (--gemini-api-key or GEMINI_API_KEY)")
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.model = model if model.startswith("models/") else f"models/{model}"
        self.url = url.rstrip("/")

    def _generate(self, parts: list) -> str:
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "safetySettings": _SAFETY,
            "generationConfig": {
                "candidateCount": 1,
                "temperature": 0.2,
                "responseMimeType": "application/json",
            },
        }
        data = self._post_json(
            f"{self.url}/{self.model}:generateContent",
            payload,
            headers={"x-goog-api-key": self.api_key},
        )
        response = validate(_GenerateResponse, data, self.name)
        if not response.candidates or response.candidates[0].content is None:
            raise MalformedResponseError(f"{self.name}: no content item in the response")
        return "".join(p.text or "" for p in response.candidates[0].content.parts)

    def detect_text(self, text: str) -> List[Finding]:
        if not text.strip():
            return []
        system, user = text_prompt(text)
        content = self._generate([{"text": system}, {"text": user}])
        return items_to_findings(text, normalize_items(content))

    def redact_image(self, img: Image.Image, media_type: Optional[str]) -> ImageRedaction:
        resized = fit_within(img, self.IMAGE_SIDE)
        encoded = base64.b64encode(encode_image(resized, "PNG")).decode("ascii")
        content = self._generate(
            [
                {"text": image_prompt(resized.width, resized.height)},
                {"inline_data": {"mime_type": "image/png", "data": encoded}},
            ]
        )
        payload = parse_json(content, self.name)
        if isinstance(payload, dict):
            payload = payload.get("text_coords", [])
        if not isinstance(payload, list):
            raise MalformedResponseError(f"{self.name}: expected a list of coordinates")
        coords = [validate(TextCoords, item, self.name) for item in payload]
        return ImageRedaction(findings=coords_to_findings(coords, resized.size))
