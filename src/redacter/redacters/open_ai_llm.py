"""OpenAI chat completions backend."""

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
from .prompts import IMAGE_COORDS_SCHEMA, image_prompt, text_prompt


class _Message(BaseModel):
    content: Optional[str] = None


class _Choice(BaseModel):
    message: _Message


class _ChatResponse(BaseModel):
    choices: List[_Choice]


class _CoordsResponse(BaseModel):
    text_coords: List[TextCoords] = []


def fit_within(img: Image.Image, side: int) -> Image.Image:
    """Downscale ``img`` to fit a ``side`` x ``side`` square, keeping aspect."""
    if img.width <= side and img.height <= side:
        return img
    out = img.copy()
    out.thumbnail((side, side))
    return out


class OpenAiLlmRedacter(HttpRedacter):
    descriptor = BackendDescriptor(
        name="open-ai-llm",
        native=frozenset(
            {ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP, ContentCategory.IMAGE}
        ),
    )
    IMAGE_SIDE = 1024

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        url: str = "https://api.openai.com/v1/chat/completions",
        timeout: int = 120,
        session: Optional[requests.Session] = None,
    ):
        if not api_key:
            raise ConfigurationError("OpenAI API key is required (--open-ai-api-key or OPENAI_API_KEY)")
        super().__init__(timeout=timeout, session=session)
        self.api_key = api_key
        self.model = model
        self.url = url

    def _chat(self, messages: list, response_format: dict) -> str:
        payload = {"model": self.model, "messages": messages, "response_format": response_format}
        data = self._post_json(
            self.url, payload, headers={"Authorization": f"Bearer {self.api_key}"}
        )
        response = validate(_ChatResponse, data, self.name)
        if not response.choices or response.choices[-1].message.content is None:
            raise MalformedResponseError(f"{self.name}: no content item in the response")
        return response.choices[-1].message.content

    def detect_text(self, text: str) -> List[Finding]:
        if not text.strip():
            return []
        system, user = text_prompt(text)
        content = self._chat(
            [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            {"type": "json_object"},
        )
        return items_to_findings(text, normalize_items(content))

    def redact_image(self, img: Image.Image, media_type: Optional[str]) -> ImageRedaction:
        resized = fit_within(img, self.IMAGE_SIDE)
        encoded = base64.b64encode(encode_image(resized, "PNG")).decode("ascii")
        content = self._chat(
            [
                {"role": "system", "content": image_prompt(resized.width, resized.height)},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:image/png;base64,{encoded}"},
                        }
                    ],
                },
            ],
            {
                "type": "json_schema",
                "json_schema": {"name": "image_redact", "schema": IMAGE_COORDS_SCHEMA},
            },
        )
        coords = validate(_CoordsResponse, parse_json(content, self.name), self.name)
        return ImageRedaction(findings=coords_to_findings(coords.text_coords, resized.size))
