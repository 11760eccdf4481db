"""Google Cloud DLP backend using the v2 REST API."""

from __future__ import annotations

import base64
from typing import Dict, List, Optional, Sequence

import google.auth
import requests
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.auth.transport.requests import AuthorizedSession
from PIL import Image
from pydantic import BaseModel, Field

from ..errors import AuthenticationError, ConfigurationError, MalformedResponseError
from ..image_redact import decode_image, encode_image
from ..models import ContentCategory, Finding, Table
from .base import BackendDescriptor, HttpRedacter, ImageRedaction, validate

DLP_URL = "https://dlp.googleapis.com/v2"
SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

DEFAULT_INFO_TYPES = (
    "PHONE_NUMBER",
    "EMAIL_ADDRESS",
    "CREDIT_CARD_NUMBER",
    "LOCATION",
    "PERSON_NAME",
    "AGE",
    "DATE_OF_BIRTH",
    "FINANCIAL_ACCOUNT_NUMBER",
    "GENDER",
    "IP_ADDRESS",
    "PASSPORT",
    "AUTH_TOKEN",
    "AWS_CREDENTIALS",
    "BASIC_AUTH_HEADER",
    "VAT_NUMBER",
    "PASSWORD",
    "OAUTH_CLIENT_SECRET",
    "IBAN_CODE",
    "GCP_API_KEY",
    "ENCRYPTION_KEY",
)


class _Range(BaseModel):
    start: int = 0
    end: int = 0


class _FieldId(BaseModel):
    name: str = ""


class _TableLocation(BaseModel):
    row_index: int = Field(0, alias="rowIndex")


class _RecordLocation(BaseModel):
    field_id: Optional[_FieldId] = Field(None, alias="fieldId")
    table_location: Optional[_TableLocation] = Field(None, alias="tableLocation")


class _ContentLocation(BaseModel):
    record_location: Optional[_RecordLocation] = Field(None, alias="recordLocation")


class _Location(BaseModel):
    codepoint_range: Optional[_Range] = Field(None, alias="codepointRange")
    content_locations: List[_ContentLocation] = Field(default_factory=list, alias="contentLocations")


class _InfoType(BaseModel):
    name: str = "PII"


class _Finding(BaseModel):
    info_type: _InfoType = Field(default_factory=_InfoType, alias="infoType")
    location: _Location = Field(default_factory=_Location)


class _InspectResult(BaseModel):
    findings: List[_Finding] = Field(default_factory=list)


class _InspectResponse(BaseModel):
    result: _InspectResult = Field(default_factory=_InspectResult)


class GcpDlpRedacter(HttpRedacter):
    descriptor = BackendDescriptor(
        name="gcp-dlp",
        native=frozenset(
            {
                ContentCategory.PLAIN_TEXT,
                ContentCategory.MARKUP,
                ContentCategory.TABLE,
                ContentCategory.IMAGE,
            }
        ),
        edits_images=True,
    )

    def __init__(
        self,
        project_id: Optional[str],
        info_types: Sequence[str] = (),
        timeout: int = 120,
        session: Optional[requests.Session] = None,
        url: str = DLP_URL,
    ):
        if not project_id:
            raise ConfigurationError("GCP project id is required (--gcp-project-id or GCP_PROJECT_ID)")
        if session is None:
            try:
                credentials, _ = google.auth.default(scopes=SCOPES)
            except DefaultCredentialsError as exc:
                raise AuthenticationError(f"gcp-dlp: {exc}") from exc
            session = AuthorizedSession(credentials)
        super().__init__(timeout=timeout, session=session)
        self.project_id = project_id
        self.info_types = list(info_types) or list(DEFAULT_INFO_TYPES)
        self.base = f"{url.rstrip('/')}/projects/{project_id}/locations/global"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return super()._request(method, url, **kwargs)
        except RefreshError as exc:
            raise AuthenticationError(f"gcp-dlp: {exc}") from exc

    def _inspect_config(self) -> Dict:
        return {"infoTypes": [{"name": n} for n in self.info_types], "includeQuote": False}

    def _inspect(self, item: Dict) -> _InspectResponse:
        data = self._post_json(
            f"{self.base}/content:inspect",
            {"item": item, "inspectConfig": self._inspect_config()},
        )
        return validate(_InspectResponse, data, self.name)

    def detect_text(self, text: str) -> List[Finding]:
        if not text:
            return []
        findings: List[Finding] = []
        for f in self._inspect({"value": text}).result.findings:
            rng = f.location.codepoint_range
            if rng is not None and rng.start < rng.end:
                findings.append(Finding(label=f.info_type.name, start=rng.start, end=rng.end))
        return findings

    def detect_table(self, table: Table) -> List[Finding]:
        if not table.rows:
            return []
        width = max(len(table.headers), max(len(r) for r in table.rows))
        headers = list(table.headers) or [f"column_{i}" for i in range(width)]
        item = {
            "table": {
                "headers": [{"name": h} for h in headers],
                "rows": [
                    {"values": [{"stringValue": v} for v in row]} for row in table.rows
                ],
            }
        }
        columns = {h: i for i, h in enumerate(headers)}
        findings: List[Finding] = []
        for f in self._inspect(item).result.findings:
            rng = f.location.codepoint_range
            for loc in f.location.content_locations:
                rec = loc.record_location
                if rec is None or rec.field_id is None or rec.table_location is None:
                    continue
                if rec.field_id.name not in columns:
                    raise MalformedResponseError(f"gcp-dlp: unknown column {rec.field_id.name!r}")
                findings.append(
                    Finding(
                        label=f.info_type.name,
                        row=rec.table_location.row_index,
                        column=columns[rec.field_id.name],
                        start=rng.start if rng else None,
                        end=rng.end if rng else None,
                    )
                )
        return findings

    def redact_image(self, img: Image.Image, media_type: Optional[str]) -> ImageRedaction:
        payload = {
            "byteItem": {
                "type": "IMAGE_PNG",
                "data": base64.b64encode(encode_image(img, "PNG")).decode("ascii"),
            },
            "inspectConfig": self._inspect_config(),
            "imageRedactionConfigs": [{"infoType": {"name": n}} for n in self.info_types],
        }
        data = self._post_json(f"{self.base}/image:redact", payload)
        redacted = data.get("redactedImage") if isinstance(data, dict) else None
        if not redacted:
            raise MalformedResponseError("gcp-dlp: no redacted image in the response")
        return ImageRedaction(image=decode_image(base64.b64decode(redacted)))
