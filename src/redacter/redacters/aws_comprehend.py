"""AWS Comprehend PII entity detection backend."""

from __future__ import annotations

from typing import Iterator, List, Optional, Tuple

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ..errors import (
    AuthenticationError,
    BackendUnavailableError,
    QuotaExceededError,
    RedactionError,
    TransientRedactionError,
)
from ..models import ContentCategory, Finding
from .base import BackendDescriptor, Redacter

# DetectPiiEntities accepts at most 100 KB of UTF-8 per request.
MAX_REQUEST_BYTES = 100_000

_AUTH_CODES = {
    "UnrecognizedClientException",
    "InvalidSignatureException",
    "ExpiredTokenException",
    "AccessDeniedException",
}
_QUOTA_CODES = {"ThrottlingException", "TooManyRequestsException", "LimitExceededException"}


def translate_comprehend_error(exc: Exception) -> RedactionError:
    if isinstance(exc, NoCredentialsError):
        return AuthenticationError(f"aws-comprehend: {exc}")
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        if code in _AUTH_CODES:
            return AuthenticationError(f"aws-comprehend: {code}")
        if code in _QUOTA_CODES:
            return QuotaExceededError(f"aws-comprehend: {code}")
        if code == "InternalServerException" or status >= 500:
            return TransientRedactionError(f"aws-comprehend: {code or status}")
        return BackendUnavailableError(f"aws-comprehend: {code}: {exc}")
    if isinstance(exc, (BotoConnectionError, ReadTimeoutError)):
        return TransientRedactionError(f"aws-comprehend: {exc}")
    return BackendUnavailableError(f"aws-comprehend: {exc}")


def chunk_text(text: str, max_bytes: int = MAX_REQUEST_BYTES) -> Iterator[Tuple[int, str]]:
    """Yield ``(offset, chunk)`` pieces whose UTF-8 size stays under ``max_bytes``."""
    start = 0
    while start < len(text):
        end = min(len(text), start + max_bytes)
        while len(text[start:end].encode("utf-8")) > max_bytes:
            end = start + max(1, (end - start) * 3 // 4)
        yield start, text[start:end]
        start = end


class AwsComprehendRedacter(Redacter):
    descriptor = BackendDescriptor(
        name="aws-comprehend",
        native=frozenset({ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP}),
    )

    def __init__(
        self,
        region: Optional[str] = None,
        language: str = "en",
        client=None,
        max_bytes: int = MAX_REQUEST_BYTES,
    ):
        self.client = client or boto3.client("comprehend", region_name=region)
        self.language = language
        self.max_bytes = max_bytes

    def detect_text(self, text: str) -> List[Finding]:
        findings: List[Finding] = []
        for offset, chunk in chunk_text(text, self.max_bytes):
            if not chunk.strip():
                continue
            try:
                result = self.client.detect_pii_entities(Text=chunk, LanguageCode=self.language)
            except (BotoCoreError, ClientError) as exc:
                raise translate_comprehend_error(exc) from exc
            for entity in result.get("Entities", []):
                start = entity.get("BeginOffset")
                end = entity.get("EndOffset")
                start = 0 if start is None else int(start)
                end = len(chunk) if end is None else int(end)
                if start < end:
                    findings.append(
                        Finding(
                            label=entity.get("Type", "PII"),
                            score=float(entity.get("Score", 1.0)),
                            start=offset + start,
                            end=offset + end,
                        )
                    )
        return findings
