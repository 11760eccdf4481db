import pytest
from botocore.exceptions import ClientError, NoCredentialsError

from redacter.errors import (
    AuthenticationError,
    BackendUnavailableError,
    QuotaExceededError,
    TransientRedactionError,
)
from redacter.redacters.aws_comprehend import (
    AwsComprehendRedacter,
    chunk_text,
    translate_comprehend_error,
)


class FakeComprehend:
    def __init__(self, entities=None):
        self.entities = entities or {}
        self.calls = []

    def detect_pii_entities(self, Text, LanguageCode):
        self.calls.append((Text, LanguageCode))
        return {"Entities": self.entities.get(Text, [])}


def _client_error(code, status=400):
    return ClientError(
        {"Error": {"Code": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "DetectPiiEntities",
    )


def test_entities_become_findings():
    client = FakeComprehend(
        {"call Ann": [{"Type": "NAME", "Score": 0.99, "BeginOffset": 5, "EndOffset": 8}]}
    )
    backend = AwsComprehendRedacter(client=client)
    (finding,) = backend.detect_text("call Ann")
    assert (finding.label, finding.start, finding.end) == ("NAME", 5, 8)
    assert client.calls == [("call Ann", "en")]


def test_long_text_is_chunked_with_offsets():
    text = "a" * 250
    chunks = list(chunk_text(text, max_bytes=100))
    assert [offset for offset, _ in chunks] == [0, 100, 200]
    assert "".join(c for _, c in chunks) == text

    wide = "é" * 80  # 160 bytes
    pieces = list(chunk_text(wide, max_bytes=100))
    assert all(len(c.encode("utf-8")) <= 100 for _, c in pieces)
    assert "".join(c for _, c in pieces) == wide


def test_findings_are_shifted_by_chunk_offset():
    client = FakeComprehend({"bbbb": [{"Type": "X", "BeginOffset": 1, "EndOffset": 3}]})
    backend = AwsComprehendRedacter(client=client, max_bytes=4)
    (finding,) = backend.detect_text("aaaabbbb")
    assert (finding.start, finding.end) == (5, 7)


@pytest.mark.parametrize(
    "exc,error",
    [
        (NoCredentialsError(), AuthenticationError),
        (_client_error("UnrecognizedClientException"), AuthenticationError),
        (_client_error("ThrottlingException"), QuotaExceededError),
        (_client_error("InternalServerException", 500), TransientRedactionError),
        (_client_error("TextSizeLimitExceededException"), BackendUnavailableError),
    ],
)
def test_error_translation(exc, error):
    assert isinstance(translate_comprehend_error(exc), error)


def test_client_errors_surface_as_redaction_errors():
    class Broken(FakeComprehend):
        def detect_pii_entities(self, Text, LanguageCode):
            raise _client_error("ThrottlingException")

    with pytest.raises(QuotaExceededError):
        AwsComprehendRedacter(client=Broken()).detect_text("hello")
