from typing import List, Optional, Sequence, Tuple

import pytest
from PIL import Image

from redacter.convert import ContentConverter
from redacter.models import Box, ContentCategory, Entry, Finding, StorageLocation, TextRegion
from redacter.redacters.base import BackendDescriptor, ImageRedaction, Redacter
from redacter.settings import reset_settings_cache
from redacter.storage.base import StorageProvider

TEXT = frozenset({ContentCategory.PLAIN_TEXT, ContentCategory.MARKUP})
IMAGE = frozenset({ContentCategory.IMAGE})


class FakeRedacter(Redacter):
    """Flags fixed character spans or pixel boxes and records every call.

    ``failures`` are raised, in order, by the next calls before any result
    is returned.
    """

    def __init__(
        self,
        name: str = "fake",
        native=TEXT,
        spans: Sequence[Tuple[int, int]] = ((10, 20),),
        boxes: Sequence[Tuple[float, float, float, float]] = (),
        edited: Optional[Image.Image] = None,
        failures: Sequence[Exception] = (),
    ):
        self.descriptor = BackendDescriptor(
            name=name, native=frozenset(native), edits_images=edited is not None
        )
        self.spans = list(spans)
        self.boxes = list(boxes)
        self.edited = edited
        self.failures = list(failures)
        self.calls: List[tuple] = []
        self.closed = False

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)

    def detect_text(self, text):
        self.calls.append(("text", text))
        self._maybe_fail()
        return [
            Finding(label=self.name, start=s, end=min(e, len(text)))
            for s, e in self.spans
            if s < len(text)
        ]

    def detect_table(self, table):
        self.calls.append(("table", table))
        self._maybe_fail()
        return [Finding(label=self.name, row=0, column=0)] if table.rows else []

    def redact_image(self, img, media_type):
        self.calls.append(("image", img.size))
        self._maybe_fail()
        if self.edited is not None:
            return ImageRedaction(image=self.edited)
        return ImageRedaction(
            findings=[Finding(label=self.name, box=Box(*b), space=img.size) for b in self.boxes]
        )

    def close(self):
        self.closed = True


class FakeConverter(ContentConverter):
    """Renders blank pages of increasing width and returns canned OCR regions."""

    def __init__(self, pages: int = 0, regions: Sequence[TextRegion] = (), pdf=True, ocr=True, **kw):
        super().__init__(**kw)
        self.pages = pages
        self.regions = list(regions)
        self._pdf = pdf
        self._ocr = ocr

    def pdf_available(self):
        return self._pdf

    def ocr_available(self):
        return self._ocr

    def render_pdf(self, data):
        return [Image.new("RGB", (40 + i, 30), (255, 255, 255)) for i in range(self.pages)]

    def recognize(self, img):
        return list(self.regions)


class PagedStorage(StorageProvider):
    """In-memory bucket listed in fixed size pages; counts fetched pages."""

    def __init__(self, names: Sequence[str], page_size: int = 2):
        super().__init__(StorageLocation(scheme="s3", bucket="bucket"))
        self.names = list(names)
        self.page_size = page_size
        self.pages_fetched = 0

    def list(self, prefix=""):
        for i in range(0, len(self.names), self.page_size):
            self.pages_fetched += 1
            for name in self.names[i : i + self.page_size]:
                yield Entry(path=name, location=self.location, size=len(name))


def make_entry(path: str, size: Optional[int] = None, media_type: Optional[str] = None) -> Entry:
    return Entry(path=path, location=StorageLocation(scheme="file", path="/src/"), size=size, media_type=media_type)


@pytest.fixture(autouse=True)
def _clean_settings(monkeypatch: pytest.MonkeyPatch):
    for var in (
        "GCP_PROJECT_ID",
        "GOOGLE_CLOUD_PROJECT",
        "OPENAI_API_KEY",
        "GEMINI_API_KEY",
        "REDACTER_HMAC_KEY",
        "REDACTER_WORKERS",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("REDACTER_PROGRESS", "false")
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def src_dir(tmp_path):
    d = tmp_path / "src"
    d.mkdir()
    return d


@pytest.fixture
def dst_dir(tmp_path):
    return tmp_path / "dst"
