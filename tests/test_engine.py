import io

import pytest
from PIL import Image

from conftest import IMAGE, TEXT, FakeConverter, FakeRedacter, make_entry

from redacter.engine import EngineOptions, RedactionEngine, mask_text, rows_within, utf8_prefix
from redacter.errors import (
    AuthenticationError,
    MalformedResponseError,
    QuotaExceededError,
    TransientRedactionError,
)
from redacter.models import Box, ContentCategory, Finding, Outcome, Support, Table, TextRegion
from redacter.redacters.base import IMAGE_OCR, PDF_IMAGES, PDF_OCR, TABLE_AS_TEXT
from redacter.throttle import RateLimiter

TABLE = frozenset({ContentCategory.TABLE})


def _engine(redacters, converter=None, sleeps=None, **options):
    sleeps = [] if sleeps is None else sleeps
    return RedactionEngine(
        redacters,
        converter or FakeConverter(),
        EngineOptions(**options),
        sleep=sleeps.append,
    )


def _png(size=(20, 10), color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


# planning


def test_native_backends_are_preferred():
    text = FakeRedacter("text", native=TEXT)
    table = FakeRedacter("table", native=TABLE)
    engine = _engine([text, table])
    plan, reason = engine.plan(ContentCategory.TABLE)
    assert plan.support is Support.NATIVE
    assert plan.names == ["table"]
    assert reason is None


def test_conversion_used_only_without_native_backends():
    text = FakeRedacter("text", native=TEXT)
    engine = _engine([text])
    plan, _ = engine.plan(ContentCategory.TABLE)
    assert plan.support is Support.CONVERSION
    assert plan.route == TABLE_AS_TEXT
    assert engine.plan(ContentCategory.IMAGE)[0].route == IMAGE_OCR


def test_pdf_prefers_image_backends_over_ocr():
    text = FakeRedacter("text", native=TEXT)
    image = FakeRedacter("image", native=IMAGE)
    engine = _engine([text, image])
    plan, _ = engine.plan(ContentCategory.PDF)
    assert plan.route == PDF_IMAGES
    assert plan.names == ["image"]

    only_text = _engine([text]).plan(ContentCategory.PDF)[0]
    assert only_text.route == PDF_OCR


def test_selection_is_deterministic_and_keeps_user_order():
    a = FakeRedacter("a", native=TEXT)
    b = FakeRedacter("b", native=TEXT)
    engine = _engine([b, a])
    first = engine.plan(ContentCategory.PLAIN_TEXT)[0]
    again = _engine([b, a]).plan(ContentCategory.PLAIN_TEXT)[0]
    assert first.names == again.names == ["b", "a"]


def test_missing_converter_is_reported():
    image = FakeRedacter("image", native=IMAGE)
    engine = _engine([image], FakeConverter(pdf=False))
    plan, reason = engine.plan(ContentCategory.PDF)
    assert plan is None
    assert "PDF renderer" in reason
    plan, reason = _engine([image]).plan(ContentCategory.UNKNOWN)
    assert plan is None
    assert "unknown" in reason


# text


def test_masks_reported_span():
    engine = _engine([FakeRedacter(spans=[(10, 20)])])
    data = b"0123456789abcdefghij0123"
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, data)
    assert result.outcome is Outcome.REDACTED
    assert result.parts[0].data == b"0123456789XXXXXXXXXX0123"
    assert result.findings == 1
    assert result.backends == ["fake"]
    assert not result.sampled


def test_chain_is_a_fold():
    first = FakeRedacter("first", spans=[(0, 2)])
    second = FakeRedacter("second", spans=[(4, 6)])
    engine = _engine([first, second])
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"abcdefgh")
    assert second.calls == [("text", "XXcdefgh")]
    assert result.parts[0].data == b"XXcdXXgh"
    assert result.findings == 2
    assert result.backends == ["first", "second"]


def test_sampling_copies_tail_by_default():
    backend = FakeRedacter(spans=[(10, 20)])
    engine = _engine([backend], sampling_size=12)
    data = b"a" * 30
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, data)
    assert backend.calls == [("text", "a" * 12)]
    assert result.parts[0].data == b"a" * 10 + b"XX" + b"a" * 18
    assert result.sampled


def test_sampling_can_drop_tail():
    engine = _engine([FakeRedacter(spans=[(10, 20)])], sampling_size=12, sampling_tail="drop")
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"a" * 30)
    assert result.parts[0].data == b"a" * 10 + b"XX"
    assert result.sampled


def test_sampling_respects_utf8_boundaries():
    data = "aé".encode("utf-8")
    assert utf8_prefix(data, 2) == 1
    assert utf8_prefix(data, 3) == 3
    assert utf8_prefix(data, 10) == 3
    backend = FakeRedacter(spans=[])
    engine = _engine([backend], sampling_size=2)
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, data)
    assert backend.calls == [("text", "a")]
    assert result.parts[0].data == data


def test_mask_text_ignores_out_of_range():
    findings = [Finding(start=2, end=50), Finding(row=0, column=0)]
    assert mask_text("abcd", findings, "*") == "ab**"


def test_invalid_utf8_fails_item():
    engine = _engine([FakeRedacter()])
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"\xff\xfe")
    assert result.outcome is Outcome.FAILED
    assert result.error_kind == "conversion"


# tables


CSV = b"name,age\nalice,30\nbob,40\n"


def test_native_table_backend_masks_cells():
    engine = _engine([FakeRedacter("table", native=TABLE)])
    result = engine.redact(make_entry("p.csv"), "text/csv", ContentCategory.TABLE, CSV)
    out = result.parts[0].data
    assert out.startswith(b"name,age")
    assert b"XXXXX,30" in out
    assert b"bob,40" in out


def test_table_as_text_maps_findings_to_cells():
    # "alice,30\nbob,40\n": "bob" is 9..12
    engine = _engine([FakeRedacter("text", spans=[(9, 12)])])
    result = engine.redact(make_entry("p.csv"), "text/csv", ContentCategory.TABLE, CSV)
    out = result.parts[0].data
    assert b"alice,30" in out
    assert b"XXX,40" in out


def test_table_sampling_keeps_leading_rows():
    table = Table(["name"], [["aaaa"], ["bbbb"], ["cccc"]])
    assert rows_within(table, 10) == 2
    backend = FakeRedacter("table", native=TABLE)
    engine = _engine([backend], sampling_size=10, sampling_tail="drop")
    data = b"name\naaaa\nbbbb\ncccc\n"
    result = engine.redact(make_entry("p.csv"), "text/csv", ContentCategory.TABLE, data)
    assert backend.calls[0][1].rows == [["aaaa"], ["bbbb"]]
    assert b"cccc" not in result.parts[0].data
    assert result.sampled


# images and PDFs


def test_image_boxes_are_filled():
    engine = _engine([FakeRedacter("img", native=IMAGE, boxes=[(0, 0, 5, 5)])])
    result = engine.redact(make_entry("a.png"), "image/png", ContentCategory.IMAGE, _png())
    img = Image.open(io.BytesIO(result.parts[0].data))
    assert img.format == "PNG"
    assert img.getpixel((2, 2)) == (0, 0, 0)
    assert img.getpixel((10, 5)) == (255, 255, 255)


def test_edited_image_is_used_as_is():
    edited = Image.new("RGB", (20, 10), (1, 2, 3))
    engine = _engine([FakeRedacter("dlp", native=IMAGE, edited=edited)])
    result = engine.redact(make_entry("a.png"), "image/png", ContentCategory.IMAGE, _png())
    img = Image.open(io.BytesIO(result.parts[0].data)).convert("RGB")
    assert img.getpixel((19, 9)) == (1, 2, 3)


def test_image_through_ocr():
    regions = [TextRegion("hello", Box(0, 0, 8, 8)), TextRegion("world", Box(10, 0, 18, 8))]
    backend = FakeRedacter("text", spans=[(6, 11)])
    engine = _engine([backend], FakeConverter(regions=regions))
    result = engine.redact(make_entry("a.png"), "image/png", ContentCategory.IMAGE, _png())
    assert backend.calls == [("text", "hello world")]
    img = Image.open(io.BytesIO(result.parts[0].data))
    assert img.getpixel((12, 4)) == (0, 0, 0)
    assert img.getpixel((4, 4)) == (255, 255, 255)


def test_pdf_pages_become_ordered_images():
    backend = FakeRedacter("img", native=IMAGE, boxes=[(0, 0, 5, 5)])
    engine = _engine([backend], FakeConverter(pages=3))
    result = engine.redact(make_entry("doc.pdf"), "application/pdf", ContentCategory.PDF, b"%PDF-")
    assert result.outcome is Outcome.REDACTED
    assert [p.page for p in result.parts] == [0, 1, 2]
    assert all(p.media_type == "image/png" for p in result.parts)
    widths = [Image.open(io.BytesIO(p.data)).width for p in result.parts]
    assert widths == [40, 41, 42]
    first = Image.open(io.BytesIO(result.parts[0].data))
    assert first.getpixel((1, 1)) == (0, 0, 0)
    assert first.getpixel((30, 20)) == (255, 255, 255)


def test_pdf_through_ocr():
    regions = [TextRegion("call", Box(0, 0, 10, 10)), TextRegion("555", Box(12, 0, 22, 10))]
    backend = FakeRedacter("text", spans=[(5, 8)])
    engine = _engine([backend], FakeConverter(pages=2, regions=regions))
    result = engine.redact(make_entry("doc.pdf"), "application/pdf", ContentCategory.PDF, b"%PDF-")
    assert len(result.parts) == 2
    assert result.findings == 2
    page = Image.open(io.BytesIO(result.parts[1].data))
    assert page.getpixel((15, 5)) == (0, 0, 0)
    assert page.getpixel((5, 5)) == (255, 255, 255)


# failures


def test_transient_errors_are_retried_with_backoff():
    backend = FakeRedacter(failures=[TransientRedactionError("t"), QuotaExceededError("q")])
    sleeps = []
    engine = _engine([backend], sleeps=sleeps, retries=3, backoff=0.5)
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"x" * 30)
    assert result.outcome is Outcome.REDACTED
    assert sleeps == [0.5, 1.0]
    assert len(backend.calls) == 3


def test_exhausted_retries_fail_the_item():
    backend = FakeRedacter(failures=[TransientRedactionError("t")] * 2)
    sleeps = []
    engine = _engine([backend], sleeps=sleeps, retries=1)
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"abc")
    assert result.outcome is Outcome.FAILED
    assert result.error_kind == "redaction.transient"
    assert result.parts == []
    assert sleeps == [0.5]


def test_fatal_errors_propagate():
    backend = FakeRedacter(failures=[AuthenticationError("bad key")])
    engine = _engine([backend])
    with pytest.raises(AuthenticationError):
        engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"abc")


def test_backend_error_can_fall_back_to_raw_copy():
    backend = FakeRedacter(failures=[MalformedResponseError("junk")])
    engine = _engine([backend], allow_unsupported_copies=True)
    result = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"abc")
    assert result.outcome is Outcome.PASSTHROUGH_COPIED
    assert result.parts[0].data == b"abc"
    assert result.error_kind == "redaction.malformed_response"


def test_unsupported_category_is_skipped_or_copied():
    skipped = _engine([FakeRedacter()]).redact(
        make_entry("a.bin"), None, ContentCategory.UNKNOWN, b"\x00"
    )
    assert skipped.outcome is Outcome.SKIPPED
    assert skipped.reason
    copied = _engine([FakeRedacter()], allow_unsupported_copies=True).redact(
        make_entry("a.bin"), None, ContentCategory.UNKNOWN, b"\x00"
    )
    assert copied.outcome is Outcome.PASSTHROUGH_COPIED
    assert copied.parts[0].data == b"\x00"


def test_every_backend_call_goes_through_the_limiter():
    limiter = RateLimiter(1)
    engine = RedactionEngine(
        [FakeRedacter("a"), FakeRedacter("b")], FakeConverter(), EngineOptions(), limiter
    )
    engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"x" * 30)
    assert limiter.total == 2
    assert limiter.outstanding == 0
    assert limiter.peak == 1


def test_close_closes_backends():
    backend = FakeRedacter()
    _engine([backend]).close()
    assert backend.closed


class WordRedacter(FakeRedacter):
    """Deterministic backend flagging every occurrence of one word."""

    def __init__(self, word):
        super().__init__("word", spans=[])
        self.word = word

    def detect_text(self, text):
        self.calls.append(("text", text))
        found = []
        pos = text.find(self.word)
        while pos != -1:
            found.append(Finding(start=pos, end=pos + len(self.word)))
            pos = text.find(self.word, pos + 1)
        return found


def test_redacting_redacted_output_finds_nothing_new():
    engine = _engine([WordRedacter("Ann")])
    first = engine.redact(make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, b"Ann and Ann")
    assert first.findings == 2
    again = engine.redact(
        make_entry("a.txt"), "text/plain", ContentCategory.PLAIN_TEXT, first.parts[0].data
    )
    assert again.findings == 0
    assert again.parts[0].data == first.parts[0].data == b"XXX and XXX"
