import io

import pytest
from PIL import Image

from conftest import make_entry

from redacter.config import parse_mime_override
from redacter.content_type import ContentTypeResolver, category_for_mime, sniff_media_type
from redacter.models import ContentCategory

PNG_HEAD = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8


@pytest.mark.parametrize(
    "media_type,category",
    [
        ("text/plain", ContentCategory.PLAIN_TEXT),
        ("text/csv", ContentCategory.TABLE),
        ("text/html; charset=utf-8", ContentCategory.MARKUP),
        ("application/json", ContentCategory.MARKUP),
        ("application/yaml", ContentCategory.MARKUP),
        ("text/markdown", ContentCategory.MARKUP),
        ("image/jpeg", ContentCategory.IMAGE),
        ("application/pdf", ContentCategory.PDF),
        ("application/octet-stream", ContentCategory.UNKNOWN),
        (None, ContentCategory.UNKNOWN),
    ],
)
def test_category_for_mime(media_type, category):
    assert category_for_mime(media_type) is category


def test_sniffing_recognizes_binary_formats():
    assert sniff_media_type(b"%PDF-1.7\n") == "application/pdf"
    assert sniff_media_type(PNG_HEAD) == "image/png"
    assert sniff_media_type(b"\xff\xd8\xff\xe0") == "image/jpeg"
    assert sniff_media_type(b"RIFF\x00\x00\x00\x00WEBPVP8 ") == "image/webp"
    assert sniff_media_type(b"hello") is None
    assert sniff_media_type(b"") is None


def test_bmp_needs_a_consistent_header():
    buf = io.BytesIO()
    Image.new("RGB", (4, 4)).save(buf, format="BMP")
    assert sniff_media_type(buf.getvalue()[:32]) == "image/bmp"
    assert sniff_media_type(b"BMW owner John Smith, plate 555-0100") is None
    assert sniff_media_type(b"BM") is None


def test_text_starting_with_bm_stays_text():
    resolver = ContentTypeResolver()
    assert resolver.resolve(make_entry("notes.txt"), b"BMW owner John Smith, plate 555-0100") == (
        "text/plain",
        ContentCategory.PLAIN_TEXT,
    )


def test_resolution_order():
    resolver = ContentTypeResolver()
    # magic bytes beat the extension
    assert resolver.resolve(make_entry("fake.txt"), PNG_HEAD) == ("image/png", ContentCategory.IMAGE)
    assert resolver.resolve(make_entry("data.csv"), b"a,b\n") == ("text/csv", ContentCategory.TABLE)
    assert resolver.resolve(make_entry("notes.md"), b"# t")[1] is ContentCategory.MARKUP
    assert resolver.resolve(make_entry("conf.yml"), b"a: 1")[1] is ContentCategory.MARKUP
    provider_typed = make_entry("blob", media_type="text/plain")
    assert resolver.resolve(provider_typed, b"xyz")[1] is ContentCategory.PLAIN_TEXT
    assert resolver.resolve(make_entry("blob.zzz-unknown"), b"xyz") == (None, ContentCategory.UNKNOWN)


def test_override_forces_plain_text_for_bin_files():
    resolver = ContentTypeResolver([parse_mime_override("text/plain=*.bin")])
    assert resolver.resolve(make_entry("dir/payload.bin"), PNG_HEAD) == (
        "text/plain",
        ContentCategory.PLAIN_TEXT,
    )
    assert resolver.resolve(make_entry("payload.zzz-unknown"), b"")[1] is ContentCategory.UNKNOWN


def test_first_matching_override_wins():
    resolver = ContentTypeResolver(
        [("text/csv", "*.log"), ("text/plain", "*.log")]
    )
    assert resolver.override_for(make_entry("x.log")) == "text/csv"


def test_category_is_cached_per_entry():
    resolver = ContentTypeResolver()
    entry = make_entry("unnamed")
    assert resolver.resolve(entry, PNG_HEAD)[1] is ContentCategory.IMAGE
    assert resolver.resolve(entry, b"%PDF-")[1] is ContentCategory.IMAGE


@pytest.mark.parametrize("value", ["text/plain", "=*.md", "plain=*.md", "text/plain="])
def test_invalid_mime_override(value):
    with pytest.raises(ValueError):
        parse_mime_override(value)
