"""Opaque box redaction on raster images.

Boxes are filled with a solid colour and no blending. A box covers pixels
``x1 <= x < x2`` and ``y1 <= y < y2`` after being rescaled from the image it
was measured on to the image being redacted, and is clamped to the bounds.
"""

from __future__ import annotations

import io
import math
from typing import Iterable, Optional, Tuple

from PIL import Image, ImageDraw

from .errors import ConversionError
from .models import Box, Finding

_FORMATS = {
    "image/png": "PNG",
    "image/jpeg": "JPEG",
    "image/jpg": "JPEG",
    "image/gif": "GIF",
    "image/bmp": "BMP",
    "image/tiff": "TIFF",
    "image/webp": "WEBP",
}


def _clamp(box: Box, W: int, H: int) -> Optional[Tuple[int, int, int, int]]:
    """Integer pixel bounds covering ``box``; ``None`` when nothing is left."""
    x1 = max(0, int(math.floor(box.x1)))
    y1 = max(0, int(math.floor(box.y1)))
    x2 = min(W, int(math.ceil(box.x2)))
    y2 = min(H, int(math.ceil(box.y2)))
    if x1 >= x2 or y1 >= y2:
        return None
    return x1, y1, x2, y2


def _fill_for(img: Image.Image, fill_rgb):
    if img.mode == "RGBA":
        return tuple(fill_rgb) + (255,)
    if img.mode in ("L", "1"):
        r, g, b = fill_rgb
        return int(0.299 * r + 0.587 * g + 0.114 * b)
    return tuple(fill_rgb)


def _palette_index(img: Image.Image, fill_rgb) -> int:
    """Index of the palette colour closest to ``fill_rgb``, skipping the transparent one."""
    palette = img.getpalette() or []
    transparent = img.info.get("transparency")
    best, best_dist = 0, None
    for i in range(len(palette) // 3):
        if i == transparent:
            continue
        r, g, b = palette[3 * i : 3 * i + 3]
        dist = (r - fill_rgb[0]) ** 2 + (g - fill_rgb[1]) ** 2 + (b - fill_rgb[2]) ** 2
        if best_dist is None or dist < best_dist:
            best, best_dist = i, dist
    return best


def redact_image(
    img: Image.Image,
    findings: Iterable[Finding],
    fill_rgb=(0, 0, 0),
) -> Image.Image:
    """Return a copy of ``img`` with every pixel finding filled.

    Parameters
    ----------
    img:
        Source image; it is not modified.
    findings:
        Pixel findings; non-pixel findings are ignored.
    fill_rgb:
        Fill color as an RGB tuple.

    Returns
    -------
    PIL.Image.Image
        Redacted image in RGB, RGBA, L or P mode. Palette images keep their
        palette and are filled with its closest colour.
    """
    if img.mode not in ("RGB", "RGBA", "L", "P"):
        img = img.convert("RGBA" if "A" in img.getbands() else "RGB")
    else:
        img = img.copy()
    W, H = img.size
    draw = ImageDraw.Draw(img)
    fill = _palette_index(img, fill_rgb) if img.mode == "P" else _fill_for(img, fill_rgb)
    for f in findings:
        if not f.is_pixel:
            continue
        rect = _clamp(f.scale_to((W, H)).box, W, H)
        if rect is None:
            continue
        x1, y1, x2, y2 = rect
        # ImageDraw includes both corners
        draw.rectangle([x1, y1, x2 - 1, y2 - 1], fill=fill)
    return img


def image_format(media_type: Optional[str], img: Optional[Image.Image] = None) -> str:
    if media_type and media_type.lower() in _FORMATS:
        return _FORMATS[media_type.lower()]
    if img is not None and img.format:
        return img.format
    return "PNG"


def decode_image(data: bytes) -> Image.Image:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (OSError, Image.DecompressionBombError) as exc:
        raise ConversionError(f"Failed to decode image: {exc}") from exc
    return img


def encode_image(img: Image.Image, fmt: str = "PNG") -> bytes:
    if fmt == "JPEG" and img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def redact_image_bytes(
    data: bytes,
    media_type: Optional[str],
    findings: Iterable[Finding],
    fill_rgb=(0, 0, 0),
) -> bytes:
    """Decode, redact and re-encode an image keeping its format."""
    src = decode_image(data)
    fmt = image_format(media_type, src)
    return encode_image(redact_image(src, findings, fill_rgb), fmt)


__all__ = [
    "redact_image",
    "redact_image_bytes",
    "decode_image",
    "encode_image",
    "image_format",
]
