"""Word-level OCR with Tesseract."""

from __future__ import annotations

from functools import lru_cache
from typing import List

import pandas as pd
import pytesseract
from PIL import Image

from ..errors import RecognitionError
from ..models import Box, TextRegion


def image_to_regions(img: Image.Image, lang: str = "eng", psm: int = 3) -> List[TextRegion]:
    """Recognize words in ``img``.

    Parameters
    ----------
    img:
        Input image.
    lang:
        Tesseract language code.
    psm:
        Page segmentation mode.

    Returns
    -------
    list[TextRegion]
        Recognized words in reading order with pixel boxes measured on
        ``img``.
    """
    if img.mode not in ("RGB", "L"):
        img = img.convert("RGB")
    config = f"--oem 1 --psm {psm} -c preserve_interword_spaces=1"
    try:
        tsv = pytesseract.image_to_data(
            img, lang=lang, config=config, output_type=pytesseract.Output.DATAFRAME
        )
    except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as exc:
        raise RecognitionError(f"OCR failed: {exc}") from exc
    tsv = tsv.dropna(subset=["text"]).reset_index(drop=True)
    return regions_from_tsv(tsv)


def regions_from_tsv(tsv: pd.DataFrame) -> List[TextRegion]:
    regions: List[TextRegion] = []
    for _, row in tsv.iterrows():
        text = str(row["text"]).strip()
        if not text or float(row.get("conf", 0)) < 0:
            continue
        left, top = int(row["left"]), int(row["top"])
        box = Box(left, top, left + int(row["width"]), top + int(row["height"]))
        regions.append(TextRegion(text=text, box=box))
    return regions


@lru_cache(maxsize=1)
def ocr_available() -> bool:
    try:
        pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, EnvironmentError):
        return False
    return True
