"""Conversions that bring content into a form a backend can process."""

from __future__ import annotations

from typing import List

from PIL import Image

from ..models import Table, TextRegion
from . import align, ocr, pdf, tables


class ContentConverter:
    """Bundles rendering, OCR and CSV handling with the run's options.

    Tests substitute a subclass to avoid Poppler and Tesseract.
    """

    def __init__(
        self,
        pdf_dpi: int = 200,
        ocr_lang: str = "eng",
        csv_delimiter: str = ",",
        csv_headers: bool = True,
    ):
        self.pdf_dpi = pdf_dpi
        self.ocr_lang = ocr_lang
        self.csv_delimiter = csv_delimiter
        self.csv_headers = csv_headers

    def pdf_available(self) -> bool:
        return pdf.pdf_available()

    def ocr_available(self) -> bool:
        return ocr.ocr_available()

    def render_pdf(self, data: bytes) -> List[Image.Image]:
        return pdf.pdf_to_images(data, dpi=self.pdf_dpi)

    def recognize(self, img: Image.Image) -> List[TextRegion]:
        return ocr.image_to_regions(img, lang=self.ocr_lang)

    def parse_table(self, data: bytes) -> Table:
        return tables.parse_table(data, self.csv_delimiter, self.csv_headers)

    def serialize_table(self, table: Table) -> bytes:
        return tables.serialize_table(table, self.csv_delimiter)


__all__ = ["ContentConverter", "align", "ocr", "pdf", "tables"]
