"""PDF rasterization.

Each page is rendered independently into a PIL image. ``pdf2image`` (Poppler)
is tried first; when Poppler is missing the pages are rendered with PyMuPDF.
"""

from __future__ import annotations

import os
import posixpath
import shutil
from typing import List

from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFSyntaxError,
)
from PIL import Image

from ..errors import RenderError


def _render_with_pymupdf(data: bytes, dpi: int) -> List[Image.Image]:
    import fitz  # PyMuPDF

    images: List[Image.Image] = []
    zoom = dpi / 72.0
    mat = fitz.Matrix(zoom, zoom)
    with fitz.open(stream=data, filetype="pdf") as doc:
        for page in doc:
            pix = page.get_pixmap(matrix=mat)
            mode = "RGB" if pix.n < 4 else "RGBA"
            im = Image.frombytes(mode, (pix.width, pix.height), pix.samples)
            if mode == "RGBA":
                im = im.convert("RGB")
            images.append(im)
    return images


def pdf_to_images(data: bytes, dpi: int = 200) -> List[Image.Image]:
    """Convert PDF bytes into one image per page.

    Parameters
    ----------
    data:
        Raw PDF document.
    dpi:
        Rasterization resolution in dots per inch.

    Environment
    -----------
    POPPLER_PATH:
        Optional explicit path to the Poppler binaries for pdf2image.

    Returns
    -------
    list[PIL.Image.Image]
        Page images in document order.

    Raises
    ------
    RenderError
        The document could not be parsed or no renderer is installed.
    """
    poppler_path = os.environ.get("POPPLER_PATH")
    try:
        if poppler_path:
            return convert_from_bytes(data, dpi=dpi, poppler_path=poppler_path)
        return convert_from_bytes(data, dpi=dpi)
    except PDFInfoNotInstalledError as e:
        try:
            return _render_with_pymupdf(data, dpi)
        except ImportError:
            raise RenderError(
                "Poppler not found for pdf2image. Install poppler-utils, set POPPLER_PATH, "
                "or install PyMuPDF for fallback."
            ) from e
        except RuntimeError as exc:
            raise RenderError(f"Failed to render PDF: {exc}") from exc
    except (PDFPageCountError, PDFSyntaxError) as exc:
        raise RenderError(f"Failed to render PDF: {exc}") from exc


def pdf_available() -> bool:
    """Whether any PDF renderer is usable in this environment."""
    poppler_path = os.environ.get("POPPLER_PATH")
    if poppler_path and os.path.exists(os.path.join(poppler_path, "pdfinfo")):
        return True
    if shutil.which("pdfinfo"):
        return True
    try:
        import fitz  # noqa: F401
    except ImportError:
        return False
    return True


def page_name(source_name: str, page: int) -> str:
    """Destination name of page ``page`` (zero based) of ``source_name``."""
    stem = posixpath.splitext(source_name)[0]
    return f"{stem}.page_{page:04d}.png"
