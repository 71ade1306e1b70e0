import logging
import os
from dataclasses import dataclass

import fitz  # PyMuPDF

from app.core.exceptions import ConversionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RasterizedImage:
    data: bytes
    filename: str
    content_type: str = "image/png"


def convert_pdf_to_image(pdf_bytes: bytes, filename: str = "resume.pdf", dpi: int = 150) -> RasterizedImage:
    """
    Render the first page of a PDF to PNG using PyMuPDF (no poppler dependency).

    Args:
        pdf_bytes: Raw PDF file bytes
        filename: Original filename, used to name the image
        dpi: Resolution for conversion

    Returns:
        RasterizedImage holding the PNG bytes
    """
    try:
        pdf_document = fitz.open(stream=pdf_bytes, filetype="pdf")
    except Exception as e:
        raise ConversionError(f"Could not open PDF: {e}") from e

    try:
        if len(pdf_document) == 0:
            raise ConversionError("PDF has no pages")
        # Default PDF resolution is 72 DPI
        zoom = dpi / 72.0
        pix = pdf_document[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom))
        image_bytes = pix.tobytes("png")
    except ConversionError:
        raise
    except Exception as e:
        raise ConversionError(f"Failed to render PDF page: {e}") from e
    finally:
        pdf_document.close()

    stem = os.path.splitext(os.path.basename(filename or "resume"))[0] or "resume"
    logger.debug(f"Rendered preview for {filename} ({len(image_bytes)} bytes at {dpi} dpi)")
    return RasterizedImage(data=image_bytes, filename=f"{stem}.png")
