"""
OCR utilities for LienX.

Rasterizes PDF pages with pdf2image, prepares them with Pillow and runs
Tesseract through pytesseract. The OCR dependencies are imported lazily so
the text tiers work on hosts without Tesseract or Poppler.
"""

import os
import re
import shutil
from typing import List, Optional

from lienx.config import OcrConfig
from lienx.log import get_logger
from lienx.model import OcrUnavailableError

logger = get_logger(__name__)

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_INLINE_WHITESPACE = re.compile(r"[^\S\n]+")
_ZERO_CONFUSION = re.compile(r"(?<=\d)[Oo](?=\d)")
_ONE_CONFUSION = re.compile(r"(?<=\d)[lI](?=\d)")


def clean_ocr_text(text: str) -> str:
    """
    Correct common OCR misreads before pattern matching.

    Letter/digit substitutions only happen between two digits, so "1O5"
    becomes "105" while "ROAD" is left alone. Applying the cleanup twice gives
    the same result as applying it once.

    Args:
        text: Raw OCR output

    Returns:
        Cleaned text
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _CONTROL_CHARS.sub("", text)
    text = _INLINE_WHITESPACE.sub(" ", text)
    text = _ZERO_CONFUSION.sub("0", text)
    text = _ONE_CONFUSION.sub("1", text)
    return "\n".join(line.strip() for line in text.split("\n"))


def restricted_runtime_reason(cfg: OcrConfig) -> Optional[str]:
    """
    Explain why OCR cannot run here, if it cannot.

    Args:
        cfg: OCR configuration

    Returns:
        Human readable reason, or None when OCR is available
    """
    if not cfg.enabled:
        return "OCR is disabled in configuration"

    for var in cfg.restricted_env_vars:
        if os.environ.get(var):
            return f"OCR is not supported in restricted runtime ({var} is set)"

    if shutil.which("tesseract") is None:
        return "OCR is not available: tesseract executable not found on PATH"

    return None


def preprocess_image(image):
    """
    Prepare a rasterized page for recognition.

    Greyscale, stretch contrast, then sharpen.

    Args:
        image: PIL image

    Returns:
        Processed PIL image
    """
    from PIL import ImageFilter, ImageOps

    grey = ImageOps.grayscale(image)
    normalized = ImageOps.autocontrast(grey)
    return normalized.filter(ImageFilter.SHARPEN)


def rasterize_pdf(buffer: bytes, dpi: int) -> list:
    """
    Render every page of a PDF to an image in memory.

    Args:
        buffer: PDF bytes
        dpi: Render resolution

    Returns:
        List of PIL images, one per page
    """
    from pdf2image import convert_from_bytes

    return convert_from_bytes(buffer, dpi=dpi)


def ocr_pdf_bytes(buffer: bytes, cfg: OcrConfig) -> str:
    """
    Run OCR over every page of a PDF.

    Args:
        buffer: PDF bytes
        cfg: OCR configuration

    Returns:
        Cleaned text of all pages, pages separated by blank lines

    Raises:
        OcrUnavailableError: If OCR cannot run in this environment
    """
    reason = restricted_runtime_reason(cfg)
    if reason:
        raise OcrUnavailableError(reason)

    import pytesseract

    images = rasterize_pdf(buffer, cfg.dpi)
    logger.info(f"Running OCR on {len(images)} page(s) at {cfg.dpi} dpi")

    pages: List[str] = []
    for i, image in enumerate(images, 1):
        logger.debug(f"Applying OCR to page {i}")
        pages.append(pytesseract.image_to_string(preprocess_image(image), lang=cfg.lang))

    return clean_ocr_text("\n\n".join(pages))
