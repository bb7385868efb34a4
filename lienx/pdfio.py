"""
PDF text extraction for LienX.

Text is recovered by an ordered list of strategies sharing one interface
(``extract(buffer) -> str``). A strategy that raises or returns blank text
has failed, and the next one is tried. Nothing is written to disk.
"""

import io
import re
import zlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
from urllib.parse import unquote

import pdfplumber
from pypdf import PdfReader

from lienx.config import Config
from lienx.log import get_logger
from lienx.model import ExtractionError, PdfExtractionError
from lienx.ocr import ocr_pdf_bytes

logger = get_logger(__name__)

PDF_SIGNATURE = b"%PDF"

_PERCENT_RUN = re.compile(r"(?:%[0-9A-Fa-f]{2})+")
_STREAM_RE = re.compile(rb"stream\r?\n(.*?)\r?\n?endstream", re.S)
_TEXT_OP_RE = re.compile(
    rb"\[((?:[^\]\\]|\\.)*)\]\s*TJ"
    rb"|\(((?:[^()\\]|\\.)*)\)\s*(?:Tj|'|\")"
    rb"|(?<![A-Za-z])(?:T\*|Td|TD|Tm|ET)(?![A-Za-z])",
    re.S,
)
_ARRAY_ITEM_RE = re.compile(rb"\(((?:[^()\\]|\\.)*)\)|(-?\d+(?:\.\d+)?)")
_ESCAPES = {b"n": b"\n", b"r": b"\r", b"t": b"\t", b"b": b"\b", b"f": b"\f"}


@dataclass
class PdfText:
    """
    Text recovered from a PDF and the tier that produced it.
    """

    text: str
    strategy: str
    ocr_used: bool = False


class PdfTextStrategy:
    """
    One tier of the extraction chain.
    """

    name = "base"

    def extract(self, buffer: bytes) -> str:
        raise NotImplementedError


class PdfplumberStrategy(PdfTextStrategy):
    """
    Walk the page text objects with pdfplumber.

    When the walk finds nothing, or the document structure cannot be read
    at all, salvage string literals straight from the content streams
    before giving up. If a broken document yields no salvage either, the
    parser's error is raised.
    """

    name = "pdfplumber"

    def extract(self, buffer: bytes) -> str:
        pages = []
        try:
            with pdfplumber.open(io.BytesIO(buffer)) as pdf:
                for page_num, page in enumerate(pdf.pages, 1):
                    page_text = page.extract_text() or ""
                    logger.debug(f"pdfplumber page {page_num}: {len(page_text)} chars")
                    pages.append(page_text)
        except Exception as e:
            logger.info(f"pdfplumber could not read the document ({e}), scanning content streams")
            salvaged = decode_percent_escapes(salvage_text_fragments(buffer))
            if salvaged.strip():
                return salvaged
            raise

        text = decode_percent_escapes("\n".join(pages))
        if text.strip():
            return text

        logger.info("pdfplumber found no text objects, scanning content streams")
        return decode_percent_escapes(salvage_text_fragments(buffer))


class PypdfStrategy(PdfTextStrategy):
    """
    Second text-layer parser, for PDF variants pdfplumber chokes on.
    """

    name = "pypdf"

    def extract(self, buffer: bytes) -> str:
        reader = PdfReader(io.BytesIO(buffer), strict=False)
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n".join(pages)


class OcrStrategy(PdfTextStrategy):
    """
    Rasterize and recognize each page. Fails fast in restricted runtimes.
    """

    name = "ocr"

    def __init__(self, cfg: Config):
        self.cfg = cfg

    def extract(self, buffer: bytes) -> str:
        return ocr_pdf_bytes(buffer, self.cfg.ocr)


def build_strategies(cfg: Config) -> List[PdfTextStrategy]:
    """
    Build the configured tier list.

    Args:
        cfg: Application configuration

    Returns:
        Strategies in the order they should be tried
    """
    available = {
        PdfplumberStrategy.name: PdfplumberStrategy,
        PypdfStrategy.name: PypdfStrategy,
        OcrStrategy.name: lambda: OcrStrategy(cfg),
    }
    strategies = []
    for name in cfg.pdf.strategies:
        factory = available.get(name)
        if factory is None:
            logger.warning(f"Ignoring unknown PDF strategy: {name}")
            continue
        strategies.append(factory())
    return strategies


class PdfTextPipeline:
    """
    Tries each strategy in turn until one yields text.
    """

    def __init__(self, strategies: Sequence[PdfTextStrategy], min_text_chars: int = 1):
        self.strategies = list(strategies)
        self.min_text_chars = min_text_chars

    def extract(self, buffer: bytes, source: str = "<buffer>") -> PdfText:
        """
        Extract text from a PDF buffer.

        Args:
            buffer: PDF bytes
            source: Name used in log messages

        Returns:
            Text and the name of the tier that produced it

        Raises:
            PdfExtractionError: If every tier failed or yielded blank text
        """
        if not buffer:
            raise PdfExtractionError(f"Empty PDF buffer from {source}")

        if not buffer.lstrip()[:4].startswith(PDF_SIGNATURE):
            logger.warning(f"{source} does not start with a PDF signature (got {buffer[:8]!r}), parsing anyway")

        errors: Dict[str, str] = {}
        for strategy in self.strategies:
            try:
                text = strategy.extract(buffer)
            except Exception as e:
                logger.warning(f"{strategy.name} extraction failed for {source}: {e}")
                errors[strategy.name] = str(e) or type(e).__name__
                continue

            if len((text or "").strip()) < self.min_text_chars:
                logger.warning(f"{strategy.name} extracted no text from {source}")
                errors[strategy.name] = "no text extracted"
                continue

            logger.info(f"Extracted {len(text)} chars from {source} with {strategy.name}")
            return PdfText(text=text, strategy=strategy.name, ocr_used=strategy.name == OcrStrategy.name)

        raise PdfExtractionError(f"No text extractable from {source}", errors)


def extract_pdf_text(buffer: bytes, cfg: Optional[Config] = None, source: str = "<buffer>") -> PdfText:
    """
    Run the configured tier chain over a PDF buffer.

    Args:
        buffer: PDF bytes
        cfg: Application configuration
        source: Name used in log messages

    Returns:
        Extracted text
    """
    cfg = cfg or Config()
    pipeline = PdfTextPipeline(build_strategies(cfg), cfg.pdf.min_text_chars)
    return pipeline.extract(buffer, source)


def extract_pdf_file(path: str, cfg: Optional[Config] = None) -> PdfText:
    """
    Run the tier chain over a PDF on disk.

    Args:
        path: Path to the PDF file
        cfg: Application configuration

    Returns:
        Extracted text
    """
    try:
        with open(path, "rb") as f:
            buffer = f.read()
    except OSError as e:
        raise ExtractionError(f"Cannot read {path}: {e}")
    return extract_pdf_text(buffer, cfg, source=path)


def decode_percent_escapes(text: str) -> str:
    """
    Decode percent-escaped runs such as "MAIN%20ST".

    Args:
        text: Extracted text

    Returns:
        Text with escapes decoded
    """
    return _PERCENT_RUN.sub(lambda m: unquote(m.group(0), errors="replace"), text)


def salvage_text_fragments(buffer: bytes) -> str:
    """
    Scan raw content streams for text-showing operators.

    Used when the structural walk finds no text objects, typically because
    the page tree or fonts are damaged while the streams are intact.

    Args:
        buffer: PDF bytes

    Returns:
        Recovered text, one line per text positioning operator
    """
    lines: List[str] = []
    current: List[str] = []

    for stream in _iter_streams(buffer):
        for match in _TEXT_OP_RE.finditer(stream):
            array, literal = match.group(1), match.group(2)
            if array is not None:
                current.append(_decode_text_array(array))
            elif literal is not None:
                current.append(_unescape_literal(literal))
            elif current:
                lines.append("".join(current).strip())
                current = []
        if current:
            lines.append("".join(current).strip())
            current = []

    return "\n".join(line for line in lines if line)


def _iter_streams(buffer: bytes):
    for match in _STREAM_RE.finditer(buffer):
        data = match.group(1)
        try:
            yield zlib.decompress(data)
        except zlib.error:
            yield data


def _decode_text_array(array: bytes) -> str:
    parts = []
    for item in _ARRAY_ITEM_RE.finditer(array):
        if item.group(1) is not None:
            parts.append(_unescape_literal(item.group(1)))
        elif float(item.group(2)) < -200:
            # Large negative kerning is a word gap
            parts.append(" ")
    return "".join(parts)


def _unescape_literal(data: bytes) -> str:
    out = bytearray()
    i = 0
    while i < len(data):
        byte = data[i:i + 1]
        if byte != b"\\" or i + 1 >= len(data):
            out += byte
            i += 1
            continue
        nxt = data[i + 1:i + 2]
        if nxt in _ESCAPES:
            out += _ESCAPES[nxt]
            i += 2
        elif nxt and nxt in b"01234567":
            octal = re.match(rb"[0-7]{1,3}", data[i + 1:i + 4]).group(0)
            out.append(int(octal, 8) & 0xFF)
            i += 1 + len(octal)
        elif nxt in (b"\r", b"\n"):
            i += 2
        else:
            out += nxt
            i += 2
    return out.decode("latin-1")
