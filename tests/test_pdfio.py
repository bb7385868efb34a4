"""
Tests for the PDF text extraction module.
"""

import logging
from unittest.mock import patch

import pytest

from lienx.config import Config
from lienx.model import ExtractionError, OcrUnavailableError, PdfExtractionError
from lienx.pdfio import (
    OcrStrategy,
    PdfplumberStrategy,
    PdfTextPipeline,
    PypdfStrategy,
    build_strategies,
    decode_percent_escapes,
    extract_pdf_file,
    extract_pdf_text,
    salvage_text_fragments,
)


class StaticStrategy:
    """Strategy returning fixed text."""

    def __init__(self, name, text=None, error=None):
        self.name = name
        self.text = text
        self.error = error
        self.calls = 0

    def extract(self, buffer):
        self.calls += 1
        if self.error:
            raise self.error
        return self.text


def test_extract_pdf_text_text_layer(pdf_builder):
    """Test the first tier reads a PDF with a text layer."""
    buffer = pdf_builder(["PIN OWNER NAME SITUS AMOUNT", "R5001 012 SMITH JOHN 123 MAIN ST 1,523.45"])

    result = extract_pdf_text(buffer)

    assert result.strategy == "pdfplumber"
    assert result.ocr_used is False
    assert result.text == "PIN OWNER NAME SITUS AMOUNT\nR5001 012 SMITH JOHN 123 MAIN ST 1,523.45"


def test_extract_pdf_file(tmp_path, pdf_builder):
    """Test extracting from a file on disk."""
    path = tmp_path / "sale.pdf"
    path.write_bytes(pdf_builder(["LIST OF PROPERTIES"]))

    assert "LIST OF PROPERTIES" in extract_pdf_file(str(path)).text


def test_extract_pdf_file_missing(tmp_path):
    """Test a missing file raises an extraction error."""
    with pytest.raises(ExtractionError):
        extract_pdf_file(str(tmp_path / "missing.pdf"))


def test_fallback_to_second_tier(pdf_builder):
    """Test the next tier runs when the first raises."""
    buffer = pdf_builder(["2026-00001 14-0184-0008-002-7 0 BOULEVARD GRANADA SW"])

    with patch.object(PdfplumberStrategy, "extract", side_effect=ValueError("bad xref")):
        result = extract_pdf_text(buffer)

    assert result.strategy == "pypdf"
    assert "14-0184-0008-002-7" in result.text


def test_unreadable_structure_is_salvaged():
    """Test content streams are scanned when pdfplumber cannot open the document."""
    cfg = Config()
    cfg.ocr.enabled = False
    buffer = (
        b"%PDF-1.4 garbage\n"
        b"stream\nBT (14-0184-0008-002-7 0 BOULEVARD GRANADA SW) Tj ET\nendstream\n"
    )

    result = extract_pdf_text(buffer, cfg)

    assert result.strategy == "pdfplumber"
    assert result.text == "14-0184-0008-002-7 0 BOULEVARD GRANADA SW"


def test_unreadable_structure_without_streams_raises():
    """Test the parser error surfaces when nothing can be salvaged."""
    with patch("lienx.pdfio.pdfplumber.open", side_effect=ValueError("bad xref")):
        with pytest.raises(ValueError):
            PdfplumberStrategy().extract(b"%PDF-1.4 garbage")


def test_blank_text_falls_through():
    """Test a tier returning whitespace counts as failed."""
    first = StaticStrategy("first", text="  \n ")
    second = StaticStrategy("second", text="PARCEL 12-345")

    result = PdfTextPipeline([first, second]).extract(b"%PDF-1.4")

    assert result.strategy == "second"
    assert result.text == "PARCEL 12-345"


def test_first_success_stops_chain():
    """Test later tiers do not run after a success."""
    first = StaticStrategy("first", text="text")
    second = StaticStrategy("second", text="other")

    PdfTextPipeline([first, second]).extract(b"%PDF-1.4")

    assert second.calls == 0


def test_all_tiers_fail():
    """Test the error carries every tier's failure in order."""
    pipeline = PdfTextPipeline([
        StaticStrategy("pdfplumber", error=ValueError("broken")),
        StaticStrategy("pypdf", text=""),
        StaticStrategy("ocr", error=OcrUnavailableError("restricted runtime")),
    ])

    with pytest.raises(PdfExtractionError) as excinfo:
        pipeline.extract(b"%PDF-1.4", source="sale.pdf")

    assert list(excinfo.value.errors) == ["pdfplumber", "pypdf", "ocr"]
    assert excinfo.value.errors["pypdf"] == "no text extracted"
    assert "restricted runtime" in str(excinfo.value)


def test_empty_buffer():
    """Test an empty buffer fails before any tier runs."""
    strategy = StaticStrategy("first", text="text")

    with pytest.raises(PdfExtractionError):
        PdfTextPipeline([strategy]).extract(b"")

    assert strategy.calls == 0


def test_missing_signature_is_only_a_warning(caplog):
    """Test a buffer without the PDF signature is still parsed."""
    with caplog.at_level(logging.WARNING):
        result = PdfTextPipeline([StaticStrategy("first", text="text")]).extract(b"<html>", source="page")

    assert result.text == "text"
    assert "PDF signature" in caplog.text


def test_ocr_tier_reports_ocr_used():
    """Test results from the OCR tier are flagged."""
    with patch("lienx.pdfio.ocr_pdf_bytes", return_value="R5001 012 SMITH"):
        result = PdfTextPipeline([OcrStrategy(Config())]).extract(b"%PDF-1.4")

    assert result.ocr_used is True
    assert result.strategy == "ocr"


def test_build_strategies_order():
    """Test the configured tier order and unknown names."""
    cfg = Config()
    cfg.pdf.strategies = ["pypdf", "missing", "pdfplumber"]

    strategies = build_strategies(cfg)

    assert [type(s) for s in strategies] == [PypdfStrategy, PdfplumberStrategy]


def test_salvage_text_fragments():
    """Test literal strings are recovered from a content stream."""
    content = b"BT /F1 12 Tf 50 750 Td (R5001 012) Tj T* (SMITH \\(JOHN\\)) Tj ET"
    buffer = b"%PDF-1.4\n4 0 obj\n<< /Length 60 >>\nstream\n" + content + b"\nendstream\nendobj\n"

    assert salvage_text_fragments(buffer) == "R5001 012\nSMITH (JOHN)"


def test_salvage_text_array_kerning():
    """Test large kerning gaps in text arrays become spaces."""
    buffer = b"stream\nBT [(MAIN)-250(ST)] TJ [(R)5(OAD)] TJ ET\nendstream"

    assert salvage_text_fragments(buffer) == "MAIN STROAD"


def test_salvage_octal_escapes():
    """Test octal escapes in literals."""
    buffer = b"stream\nBT (\\101\\102C) Tj ET\nendstream"

    assert salvage_text_fragments(buffer) == "ABC"


def test_decode_percent_escapes():
    """Test percent-escaped runs are decoded."""
    assert decode_percent_escapes("123%20MAIN%20ST") == "123 MAIN ST"
    assert decode_percent_escapes("100% PAID") == "100% PAID"
