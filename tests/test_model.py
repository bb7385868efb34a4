"""
Tests for the data models.
"""

from datetime import datetime

import pytest

from lienx.model import (
    ConfigError,
    EnrichmentError,
    ExtractionError,
    ExtractionRun,
    FetchError,
    LienXError,
    OcrUnavailableError,
    OutputError,
    ParseResult,
    PdfExtractionError,
    PersistenceError,
    RunStatus,
)


def test_run_status_enum():
    """Test run status values."""
    assert RunStatus.PENDING.value == "pending"
    assert RunStatus.COMPLETED.value == "completed"
    assert RunStatus.FAILED.value == "failed"


def test_extraction_run_defaults():
    """Test a new run."""
    run = ExtractionRun(jurisdiction="fulton")

    assert run.status == RunStatus.PENDING
    assert run.records_found == 0
    assert isinstance(run.started_at, datetime)
    assert run.finished_at is None
    assert not run.succeeded


def test_extraction_run_to_dict(sample_records):
    """Test the run summary leaves out the records."""
    run = ExtractionRun(jurisdiction="gwinnett", status=RunStatus.COMPLETED, records=sample_records,
                        records_skipped=1, records_saved=2)

    summary = run.to_dict()

    assert summary["status"] == "completed"
    assert summary["records_found"] == 2
    assert summary["records_skipped"] == 1
    assert summary["records_saved"] == 2
    assert "records" not in summary
    assert run.succeeded


def test_parse_result_extend(sample_records):
    """Test merging parse results."""
    result = ParseResult(records=sample_records[:1], skipped=1, strategy="header")

    result.extend(ParseResult(records=sample_records[1:], skipped=2))

    assert len(result.records) == 2
    assert result.skipped == 3
    assert result.strategy == "header"


@pytest.mark.parametrize("error_class", [
    ConfigError, FetchError, ExtractionError, EnrichmentError, PersistenceError, OutputError,
])
def test_error_hierarchy(error_class):
    """Test every error derives from the package base error."""
    with pytest.raises(LienXError) as excinfo:
        raise error_class("Test error")

    assert str(excinfo.value) == "Test error"


def test_pdf_extraction_error_details():
    """Test tier errors are kept and summarized."""
    error = PdfExtractionError("No text", {"pdfplumber": "broken", "ocr": "restricted"})

    assert isinstance(error, ExtractionError)
    assert error.errors == {"pdfplumber": "broken", "ocr": "restricted"}
    assert str(error) == "No text (pdfplumber: broken; ocr: restricted)"


def test_ocr_unavailable_is_extraction_error():
    """Test OCR availability errors are extraction errors."""
    assert issubclass(OcrUnavailableError, ExtractionError)
