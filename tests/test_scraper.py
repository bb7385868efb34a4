"""
Tests for the extraction orchestrator.
"""

from unittest.mock import MagicMock, patch

import pytest

from lienx.db.mongo import MemoryLienStore, UpsertResult
from lienx.enrich import EnrichmentResult
from lienx.jurisdictions import COBB, FULTON, GWINNETT
from lienx.model import EnrichmentError, FetchError, PdfExtractionError, PersistenceError, RunStatus
from lienx.pdfio import PdfText
from lienx.scraper import ManualSource, Scraper, dedupe_records, run_all, viewer_fallback_url
from lienx.web import FetchResponse

COBB_PAGE = (
    "<table><tr><th>Parcel</th><th>Owner</th><th>Address</th><th>Tax Due</th></tr>"
    "<tr><td>12-345</td><td>J Smith</td><td>100 Main St Atlanta 30303</td><td>$1,250.00</td></tr></table>"
)

FULTON_PAGE = """
<ul>
  <li><a href="/uploads/Sheriffs-February-3-2026.pdf">Sheriff's Sale February</a></li>
  <li><a href="/uploads/Sheriffs-March-3-2026.pdf">Sheriff's Sale March</a></li>
</ul>
"""


def html_response(url, markup):
    """Create an HTML fetch response."""
    return FetchResponse(url=url, content=markup.encode("utf-8"), content_type="text/html")


def pdf_response(url):
    """Create a PDF fetch response."""
    return FetchResponse(url=url, content=b"%PDF-1.4 ...", content_type="application/pdf")


def test_html_table_run(sample_config):
    """Test a table county run from fetch to persistence."""
    fetcher = MagicMock()
    fetcher.fetch.return_value = html_response(COBB.listing_url, COBB_PAGE)
    store = MemoryLienStore()

    run = Scraper(COBB, sample_config, fetcher, store=store).run()

    assert run.status == RunStatus.COMPLETED
    assert run.records_found == 1
    assert run.records_saved == 1
    assert run.documents_processed == 1
    assert "cobb::12-345" in store.docs
    assert store.docs["cobb::12-345"]["county_id"] == 3
    assert store.runs[-1]["status"] == "completed"


def test_listing_fetch_failure_returns_failed_run(sample_config):
    """Test a listing page that cannot be fetched fails the run without raising."""
    fetcher = MagicMock()
    fetcher.fetch.side_effect = FetchError("Failed to fetch listing: timeout")
    store = MemoryLienStore()

    run = Scraper(FULTON, sample_config, fetcher, store=store).run()

    assert run.status == RunStatus.FAILED
    assert "timeout" in run.error
    assert run.finished_at is not None
    assert store.docs == {}
    assert store.runs[-1]["status"] == "failed"


@patch("lienx.scraper.extract_pdf_text")
def test_document_failures_are_isolated(mock_extract_pdf_text, sample_config, fulton_text):
    """Test one failing document does not stop the others."""
    fetcher = MagicMock()
    fetcher.fetch.side_effect = [
        html_response(FULTON.listing_url, FULTON_PAGE),
        pdf_response("https://fcsoga.org/uploads/Sheriffs-February-3-2026.pdf"),
        FetchError("Failed to fetch March document"),
    ]
    mock_extract_pdf_text.return_value = PdfText(text=fulton_text, strategy="pdfplumber")

    run = Scraper(FULTON, sample_config, fetcher).run()

    assert run.status == RunStatus.COMPLETED
    assert run.documents_processed == 1
    assert run.documents_failed == 1
    assert run.records_found == 3


@patch("lienx.scraper.extract_pdf_text")
def test_unreadable_pdf_is_counted(mock_extract_pdf_text, sample_config):
    """Test a PDF with no extractable text is counted as failed."""
    fetcher = MagicMock()
    fetcher.fetch.side_effect = [
        html_response(FULTON.listing_url, FULTON_PAGE),
        pdf_response("https://fcsoga.org/uploads/a.pdf"),
        pdf_response("https://fcsoga.org/uploads/b.pdf"),
    ]
    mock_extract_pdf_text.side_effect = PdfExtractionError("No text", {"pdfplumber": "no text extracted"})

    run = Scraper(FULTON, sample_config, fetcher).run()

    assert run.status == RunStatus.COMPLETED
    assert run.documents_failed == 2
    assert run.records == []


def test_no_document_links(sample_config):
    """Test a listing page without sale documents completes empty."""
    fetcher = MagicMock()
    fetcher.fetch.return_value = html_response(FULTON.listing_url, "<p>No sale this month.</p>")

    run = Scraper(FULTON, sample_config, fetcher).run()

    assert run.status == RunStatus.COMPLETED
    assert run.records == []
    fetcher.fetch.assert_called_once()


def test_manual_source(sample_config, gwinnett_text):
    """Test pasted text feeds the same reconstruction without fetching."""
    fetcher = MagicMock()

    run = Scraper(GWINNETT, sample_config, fetcher).run(ManualSource(gwinnett_text, sale_date="3/3/2026"))

    assert run.status == RunStatus.COMPLETED
    assert [r["parcel_id"] for r in run.records] == ["R5001 012", "R6002 004A"]
    assert all(r["sale_date"] == "2026-03-03" for r in run.records)
    fetcher.fetch.assert_not_called()


@patch("lienx.scraper.time.sleep")
def test_enrichment_filter(mock_sleep, sample_config, gwinnett_text):
    """Test only records with a valid valuation are kept."""
    sample_config.enrichment.rate_limit_delay = 0.2
    sample_config.enrichment.enrich_after_save = False
    enricher = MagicMock()
    enricher.enrich_and_validate.side_effect = [
        EnrichmentResult(is_valid=True, property_data={"assessedImprovementValue": 1}),
        EnrichmentResult(is_valid=False),
    ]
    store = MemoryLienStore()

    run = Scraper(GWINNETT, sample_config, MagicMock(), store=store, enricher=enricher).run(
        ManualSource(gwinnett_text)
    )

    assert [r["parcel_id"] for r in run.records] == ["R5001 012"]
    assert run.records_skipped == 1
    assert run.records_saved == 1
    mock_sleep.assert_called_once_with(0.2)
    enricher.enrich_and_validate.assert_any_call("R5001 012", "123 MAIN ST, LAWRENCEVILLE")


@patch("lienx.scraper.time.sleep")
def test_enrichment_failures_skip_records(mock_sleep, sample_config, gwinnett_text):
    """Test records are skipped when the lookup fails or returns nothing."""
    sample_config.enrichment.enrich_after_save = False
    enricher = MagicMock()
    enricher.enrich_and_validate.side_effect = [EnrichmentError("service down"), None]

    run = Scraper(GWINNETT, sample_config, MagicMock(), enricher=enricher).run(ManualSource(gwinnett_text))

    assert run.status == RunStatus.COMPLETED
    assert run.records == []
    assert run.records_skipped == 2


@patch("lienx.scraper.time.sleep")
def test_enrich_saved_records(mock_sleep, sample_config, gwinnett_text):
    """Test saved records are enriched and failures do not stop the run."""
    sample_config.enrichment.validate_before_save = False
    enricher = MagicMock()
    enricher.enrich_saved.side_effect = [None, EnrichmentError("no property")]
    store = MemoryLienStore()

    run = Scraper(GWINNETT, sample_config, MagicMock(), store=store, enricher=enricher).run(
        ManualSource(gwinnett_text)
    )

    assert run.status == RunStatus.COMPLETED
    assert run.records_saved == 2
    enricher.enrich_saved.assert_any_call("gwinnett::R5001 012", "R5001 012")
    enricher.enrich_saved.assert_any_call("gwinnett::R6002 004A", "R6002 004A")


def test_persistence_failure_raises(sample_config):
    """Test a storage failure fails the run and is raised."""
    fetcher = MagicMock()
    fetcher.fetch.return_value = html_response(COBB.listing_url, COBB_PAGE)
    store = MagicMock()
    store.upsert.side_effect = PersistenceError("connection refused")
    scraper = Scraper(COBB, sample_config, fetcher, store=store)

    with pytest.raises(PersistenceError):
        scraper.run()

    assert scraper.last_run.status == RunStatus.FAILED
    assert "connection refused" in scraper.last_run.error
    store.log_run.assert_called_once_with(scraper.last_run)


def test_run_all_attempts_every_jurisdiction(sample_config):
    """Test a storage failure is raised only after every county ran."""
    sample_config.jurisdictions = ["cobb", "dekalb"]
    fetcher = MagicMock()
    fetcher.fetch.return_value = html_response(COBB.listing_url, COBB_PAGE)
    store = MagicMock()
    store.upsert.side_effect = [PersistenceError("disk full"), UpsertResult()]

    with pytest.raises(PersistenceError) as excinfo:
        run_all(sample_config, fetcher, store=store)

    assert "Cobb" in str(excinfo.value)
    assert fetcher.fetch.call_count == 2


def test_run_all_collects_runs(sample_config):
    """Test runs are returned in order when failures are not raised."""
    sample_config.jurisdictions = ["cobb", "dekalb"]
    fetcher = MagicMock()
    fetcher.fetch.return_value = html_response(COBB.listing_url, COBB_PAGE)
    store = MagicMock()
    store.upsert.side_effect = [PersistenceError("disk full"), UpsertResult()]

    runs = run_all(sample_config, fetcher, store=store, raise_on_persistence_error=False)

    assert [run.jurisdiction for run in runs] == ["cobb", "dekalb"]
    assert runs[0].status == RunStatus.FAILED
    assert runs[1].status == RunStatus.COMPLETED


@patch("lienx.scraper.extract_pdf_text")
def test_viewer_page_is_followed(mock_extract_pdf_text, sample_config, gwinnett_text):
    """Test a viewer page leads to the file it shows."""
    viewer = html_response(
        "https://docs.example.com/file/d/abc/view",
        '<a href="https://docs.example.com/uc?id=abc&amp;export=download">Download</a>',
    )
    fetcher = MagicMock()
    fetcher.fetch.side_effect = [viewer, pdf_response("https://docs.example.com/uc?id=abc&export=download")]
    mock_extract_pdf_text.return_value = PdfText(text=gwinnett_text, strategy="pdfplumber")

    result = Scraper(GWINNETT, sample_config, fetcher).extract_document("https://docs.example.com/file/d/abc/view")

    assert len(result.records) == 2
    assert fetcher.fetch.call_args_list[1][0][0] == "https://docs.example.com/uc?id=abc&export=download"


def test_viewer_fallback_url():
    """Test building a download URL from a viewer URL."""
    assert viewer_fallback_url("https://docs.example.com/file/d/abc/view?usp=sharing") == (
        "https://docs.example.com/file/d/abc?export=download"
    )


def test_dedupe_records(sample_records):
    """Test repeated parcels are dropped."""
    records = sample_records + [dict(sample_records[0], owner_name="OTHER")]

    unique = dedupe_records(records)

    assert len(unique) == 2
    assert unique[0]["owner_name"] == "SMITH JOHN"
