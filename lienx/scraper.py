"""
Extraction orchestration for LienX.

One ``Scraper`` drives one jurisdiction through fetch, extraction, optional
valuation filtering, persistence and optional enrichment of the saved
records. ``run_all`` runs the configured jurisdictions one after another.
"""

import datetime
import time
from dataclasses import dataclass
from typing import List, Optional

from lienx.config import Config
from lienx.db.mongo import LienStore
from lienx.enrich import Enricher
from lienx.html_parser import extract_table_records, find_document_links, find_download_url
from lienx.jurisdictions import Jurisdiction, SourceKind, enabled_jurisdictions
from lienx.log import get_logger
from lienx.model import (
    ExtractionError,
    ExtractionRun,
    FetchError,
    LienRecord,
    ParseResult,
    PersistenceError,
    RunStatus,
)
from lienx.normalize import normalize_date
from lienx.parser import reconstruct_records
from lienx.pdfio import extract_pdf_text
from lienx.web import FetchResponse, Fetcher

logger = get_logger(__name__)


@dataclass
class ManualSource:
    """
    Listing text supplied by hand instead of fetched.
    """

    text: str
    sale_date: Optional[str] = None
    label: str = "manual input"


def viewer_fallback_url(url: str) -> str:
    """
    Turn a document viewer URL into a direct download URL.

    Args:
        url: Viewer URL ("https://host/file/d/abc/view")

    Returns:
        URL asking for the file export
    """
    base = url.split("?")[0]
    for suffix in ("/view", "/edit"):
        if base.endswith(suffix):
            base = base[: -len(suffix)]
    return f"{base}?export=download"


class Scraper:
    """
    Runs the extraction pipeline for one jurisdiction.
    """

    def __init__(
        self,
        jurisdiction: Jurisdiction,
        cfg: Config,
        fetcher: Fetcher,
        store: Optional[LienStore] = None,
        enricher: Optional[Enricher] = None,
    ):
        self.jurisdiction = jurisdiction
        self.cfg = cfg
        self.fetcher = fetcher
        self.store = store
        self.enricher = enricher
        self.last_run: Optional[ExtractionRun] = None

    def run(self, source: Optional[ManualSource] = None) -> ExtractionRun:
        """
        Run the pipeline once.

        Args:
            source: Hand-supplied listing text; the listing page is fetched when None

        Returns:
            The finished run. A listing page that cannot be fetched yields a
            FAILED run rather than an exception.

        Raises:
            PersistenceError: If the records cannot be stored
        """
        jur = self.jurisdiction
        run = ExtractionRun(jurisdiction=jur.key)
        self.last_run = run
        logger.info(f"Starting {jur.name} extraction run")

        try:
            result = self.extract(run, source)
        except FetchError as e:
            logger.error(f"{jur.name} listing fetch failed: {e}")
            return self._finish(run, RunStatus.FAILED, str(e))

        records = dedupe_records(result.records)
        run.records_skipped += result.skipped
        logger.info(f"{jur.name}: {len(records)} candidate records, {result.skipped} rows skipped")

        if self.enricher is not None and self.cfg.enrichment.validate_before_save and records:
            run.status = RunStatus.FILTERING
            records = self.filter_valid(records, run)
        run.records = records

        if self.store is not None:
            run.status = RunStatus.PERSISTING
            try:
                saved = self.store.upsert(records, jur.key, jur.county_id)
            except PersistenceError as e:
                logger.error(f"{jur.name} persistence failed: {e}")
                self._finish(run, RunStatus.FAILED, str(e))
                raise
            run.records_saved = saved.saved
            logger.info(f"{jur.name}: saved {run.records_saved} records ({saved.upserted} new)")

            if self.enricher is not None and self.cfg.enrichment.enrich_after_save and records:
                run.status = RunStatus.ENRICHING
                self.enrich_saved(records)

        return self._finish(run, RunStatus.COMPLETED)

    def extract(self, run: ExtractionRun, source: Optional[ManualSource] = None) -> ParseResult:
        """
        Fetch and extract candidate records.

        Args:
            run: Run being populated with document counts
            source: Hand-supplied listing text

        Returns:
            Candidate records and row skip count

        Raises:
            FetchError: If the listing page cannot be fetched
        """
        jur = self.jurisdiction
        if source is not None:
            run.status = RunStatus.EXTRACTING
            sale_date = normalize_date(source.sale_date) if source.sale_date else None
            result = reconstruct_records(source.text, jur, sale_date, self.cfg.parsing)
            run.documents_processed = 1
            logger.info(f"Parsed {len(result.records)} {jur.name} records from {source.label}")
            return result

        run.status = RunStatus.FETCHING
        page = self.fetcher.fetch(jur.listing_url)

        run.status = RunStatus.EXTRACTING
        if jur.source_kind == SourceKind.HTML_TABLE:
            run.documents_processed = 1
            return extract_table_records(page.text, jur, self.cfg.parsing)

        links = find_document_links(page.text, page.url, jur.links)
        if not links:
            logger.warning(f"No {jur.name} sale documents linked from {page.url}")
            return ParseResult()

        combined = ParseResult(strategy="documents")
        for url in links:
            try:
                result = self.extract_document(url)
            except (FetchError, ExtractionError) as e:
                logger.error(f"Skipping {jur.name} document {url}: {e}")
                run.documents_failed += 1
                continue
            run.documents_processed += 1
            logger.info(f"{url}: {len(result.records)} records ({result.skipped} skipped, {result.strategy})")
            combined.extend(result)
        return combined

    def extract_document(self, url: str) -> ParseResult:
        """
        Fetch one sale document and reconstruct its records.

        Args:
            url: Document URL

        Returns:
            Records and skip count

        Raises:
            FetchError: If the document cannot be fetched
            ExtractionError: If no text can be recovered from it
        """
        response = self.fetch_document(url)
        pdf = extract_pdf_text(response.content, self.cfg, source=url)
        if pdf.ocr_used:
            logger.info(f"{url} needed OCR")
        return reconstruct_records(pdf.text, self.jurisdiction, cfg=self.cfg.parsing, source_url=url)

    def fetch_document(self, url: str) -> FetchResponse:
        """
        Fetch a document, following viewer pages to the file they show.

        Args:
            url: Document URL

        Returns:
            The document response
        """
        response = self.fetcher.fetch(url)
        if response.is_pdf or not response.is_html:
            return response

        download_url = find_download_url(response.text, response.url)
        if download_url is None:
            download_url = viewer_fallback_url(url)
        logger.info(f"{url} returned a viewer page, fetching {download_url}")
        return self.fetcher.fetch(download_url)

    def filter_valid(self, records: List[LienRecord], run: ExtractionRun) -> List[LienRecord]:
        """
        Keep only records whose property has a valid valuation.

        Args:
            records: Candidate records
            run: Run whose skip count receives the rejections

        Returns:
            Records that passed
        """
        kept = []
        delay = self.cfg.enrichment.rate_limit_delay
        for i, record in enumerate(records):
            if i > 0 and delay > 0:
                time.sleep(delay)
            address = ", ".join(p for p in (record["property_address"], record.get("city"), record.get("zip")) if p)
            try:
                result = self.enricher.enrich_and_validate(record["parcel_id"], address)
            except Exception as e:
                logger.warning(f"Enrichment failed for {record['parcel_id']}: {e}")
                result = None

            if result is not None and result.is_valid:
                logger.debug(f"Keeping {record['parcel_id']}")
                kept.append(record)
            else:
                logger.debug(f"Dropping {record['parcel_id']} (no improvement value)")
                run.records_skipped += 1

        logger.info(f"{self.jurisdiction.name}: {len(kept)} of {len(records)} records passed valuation")
        return kept

    def enrich_saved(self, records: List[LienRecord]) -> int:
        """
        Fill valuation data for saved records.

        Args:
            records: Records that were just stored

        Returns:
            Number of records enriched
        """
        ids = self.store.find_ids(self.jurisdiction.key, [r["parcel_id"] for r in records])
        delay = self.cfg.enrichment.rate_limit_delay
        enriched = 0
        for i, (parcel_id, record_id) in enumerate(ids.items()):
            if i > 0 and delay > 0:
                time.sleep(delay)
            try:
                self.enricher.enrich_saved(record_id, parcel_id)
                enriched += 1
            except Exception as e:
                logger.warning(f"Could not enrich {record_id}: {e}")

        logger.info(f"{self.jurisdiction.name}: enriched {enriched} of {len(ids)} saved records")
        return enriched

    def _finish(self, run: ExtractionRun, status: RunStatus, error: Optional[str] = None) -> ExtractionRun:
        run.status = status
        run.error = error
        run.finished_at = datetime.datetime.utcnow()
        if status == RunStatus.COMPLETED:
            logger.info(
                f"{self.jurisdiction.name} run completed: {run.records_found} found, "
                f"{run.records_skipped} skipped, {run.records_saved} saved, "
                f"{run.documents_failed} document(s) failed"
            )
        if self.store is not None:
            self.store.log_run(run)
        return run


def dedupe_records(records: List[LienRecord]) -> List[LienRecord]:
    """
    Drop repeated parcels, keeping the first occurrence.

    Args:
        records: Records in document order

    Returns:
        Records with unique parcel ids
    """
    seen = set()
    unique = []
    for record in records:
        if record["parcel_id"] in seen:
            logger.debug(f"Dropping duplicate parcel {record['parcel_id']}")
            continue
        seen.add(record["parcel_id"])
        unique.append(record)
    return unique


def run_all(
    cfg: Config,
    fetcher: Fetcher,
    store: Optional[LienStore] = None,
    enricher: Optional[Enricher] = None,
    jurisdictions: Optional[List[str]] = None,
    raise_on_persistence_error: bool = True,
) -> List[ExtractionRun]:
    """
    Run every enabled jurisdiction in turn.

    Args:
        cfg: Application configuration
        fetcher: Shared fetcher
        store: Lien store
        enricher: Valuation enricher
        jurisdictions: Keys to run; the configured list when None
        raise_on_persistence_error: Re-raise a storage failure once every
            jurisdiction has been attempted

    Returns:
        One run per jurisdiction, in order

    Raises:
        PersistenceError: If storing failed for any jurisdiction
    """
    runs: List[ExtractionRun] = []
    failures: List[str] = []

    for jur in enabled_jurisdictions(jurisdictions or cfg.jurisdictions):
        scraper = Scraper(jur, cfg, fetcher, store=store, enricher=enricher)
        try:
            runs.append(scraper.run())
        except PersistenceError as e:
            runs.append(scraper.last_run)
            failures.append(f"{jur.name}: {e}")

    completed = sum(1 for run in runs if run.succeeded)
    logger.info(f"Finished {len(runs)} jurisdiction run(s), {completed} completed")

    if failures and raise_on_persistence_error:
        raise PersistenceError("; ".join(failures))
    return runs
