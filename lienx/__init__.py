"""
LienX - County Tax Lien Extraction System.

A system for extracting candidate tax lien records from county tax sale
listings published as HTML tables, text PDFs or scanned PDFs.
"""

__version__ = "0.1.0"

from lienx.model import LienRecord, ExtractionRun, RunStatus, ParseResult
from lienx.config import Config, load_config
from lienx.jurisdictions import JURISDICTIONS, get_jurisdiction
from lienx.pdfio import extract_pdf_text
from lienx.parser import reconstruct_records
from lienx.html_parser import extract_table_records
from lienx.scraper import ManualSource, Scraper, run_all
from lienx.writers import write_json, write_csv, write_ndjson, write_outputs

__all__ = [
    "LienRecord",
    "ExtractionRun",
    "RunStatus",
    "ParseResult",
    "Config",
    "load_config",
    "JURISDICTIONS",
    "get_jurisdiction",
    "extract_pdf_text",
    "reconstruct_records",
    "extract_table_records",
    "ManualSource",
    "Scraper",
    "run_all",
    "write_json",
    "write_csv",
    "write_ndjson",
    "write_outputs",
]
