"""
Command-line interface for LienX.
"""

import argparse
import json
import logging
import sys
from typing import List, Optional

from lienx.config import Config, load_config
from lienx.db.mongo import build_store
from lienx.enrich import build_enricher
from lienx.html_parser import extract_table_records
from lienx.jurisdictions import JURISDICTIONS, get_jurisdiction
from lienx.log import configure_logging
from lienx.model import ConfigError, ExtractionRun, LienRecord
from lienx.parser import reconstruct_records
from lienx.pdfio import extract_pdf_file
from lienx.scraper import ManualSource, Scraper, run_all
from lienx.web import Fetcher
from lienx.writers import write_outputs

logger = logging.getLogger(__name__)


def apply_output_overrides(config: Config, args: argparse.Namespace) -> None:
    """
    Point the writers at the paths given on the command line.

    Args:
        config: Configuration to update
        args: Command-line arguments
    """
    if args.json:
        config.output.json_path = args.json
    if args.csv:
        config.output.csv_path = args.csv
    if args.ndjson:
        config.output.ndjson_path = args.ndjson


def read_manual_source(args: argparse.Namespace) -> ManualSource:
    if args.text_file:
        with open(args.text_file, "r", encoding="utf-8") as f:
            text = f.read()
    else:
        text = args.text
    return ManualSource(text=text, sale_date=args.sale_date, label=args.text_file or "command line")


def print_summary(runs: List[ExtractionRun]) -> None:
    print(json.dumps([run.to_dict() for run in runs], indent=2, default=str))


def finish(records: List[LienRecord], config: Config) -> None:
    write_outputs(records, config)
    logger.info(f"Extracted {len(records)} records")


def process_command(args: argparse.Namespace) -> int:
    """
    Process command-line arguments.

    Args:
        args: Command-line arguments

    Returns:
        Exit code
    """
    config = load_config(args.config)
    configure_logging(config, args.log_level)
    apply_output_overrides(config, args)

    if args.command == "list-counties":
        for key, jur in JURISDICTIONS.items():
            print(f"{key:<10} {jur.name:<10} {jur.source_kind.value:<10} {jur.listing_url}")
        return 0

    if args.command == "parse-pdf":
        jur = get_jurisdiction(args.county)
        pdf = extract_pdf_file(args.file, config)
        result = reconstruct_records(pdf.text, jur, cfg=config.parsing, source_url=args.file)
        logger.info(f"{args.file}: {result.skipped} rows skipped ({pdf.strategy} text, {result.strategy} parse)")
        finish(result.records, config)
        return 0

    if args.command == "parse-html":
        jur = get_jurisdiction(args.county)
        if jur.table is None:
            raise ConfigError(f"{jur.name} does not publish an HTML table")
        with open(args.file, "r", encoding="utf-8", errors="replace") as f:
            result = extract_table_records(f.read(), jur, config.parsing)
        finish(result.records, config)
        return 0

    fetcher = Fetcher(config.fetch)
    store = None if args.no_save else build_store(config.mongodb)
    try:
        enricher = None if args.no_enrich else build_enricher(config, store, fetcher.session)
        if args.command == "scrape-all":
            runs = run_all(config, fetcher, store=store, enricher=enricher)
        else:
            scraper = Scraper(get_jurisdiction(args.county), config, fetcher, store=store, enricher=enricher)
            runs = [scraper.run(read_manual_source(args) if args.command == "manual" else None)]
    finally:
        fetcher.close()
        if store is not None:
            store.close()

    records = [record for run in runs for record in run.records]
    finish(records, config)
    print_summary(runs)
    return 0 if all(run.succeeded for run in runs) else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LienX county tax lien extraction")
    parser.add_argument("--config", default=None, help="Path to configuration file")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], help="Logging level")
    parser.add_argument("--json", help="JSON output file")
    parser.add_argument("--csv", help="CSV output file")
    parser.add_argument("--ndjson", help="NDJSON output file")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")
    subparsers.required = True

    scrape_parser = subparsers.add_parser("scrape", help="Scrape one county listing")
    scrape_parser.add_argument("county", help="County key (see list-counties)")
    scrape_parser.add_argument("--no-enrich", action="store_true", help="Skip valuation enrichment")
    scrape_parser.add_argument("--no-save", action="store_true", help="Do not write to MongoDB")

    all_parser = subparsers.add_parser("scrape-all", help="Scrape every configured county")
    all_parser.add_argument("--no-enrich", action="store_true", help="Skip valuation enrichment")
    all_parser.add_argument("--no-save", action="store_true", help="Do not write to MongoDB")

    pdf_parser = subparsers.add_parser("parse-pdf", help="Extract records from a local PDF")
    pdf_parser.add_argument("file", help="PDF file")
    pdf_parser.add_argument("--county", required=True, help="County key")

    html_parser = subparsers.add_parser("parse-html", help="Extract records from a saved listing page")
    html_parser.add_argument("file", help="HTML file")
    html_parser.add_argument("--county", required=True, help="County key")

    manual_parser = subparsers.add_parser("manual", help="Extract records from pasted listing text")
    manual_parser.add_argument("--county", required=True, help="County key")
    text_group = manual_parser.add_mutually_exclusive_group(required=True)
    text_group.add_argument("--text-file", help="File holding the listing text")
    text_group.add_argument("--text", help="Listing text")
    manual_parser.add_argument("--sale-date", help="Sale date when the text does not state one")
    manual_parser.add_argument("--no-enrich", action="store_true", help="Skip valuation enrichment")
    manual_parser.add_argument("--no-save", action="store_true", help="Do not write to MongoDB")

    subparsers.add_parser("list-counties", help="List supported counties")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Args:
        argv: Arguments, sys.argv when None

    Returns:
        Exit code
    """
    args = build_parser().parse_args(argv)

    try:
        return process_command(args)
    except Exception as e:
        logger.exception(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
