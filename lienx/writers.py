"""
Output writers for LienX.
"""

import csv
import json
import os
import re
from typing import List

from lienx.config import Config
from lienx.log import get_logger
from lienx.model import LienRecord, OutputError

logger = get_logger(__name__)

CSV_FIELDS = [
    "parcel_id",
    "owner_name",
    "property_address",
    "city",
    "zip",
    "tax_amount_due",
    "sale_date",
    "legal_description",
]

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def write_outputs(records: List[LienRecord], cfg: Config) -> None:
    """
    Write records to all configured output formats.

    Args:
        records: List of records to write
        cfg: Application configuration
    """
    logger.info(f"Writing {len(records)} records to outputs")

    for error in validate_records(records):
        logger.warning(f"Validation error: {error}")

    if cfg.output.json_path:
        write_json(records, cfg.output.json_path, cfg.output.pretty_json)

    if cfg.output.csv_path:
        write_csv(records, cfg.output.csv_path)

    if cfg.output.ndjson_path:
        write_ndjson(records, cfg.output.ndjson_path)


def _ensure_parent(path: str) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)


def write_json(records: List[LienRecord], path: str, pretty: bool = True) -> None:
    """
    Write records to a JSON file.

    Args:
        records: List of records to write
        path: Output file path
        pretty: Whether to pretty-print the JSON
    """
    logger.info(f"Writing JSON to {path}")

    try:
        _ensure_parent(path)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2 if pretty else None, ensure_ascii=False)
        logger.info(f"Wrote {len(records)} records to {path}")
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error writing JSON to {path}: {e}")
        raise OutputError(f"Error writing JSON to {path}: {e}")


def write_csv(records: List[LienRecord], path: str) -> None:
    """
    Write records to a CSV file, one row per record.

    Args:
        records: List of records to write
        path: Output file path
    """
    logger.info(f"Writing CSV to {path}")

    try:
        _ensure_parent(path)
        with open(path, "w", encoding="utf-8", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=CSV_FIELDS, extrasaction="ignore")
            writer.writeheader()
            for record in records:
                writer.writerow({name: record.get(name) if record.get(name) is not None else "" for name in CSV_FIELDS})
        logger.info(f"Wrote {len(records)} rows to {path}")
    except (OSError, csv.Error) as e:
        logger.error(f"Error writing CSV to {path}: {e}")
        raise OutputError(f"Error writing CSV to {path}: {e}")


def write_ndjson(records: List[LienRecord], path: str) -> None:
    """
    Write records to an NDJSON file.

    Args:
        records: List of records to write
        path: Output file path
    """
    logger.info(f"Writing NDJSON to {path}")

    try:
        _ensure_parent(path)
        with open(path, "w", encoding="utf-8") as f:
            for record in records:
                f.write(json.dumps(record, ensure_ascii=False) + "\n")
        logger.info(f"Wrote {len(records)} lines to {path}")
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error writing NDJSON to {path}: {e}")
        raise OutputError(f"Error writing NDJSON to {path}: {e}")


def validate_records(records: List[LienRecord]) -> List[str]:
    """
    Validate records before writing outputs.

    Args:
        records: List of records to validate

    Returns:
        List of validation errors
    """
    errors = []

    for i, record in enumerate(records):
        if not record.get("parcel_id"):
            errors.append(f"Record {i}: Missing parcel id")

        tax = record.get("tax_amount_due")
        if tax is not None and tax < 0:
            errors.append(f"Record {i}: Negative tax amount: {tax}")

        sale_date = record.get("sale_date")
        if sale_date and not ISO_DATE_RE.match(sale_date):
            errors.append(f"Record {i}: Invalid sale date format: {sale_date}")

    return errors
