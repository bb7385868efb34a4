"""
Field normalizers shared by every extractor.
"""

import math
import re
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from lienx.log import get_logger

logger = get_logger(__name__)

STREET_SUFFIXES = {
    "ALY", "AVE", "AV", "AVENUE", "BLVD", "BOULEVARD", "BND", "CIR", "CIRCLE",
    "CT", "COURT", "CV", "COVE", "DR", "DRIVE", "HWY", "HIGHWAY", "LN", "LANE",
    "LOOP", "PASS", "PATH", "PIKE", "PKWY", "PARKWAY", "PL", "PLACE", "PLZ",
    "PT", "RD", "ROAD", "ROW", "RUN", "SQ", "ST", "STREET", "TER", "TERRACE",
    "TRCE", "TRACE", "TRL", "TRAIL", "VW", "WALK", "WAY", "XING",
}

DIRECTIONALS = {"N", "S", "E", "W", "NE", "NW", "SE", "SW"}

STATE_CODES = {"GA", "GEORGIA"}

ZIP_RE = re.compile(r"^\d{5}(?:-\d{4})?$")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

SALE_DATE_PATTERNS = [
    re.compile(r"(?:Sale\s+Date|Sale\s+on|Date\s+of\s+Sale)[\s:]+([A-Za-z]+\.?\s+\d{1,2},?\s+\d{4})", re.IGNORECASE),
    re.compile(r"(?:Monday|Tuesday|Wednesday|Thursday|Friday|Saturday|Sunday),\s+([A-Za-z]+\.?\s+\d{1,2},\s+\d{4})", re.IGNORECASE),
    re.compile(r"\b((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+\d{1,2},\s+\d{4})", re.IGNORECASE),
]

URL_DATE_RE = re.compile(r"Sheriffs?-([A-Za-z]+)-(\d{1,2})-(\d{4})", re.IGNORECASE)


def parse_currency(value: Any) -> float:
    """
    Parse a currency amount such as "$1,250.00".

    Never raises. Anything unparseable, negative or non-finite becomes 0.0.

    Args:
        value: Raw amount (string, number or None)

    Returns:
        Non-negative amount
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = re.sub(r"[$,\s]", "", str(value))
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0

    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


def parse_address(address: Optional[str]) -> Dict[str, Optional[str]]:
    """
    Split a situs string into street, city and zip.

    Handles "STREET, CITY [STATE] ZIP" as well as the comma-less
    "100 Main St Atlanta 30303", where the last street suffix marks the end
    of the street part. Without a zip and comma the whole string is the street.

    Args:
        address: Free-text situs address

    Returns:
        Dictionary with "address", "city" and "zip" keys
    """
    text = re.sub(r"\s+", " ", (address or "")).strip().strip(",")
    result: Dict[str, Optional[str]] = {"address": text, "city": None, "zip": None}
    if not text:
        return result

    if "," in text:
        parts = [p.strip() for p in text.split(",")]
        result["address"] = parts[0]
        city, zip_code = _split_city_zip(" ".join(p for p in parts[1:] if p).split())
        result["city"] = city
        result["zip"] = zip_code
        return result

    tokens = text.split()
    if len(tokens) < 3 or not ZIP_RE.match(tokens[-1]):
        return result

    zip_code = tokens[-1]
    body = tokens[:-1]
    if body and body[-1].upper().strip(".") in STATE_CODES:
        body = body[:-1]

    suffix_at = None
    for i in range(len(body) - 1, 0, -1):
        if body[i].upper().strip(".") in STREET_SUFFIXES:
            suffix_at = i
            break

    if suffix_at is None:
        result["address"] = " ".join(body)
        result["zip"] = zip_code
        return result

    street_end = suffix_at + 1
    if street_end < len(body) and body[street_end].upper().strip(".") in DIRECTIONALS:
        street_end += 1

    result["address"] = " ".join(body[:street_end])
    result["city"] = " ".join(body[street_end:]) or None
    result["zip"] = zip_code
    return result


def _split_city_zip(tokens: Iterable[str]):
    tokens = list(tokens)
    zip_code = None
    if tokens and ZIP_RE.match(tokens[-1]):
        zip_code = tokens.pop()
    if tokens and tokens[-1].upper().strip(".") in STATE_CODES:
        tokens.pop()
    city = " ".join(tokens) or None
    return city, zip_code


def normalize_parcel_id(raw: Optional[str], joiner: str = "-") -> str:
    """
    Canonicalize a parcel identifier.

    Internal whitespace becomes ``joiner`` and runs of dashes collapse, so
    "14 -0184-0008-002-7" and "14  0184  0008  002  7" both become
    "14-0184-0008-002-7".

    Args:
        raw: Identifier as it appeared in the source
        joiner: Replacement for whitespace runs ("-" or " ")

    Returns:
        Normalized identifier, "" when nothing usable remains
    """
    if not raw:
        return ""
    text = raw.strip().upper()
    if joiner == "-":
        text = re.sub(r"\s+", "-", text)
    else:
        text = re.sub(r"\s*-\s*", "-", text)
        text = re.sub(r"\s+", joiner, text)
    text = re.sub(r"-{2,}", "-", text)
    return text.strip("- ")


def normalize_date(text: Optional[str]) -> Optional[str]:
    """
    Convert a source date to ISO 8601.

    Args:
        text: Date such as "02/03/2026", "February 3, 2026" or "2026-02-03"

    Returns:
        Date in YYYY-MM-DD format or None if not recognized
    """
    if not text:
        return None
    value = text.strip()

    match = re.search(r"\b(\d{4})-(\d{2})-(\d{2})\b", value)
    if match:
        return _iso(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = re.search(r"\b(\d{1,2})/(\d{1,2})/(\d{4})\b", value)
    if match:
        return _iso(int(match.group(3)), int(match.group(1)), int(match.group(2)))

    match = re.search(r"\b([A-Za-z]+)\.?[\s-]+(\d{1,2}),?[\s-]+(\d{4})\b", value)
    if match:
        month = MONTHS.get(match.group(1).lower()[:4]) or MONTHS.get(match.group(1).lower()[:3])
        if month:
            return _iso(int(match.group(3)), month, int(match.group(2)))

    return None


def _iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return datetime(year, month, day).strftime("%Y-%m-%d")
    except ValueError:
        logger.debug(f"Discarding impossible date {year}-{month}-{day}")
        return None


def find_sale_date(text: Optional[str], url: Optional[str] = None) -> Optional[str]:
    """
    Find the auction date announced in a document.

    Args:
        text: Document text
        url: Document URL, used when the text has no date

    Returns:
        ISO sale date or None
    """
    for pattern in SALE_DATE_PATTERNS:
        match = pattern.search(text or "")
        if match:
            iso = normalize_date(match.group(1))
            if iso:
                return iso

    if url:
        match = URL_DATE_RE.search(url)
        if match:
            return normalize_date(f"{match.group(1)} {match.group(2)}, {match.group(3)}")

    return None


def strip_owner_prefix(address: str, owner_name: Optional[str] = None) -> str:
    """
    Remove an owner name that leaked into the front of an address.

    "Thai H 596 CHESTERFIELD DR" becomes "596 CHESTERFIELD DR". Only strips
    when a street number follows the removed text.

    Args:
        address: Address as split from the row
        owner_name: Owner name from the same row, if known

    Returns:
        Cleaned address
    """
    cleaned = (address or "").strip()
    if not cleaned or cleaned[0].isdigit():
        return cleaned

    if owner_name:
        words = owner_name.split()
        variants = [owner_name.strip(), " ".join(words[:2]), words[0] if words else ""]
        for variant in variants:
            if len(variant) < 2:
                continue
            match = re.match(rf"^{re.escape(variant)}\s+(?=\d)", cleaned, re.IGNORECASE)
            if match:
                return cleaned[match.end():].strip()

    match = re.match(r"^[A-Za-z][A-Za-z'.&]*(?:\s+[A-Za-z][A-Za-z'.&]*){0,2}\s+(?=\d+\s+[A-Za-z])", cleaned)
    if match:
        return cleaned[match.end():].strip()
    return cleaned
