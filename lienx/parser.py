"""
Row reconstruction for LienX.

Turns extracted document text into candidate lien records. Two strategies
are combined:

* header-anchored parsing, which finds the table header (fuzzy, order
  independent, possibly split over a few lines) and reads rows until the
  next header or the end of the document;
* pattern-scan parsing, used when no header is found or the header pass
  yields nothing, which anchors on the county's identifier pattern.

Physical lines are gathered into logical rows by ``RecordAccumulator``
before each row is split into fields and mapped by the county's row format.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from lienx.config import ParsingConfig
from lienx.jurisdictions import FULTON_SALE_NUMBER, Jurisdiction, RowFormat
from lienx.log import get_logger
from lienx.model import LienRecord, ParseResult
from lienx.normalize import (
    STREET_SUFFIXES,
    find_sale_date,
    normalize_date,
    normalize_parcel_id,
    parse_address,
    parse_currency,
    strip_owner_prefix,
)

logger = get_logger(__name__)

# Line classification
SEPARATOR_LINE = re.compile(r"^[\s|\-_=+*.]+$")
PAGINATION_LINE = re.compile(r"^(?:page\s+)?\d+\s*(?:of|/)\s*\d+$", re.IGNORECASE)
PAGE_LABEL_LINE = re.compile(r"^page\s*\d+$", re.IGNORECASE)

# Field sub-patterns
SALE_NUMBER_RE = re.compile(r"\b" + FULTON_SALE_NUMBER + r"\b")
DATE_RE = re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b")
AMOUNT_RE = re.compile(r"\$?\s*([\d,]+\.\d{2})\b")
AMOUNT_FIELD_RE = re.compile(r"^\$?\s*[\d,]+\.\d{2}$")
TRAILING_AMOUNT_RE = re.compile(r"\$?\s*[\d,]+\.\d{2}\s*$")
YEARS_RE = re.compile(r"\b(?:19|20)\d{2}(?:\s*,\s*(?:19|20)\d{2})*\b")
_SUFFIX_ALT = "|".join(sorted(STREET_SUFFIXES, key=len, reverse=True))
STREET_RE = re.compile(
    r"\b\d+[A-Z]?\s+[A-Z0-9][A-Z0-9.'&-]*(?:\s+[A-Z0-9][A-Z0-9.'&-]*)*?\s+(?:" + _SUFFIX_ALT + r")\b\.?"
    r"(?:\s+(?:N|S|E|W|NE|NW|SE|SW)\b)?",
    re.IGNORECASE,
)
LABELLED_RECORD_RE = re.compile(
    r"(?:Parcel(?:\s*ID)?|PID|APN)[\s:#]+(?P<parcel>[A-Z0-9][A-Z0-9-]*(?:\s[A-Z0-9-]+)*?)(?=\s+(?:Owner|Name)\b|\s*\n)"
    r"[\s\S]*?\b(?:Owner|Name)[\s:]+(?P<owner>[^\n]+?)(?=\s+(?:Address|Location|Situs)\b|\s*\n)"
    r"[\s\S]*?\b(?:Address|Location|Situs)[\s:]+(?P<address>[^\n$]+?)(?=\s*\$|\s*\n)"
    r"[\s\S]*?\$\s*(?P<amount>[\d,]+(?:\.\d{2})?)",
    re.IGNORECASE,
)

_OCR_HEADER_MAP = str.maketrans({"0": "o", "1": "i", "l": "i", "|": "i", "5": "s"})


@dataclass
class HeaderSegment:
    """
    Rows belonging to one table header.

    ``header_start`` is the first header line, ``start`` the first row line
    and ``end`` one past the last row line.
    """

    header_start: int
    start: int
    end: int


def split_lines(text: str, jur: Optional[Jurisdiction] = None) -> List[str]:
    """
    Split text into trimmed, non-empty lines.

    Counties whose text comes out as one continuous run have their lines
    broken again at every record start.

    Args:
        text: Extracted text
        jur: Jurisdiction profile

    Returns:
        Lines in document order
    """
    lines = [line.strip() for line in (text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    lines = [line for line in lines if line]
    if jur is None or not jur.split_inline_records:
        return lines

    split: List[str] = []
    for line in lines:
        starts = [m.start() for m in jur.record_start_re.finditer(line)]
        if not starts or starts == [0]:
            split.append(line)
            continue
        bounds = ([0] if starts[0] != 0 else []) + starts + [len(line)]
        for begin, finish in zip(bounds, bounds[1:]):
            piece = line[begin:finish].strip()
            if piece:
                split.append(piece)
    return split


def _header_canon(text: str) -> str:
    text = text.lower().translate(_OCR_HEADER_MAP)
    return re.sub(r"[^a-z0-9 ]+", "", text)


def header_matches(text: str, jur: Jurisdiction) -> bool:
    """
    Check whether text holds every header token group of a county.

    Order does not matter and common OCR substitutions (0/o, 1/l/i, 5/s)
    are tolerated.

    Args:
        text: One line, or several joined lines
        jur: Jurisdiction profile

    Returns:
        True if the text looks like the county's table header
    """
    if not jur.header_tokens:
        return False
    canon = _header_canon(text)
    return all(
        any(_header_canon(token) in canon for token in group)
        for group in jur.header_tokens
    )


def _has_header_token(text: str, jur: Jurisdiction) -> bool:
    canon = _header_canon(text)
    return any(_header_canon(token) in canon for group in jur.header_tokens for token in group)


def find_header_segments(lines: Sequence[str], jur: Jurisdiction, lookahead: int = 3) -> List[HeaderSegment]:
    """
    Locate every table header and the rows it governs.

    A header may be split across up to ``lookahead`` adjacent lines. Each
    header opens a segment that ends where the next header starts.

    Args:
        lines: Document lines
        jur: Jurisdiction profile
        lookahead: Maximum number of lines a header may span

    Returns:
        Segments in document order, empty if no header was found
    """
    headers: List[Tuple[int, int]] = []
    i = 0
    while i < len(lines):
        if not _has_header_token(lines[i], jur):
            i += 1
            continue

        span = 0
        for k in range(1, lookahead + 1):
            if i + k > len(lines):
                break
            if header_matches(" ".join(lines[i:i + k]), jur):
                span = k
                break

        if span:
            logger.debug(f"{jur.name} header at line {i} spanning {span} line(s)")
            headers.append((i, i + span))
            i += span
        else:
            i += 1

    segments = []
    for idx, (start, header_end) in enumerate(headers):
        end = headers[idx + 1][0] if idx + 1 < len(headers) else len(lines)
        segments.append(HeaderSegment(header_start=start, start=header_end, end=end))
    return segments


def is_skip_line(line: str, jur: Jurisdiction) -> bool:
    """
    Check whether a line is a separator, pagination or section title.

    Args:
        line: Document line
        jur: Jurisdiction profile

    Returns:
        True if the line carries no row data
    """
    if not line.strip():
        return True
    if SEPARATOR_LINE.match(line) or PAGINATION_LINE.match(line) or PAGE_LABEL_LINE.match(line):
        return True
    return any(pattern.search(line) for pattern in jur.skip_res)


class RecordAccumulator:
    """
    Gathers physical lines into logical rows.

    A row starts at a record-start line and takes continuation lines until
    the next record start, an end-of-row marker, the county's line limit, or
    a section boundary (``flush``). Counties with a completion pattern also
    close the row as soon as its joined text matches. Lines seen while no
    row is open are ignored.
    """

    def __init__(self, jur: Jurisdiction, anchor: Optional[Pattern] = None, allow_continuation: bool = True):
        self.jur = jur
        self.anchor = anchor
        self.allow_continuation = allow_continuation
        self.rows: List[str] = []
        self._buffer: List[str] = []

    def _is_start(self, line: str) -> bool:
        if self.anchor is not None:
            return bool(self.anchor.search(line))
        return bool(self.jur.record_start_re.match(line))

    def _is_complete(self) -> bool:
        if len(self._buffer) >= self.jur.max_record_lines:
            return True
        end_re = self.jur.record_end_re
        if end_re and end_re.search(self._buffer[-1]):
            return True
        complete_re = self.jur.record_complete_re
        return bool(complete_re and complete_re.search(" ".join(self._buffer)))

    def feed(self, line: str) -> None:
        if self._is_start(line):
            self.flush()
            self._buffer = [line]
        elif self._buffer and self.allow_continuation:
            self._buffer.append(line)
        else:
            return

        if self._is_complete():
            self.flush()

    def flush(self) -> None:
        if self._buffer:
            self.rows.append(" ".join(self._buffer))
            self._buffer = []


def split_fields(text: str, sub_patterns: Sequence[Pattern] = ()) -> List[str]:
    """
    Split a row into positional fields.

    Delimiters are tried in priority order: pipe, tab, runs of three or more
    spaces. Without any of those the row is cut around the first match of
    each sub-pattern, keeping the unmatched stretches in between, so the
    result stays in source order.

    Args:
        text: Logical row
        sub_patterns: Field patterns for rows without delimiters

    Returns:
        Non-empty fields
    """
    if "|" in text:
        parts = text.split("|")
    elif "\t" in text:
        parts = text.split("\t")
    elif re.search(r"\s{3,}", text.strip()):
        parts = re.split(r"\s{3,}", text)
    else:
        return locate_fields(text, sub_patterns)
    return [p.strip() for p in parts if p.strip()]


def locate_fields(text: str, sub_patterns: Sequence[Pattern]) -> List[str]:
    """
    Cut a delimiter-less row around regex-located fields.

    Args:
        text: Logical row
        sub_patterns: Field patterns, each used for its first free match

    Returns:
        Matched fields and the stretches between them, in source order
    """
    spans: List[Tuple[int, int]] = []
    for pattern in sub_patterns:
        pos = 0
        while pos <= len(text):
            match = pattern.search(text, pos)
            if match is None:
                break
            taken = any(match.start() < end and start < match.end() for start, end in spans)
            if match.end() == match.start() or taken:
                pos = match.start() + 1
                continue
            spans.append((match.start(), match.end()))
            break
    spans.sort()

    fields: List[str] = []
    pos = 0
    for start, end in spans:
        gap = text[pos:start].strip()
        if gap:
            fields.append(gap)
        fields.append(text[start:end].strip())
        pos = end
    tail = text[pos:].strip()
    if tail:
        fields.append(tail)
    return fields


def build_record(
    jur: Jurisdiction,
    parcel_id: str,
    address: str,
    owner_name: str = "",
    tax_amount_due: object = 0,
    sale_date: Optional[str] = None,
    legal_description: Optional[str] = None,
) -> LienRecord:
    """
    Assemble a normalized record.

    Args:
        jur: Jurisdiction profile
        parcel_id: Identifier as found in the source
        address: Situs text, possibly including city and zip
        owner_name: Owner, "" when the source has none
        tax_amount_due: Raw amount
        sale_date: Sale date in any recognized format
        legal_description: Auxiliary fields

    Returns:
        New record
    """
    parts = parse_address(address)
    return {
        "parcel_id": normalize_parcel_id(parcel_id, jur.id_joiner),
        "owner_name": re.sub(r"\s+", " ", owner_name or "").strip(),
        "property_address": parts["address"] or "",
        "city": parts["city"] or jur.default_city,
        "zip": parts["zip"],
        "tax_amount_due": parse_currency(tax_amount_due),
        "sale_date": normalize_date(sale_date) if sale_date else None,
        "legal_description": legal_description or None,
    }


def validate_record(record: LienRecord, jur: Jurisdiction, min_address_length: int = 3) -> Optional[str]:
    """
    Check a reconstructed record against the county's rules.

    Args:
        record: Candidate record
        jur: Jurisdiction profile
        min_address_length: Shorter addresses count as empty

    Returns:
        Reason the record must be dropped, or None if it is valid
    """
    parcel_id = record.get("parcel_id") or ""
    if not parcel_id.strip():
        return "missing parcel id"
    if len(parcel_id) < jur.min_identifier_length:
        return f"parcel id too short: {parcel_id}"
    if not jur.identifier_shape_re.fullmatch(parcel_id):
        return f"parcel id has unexpected shape: {parcel_id}"
    if len((record.get("property_address") or "").strip()) < min_address_length:
        return "missing address"
    return None


def _find_identifier(fields: List[str], jur: Jurisdiction) -> Tuple[int, Optional[re.Match]]:
    for idx, value in enumerate(fields):
        match = jur.identifier_re.search(value)
        if match:
            return idx, match
    return -1, None


def map_sale_parcel_situs(row: str, jur: Jurisdiction, sale_date: Optional[str]) -> Optional[LienRecord]:
    """
    Map a "SALE NUMBER | PARCEL | SITUS" row. The source has no owner or amount.
    """
    fields = split_fields(row, [SALE_NUMBER_RE, jur.identifier_re])
    idx, match = _find_identifier(fields, jur)
    if match is None:
        return None

    tail = fields[idx][match.end():].strip()
    situs = " ".join(([tail] if tail else []) + fields[idx + 1:])
    return build_record(jur, match.group(0), situs, sale_date=sale_date)


def map_pin_owner_situs_amount(row: str, jur: Jurisdiction, sale_date: Optional[str]) -> Optional[LienRecord]:
    """
    Map a "PIN | OWNER | SITUS | AMOUNT" row.

    Rows without a trailing amount are incomplete and rejected.
    """
    fields = split_fields(row, [jur.identifier_re, TRAILING_AMOUNT_RE, STREET_RE])
    idx, match = _find_identifier(fields, jur)
    if match is None or not fields or not AMOUNT_FIELD_RE.match(fields[-1]):
        return None

    lead = fields[idx][match.end():].strip()
    middle = ([lead] if lead else []) + fields[idx + 1:-1]
    if not middle:
        return None

    if len(middle) >= 2:
        owner, situs = middle[0], " ".join(middle[1:])
    else:
        owner, situs = _split_owner_and_street(middle[0])

    if len(owner.strip()) < 2:
        return None

    situs = strip_owner_prefix(situs, owner)
    return build_record(jur, match.group(0), situs, owner_name=owner, tax_amount_due=fields[-1], sale_date=sale_date)


def _split_owner_and_street(text: str) -> Tuple[str, str]:
    tokens = text.split()
    for i in range(1, len(tokens)):
        if tokens[i].isdigit():
            return " ".join(tokens[:i]), " ".join(tokens[i:])
    return text, ""


def map_date_parcel_owner_location_bid(row: str, jur: Jurisdiction, sale_date: Optional[str]) -> Optional[LienRecord]:
    """
    Map a "DATE | PARCEL /OWNER | LOCATION | YEARS | [FMV] | CRY-OUT BID" row.

    The row date, when present, replaces the document sale date.
    """
    fields = split_fields(row)

    if len(fields) >= 5:
        date_text, parcel_name, location, years, bid = fields[0], fields[1], fields[2], fields[3], fields[-1]
        match = jur.identifier_re.search(parcel_name)
        if match is None:
            return None
        owner = parcel_name[match.end():].strip().lstrip("/").strip()
    else:
        match = jur.identifier_re.search(row)
        if match is None:
            return None
        date_match = DATE_RE.search(row[:match.start()]) or DATE_RE.search(row)
        date_text = date_match.group(0) if date_match else ""

        after = row[match.end():].strip()
        owner = ""
        if after.startswith("/"):
            after = after[1:].strip()
            street = STREET_RE.search(after)
            if street:
                owner = after[:street.start()].strip()
            else:
                owner, _ = _split_owner_and_street(after)
        street = STREET_RE.search(after)
        location = street.group(0) if street else ""
        rest = after[street.end():] if street else after
        years_match = YEARS_RE.search(rest)
        years = years_match.group(0) if years_match else ""
        amounts = AMOUNT_RE.findall(row)
        bid = amounts[-1] if amounts else "0"

    years = re.sub(r"\s+", "", years)
    legal = f"Years: {years}" if years else None
    return build_record(
        jur,
        match.group(0),
        location,
        owner_name=owner,
        tax_amount_due=bid,
        sale_date=normalize_date(date_text) or sale_date,
        legal_description=legal,
    )


def map_table_columns(row: str, jur: Jurisdiction, sale_date: Optional[str]) -> Optional[LienRecord]:
    """
    Map a delimited row using the county's table column offsets.
    """
    if jur.table is None:
        return None
    fields = split_fields(row)
    columns = jur.table.columns

    def cell(name: str) -> str:
        idx = columns.get(name)
        return fields[idx] if idx is not None and idx < len(fields) else ""

    if not cell("parcel_id"):
        return None
    return build_record(
        jur,
        cell("parcel_id"),
        cell("property_address"),
        owner_name=cell("owner_name"),
        tax_amount_due=cell("tax_amount_due"),
        sale_date=cell("sale_date") or sale_date,
    )


ROW_MAPPERS: Dict[RowFormat, Callable[[str, Jurisdiction, Optional[str]], Optional[LienRecord]]] = {
    RowFormat.SALE_PARCEL_SITUS: map_sale_parcel_situs,
    RowFormat.PIN_OWNER_SITUS_AMOUNT: map_pin_owner_situs_amount,
    RowFormat.DATE_PARCEL_OWNER_LOCATION_BID: map_date_parcel_owner_location_bid,
    RowFormat.TABLE_COLUMNS: map_table_columns,
}


def _map_rows(rows: List[str], jur: Jurisdiction, sale_date: Optional[str], cfg: ParsingConfig) -> ParseResult:
    mapper = ROW_MAPPERS[jur.row_format]
    result = ParseResult()
    for row in rows:
        record = mapper(row, jur, sale_date)
        if record is None:
            logger.debug(f"Skipping unparseable {jur.name} row: {row[:100]}")
            result.skipped += 1
            continue
        reason = validate_record(record, jur, cfg.min_address_length)
        if reason:
            logger.debug(f"Skipping {jur.name} row ({reason}): {row[:100]}")
            result.skipped += 1
            continue
        result.records.append(record)
    return result


def parse_header_anchored(
    lines: Sequence[str],
    jur: Jurisdiction,
    sale_date: Optional[str] = None,
    cfg: Optional[ParsingConfig] = None,
    segments: Optional[List[HeaderSegment]] = None,
) -> ParseResult:
    """
    Parse the rows under each table header.

    Rows never cross a header: the accumulator is flushed at the end of
    every segment.

    Args:
        lines: Document lines
        jur: Jurisdiction profile
        sale_date: Document sale date
        cfg: Parsing configuration
        segments: Precomputed header segments

    Returns:
        Records and skip count
    """
    cfg = cfg or ParsingConfig()
    if segments is None:
        segments = find_header_segments(lines, jur, cfg.header_lookahead)

    result = ParseResult(strategy="header")
    for number, segment in enumerate(segments, 1):
        accumulator = RecordAccumulator(jur)
        for line in lines[segment.start:segment.end]:
            if is_skip_line(line, jur):
                continue
            accumulator.feed(line)
        accumulator.flush()
        section = _map_rows(accumulator.rows, jur, sale_date, cfg)
        logger.debug(
            f"{jur.name} section {number} (lines {segment.start}-{segment.end - 1}): "
            f"{len(section.records)} records, {section.skipped} skipped"
        )
        result.extend(section)
    return result


def parse_pattern_scan(
    lines: Sequence[str],
    jur: Jurisdiction,
    sale_date: Optional[str] = None,
    cfg: Optional[ParsingConfig] = None,
) -> ParseResult:
    """
    Parse every line that contains a county identifier.

    Continuation lines are only joined for counties whose rows end with a
    recognizable marker.

    Args:
        lines: Document lines
        jur: Jurisdiction profile
        sale_date: Document sale date
        cfg: Parsing configuration

    Returns:
        Records and skip count
    """
    cfg = cfg or ParsingConfig()
    accumulator = RecordAccumulator(
        jur,
        anchor=jur.identifier_re,
        allow_continuation=jur.record_end_re is not None,
    )
    for line in lines:
        if is_skip_line(line, jur) or header_matches(line, jur):
            accumulator.flush()
            continue
        accumulator.feed(line)
    accumulator.flush()

    result = _map_rows(accumulator.rows, jur, sale_date, cfg)
    result.strategy = "pattern"
    return result


def parse_labelled_blocks(text: str, jur: Jurisdiction, sale_date: Optional[str] = None,
                          cfg: Optional[ParsingConfig] = None) -> ParseResult:
    """
    Parse "Parcel: ... Owner: ... Address: ... $amount" blocks.

    Args:
        text: Block text
        jur: Jurisdiction profile
        sale_date: Document sale date
        cfg: Parsing configuration

    Returns:
        Records and skip count
    """
    cfg = cfg or ParsingConfig()
    result = ParseResult(strategy="block")
    for match in LABELLED_RECORD_RE.finditer(text or ""):
        record = build_record(
            jur,
            match.group("parcel"),
            match.group("address"),
            owner_name=match.group("owner"),
            tax_amount_due=match.group("amount"),
            sale_date=sale_date,
        )
        reason = validate_record(record, jur, cfg.min_address_length)
        if reason:
            logger.debug(f"Skipping {jur.name} block ({reason})")
            result.skipped += 1
            continue
        result.records.append(record)
    return result


def reconstruct_records(
    text: str,
    jur: Jurisdiction,
    sale_date: Optional[str] = None,
    cfg: Optional[ParsingConfig] = None,
    source_url: Optional[str] = None,
) -> ParseResult:
    """
    Recover lien records from document text.

    Header-anchored parsing runs first. Pattern-scan parsing takes over when
    no header is found or the header pass yields no rows, and labelled
    blocks are the last resort.

    Args:
        text: Cleaned document text
        jur: Jurisdiction profile
        sale_date: Known sale date; discovered from the text when None
        cfg: Parsing configuration
        source_url: Document URL, used for sale date discovery

    Returns:
        Records and skip count
    """
    cfg = cfg or ParsingConfig()
    if sale_date is None:
        sale_date = find_sale_date(text, source_url)

    lines = split_lines(text, jur)
    segments = find_header_segments(lines, jur, cfg.header_lookahead)

    if segments:
        logger.info(f"Found {len(segments)} {jur.name} table header(s)")
        result = parse_header_anchored(lines, jur, sale_date, cfg, segments)
        if result.records:
            return result
        logger.info(f"No {jur.name} rows under headers, falling back to pattern scan")
    else:
        logger.info(f"No {jur.name} table header found, using pattern scan")

    result = parse_pattern_scan(lines, jur, sale_date, cfg)
    if result.records:
        return result

    blocks = parse_labelled_blocks(text, jur, sale_date, cfg)
    if blocks.records:
        blocks.skipped += result.skipped
        return blocks
    return result
