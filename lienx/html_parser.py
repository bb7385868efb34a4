"""
HTML extraction for LienX.

Reads lien tables out of county listing pages with BeautifulSoup and finds
the links to sale documents on pages that publish PDFs instead.
"""

import re
from typing import List, Optional

from bs4 import BeautifulSoup

from lienx.config import ParsingConfig
from lienx.jurisdictions import Jurisdiction, LinkRule, TableLayout
from lienx.log import get_logger
from lienx.model import ParseResult
from lienx.normalize import normalize_date
from lienx.parser import build_record, parse_labelled_blocks, validate_record
from lienx.web import resolve_url, with_download_param

logger = get_logger(__name__)

PAGE_DATE_RE = re.compile(r"\d{1,2}/\d{1,2}/\d{4}|[A-Za-z]+\s+\d{1,2},\s+\d{4}")

DOWNLOAD_URL_PATTERNS = [
    re.compile(r"href=[\"']([^\"']*export=download[^\"']*)[\"']", re.IGNORECASE),
    re.compile(r"https?://[^\"'\s<>]+export=download[^\"'\s<>]*", re.IGNORECASE),
    re.compile(r"url\([\"']?([^\"')]+export=download[^\"')]+)[\"']?\)", re.IGNORECASE),
    re.compile(r"https?://[^\"'\s<>]+\.pdf[^\"'\s<>]*", re.IGNORECASE),
]

MAX_PARENT_CONTEXT = 300


def parse_markup(markup) -> BeautifulSoup:
    """
    Parse page markup.

    Args:
        markup: HTML as text or bytes

    Returns:
        Parsed document
    """
    return BeautifulSoup(markup, "html.parser")


def find_page_sale_date(soup: BeautifulSoup, layout: TableLayout) -> Optional[str]:
    """
    Find the first sale date announced in the page headings.

    Args:
        soup: Parsed page
        layout: Table layout naming the date selectors

    Returns:
        ISO sale date or None
    """
    for element in soup.select(layout.date_selectors):
        match = PAGE_DATE_RE.search(element.get_text(" ", strip=True))
        if match:
            iso = normalize_date(match.group(0))
            if iso:
                return iso
    return None


def is_header_row(cells: List[str], layout: TableLayout) -> bool:
    """
    Check whether a row repeats the table header.

    Args:
        cells: Cell texts
        layout: Table layout with the header literals

    Returns:
        True if the row is a header or label row
    """
    literals = [literal.lower() for literal in layout.header_literals]
    lowered = [cell.strip().lower() for cell in cells]
    if any(cell in literals for cell in lowered):
        return True

    idx = layout.columns.get("parcel_id")
    if idx is not None and idx < len(lowered):
        return any(literal in lowered[idx] for literal in literals)
    return False


def _table_rows(soup: BeautifulSoup, layout: TableLayout, jur: Jurisdiction):
    if layout.table_index is None:
        return soup.select(layout.row_selector)

    tables = soup.find_all("table")
    if len(tables) <= layout.table_index:
        logger.warning(f"{jur.name} page has {len(tables)} table(s), expected table #{layout.table_index + 1}")
        return []
    return tables[layout.table_index].find_all("tr")


def extract_table_records(markup, jur: Jurisdiction, cfg: Optional[ParsingConfig] = None) -> ParseResult:
    """
    Extract lien records from a county listing page.

    The data table is located by position or by row shape, header rows are
    skipped wherever they repeat, and fixed column offsets map cells to
    fields. Pages without a usable table fall back to labelled block text.

    Args:
        markup: Page HTML
        jur: Jurisdiction profile with a table layout
        cfg: Parsing configuration

    Returns:
        Records and skip count (no records when nothing matched)
    """
    cfg = cfg or ParsingConfig()
    layout = jur.table
    if layout is None:
        raise ValueError(f"{jur.name} has no table layout")

    soup = parse_markup(markup)
    sale_date = find_page_sale_date(soup, layout)
    result = ParseResult(strategy="table")

    for row in _table_rows(soup, layout, jur):
        cells = [cell.get_text(" ", strip=True) for cell in row.find_all(["td", "th"])]
        if len(cells) < layout.min_cells or is_header_row(cells, layout):
            continue

        values = {
            name: (cells[idx] if idx < len(cells) else "")
            for name, idx in layout.columns.items()
        }
        if not all(values.get(name) for name in layout.required):
            result.skipped += 1
            continue

        legal = ", ".join(
            f"{label}: {cells[idx] if idx < len(cells) else ''}" for label, idx in layout.legal_columns
        )
        record = build_record(
            jur,
            values["parcel_id"],
            values.get("property_address", ""),
            owner_name=values.get("owner_name", ""),
            tax_amount_due=values.get("tax_amount_due") or 0,
            sale_date=values.get("sale_date") or sale_date,
            legal_description=legal or None,
        )
        reason = validate_record(record, jur, cfg.min_address_length)
        if reason:
            logger.debug(f"Skipping {jur.name} table row ({reason})")
            result.skipped += 1
            continue
        result.records.append(record)

    if result.records:
        logger.info(f"Extracted {len(result.records)} {jur.name} records from table ({result.skipped} skipped)")
        return result

    blocks = extract_block_records(soup, jur, sale_date, cfg)
    blocks.skipped += result.skipped
    return blocks


def extract_block_records(soup: BeautifulSoup, jur: Jurisdiction, sale_date: Optional[str] = None,
                          cfg: Optional[ParsingConfig] = None) -> ParseResult:
    """
    Extract labelled records from the page's content containers.

    Args:
        soup: Parsed page
        jur: Jurisdiction profile
        sale_date: Page sale date
        cfg: Parsing configuration

    Returns:
        Records and skip count
    """
    result = ParseResult(strategy="block")
    if jur.table is None:
        return result

    for container in soup.select(jur.table.block_selectors):
        result.extend(parse_labelled_blocks(container.get_text("\n", strip=True), jur, sale_date, cfg))

    if result.records:
        logger.info(f"Extracted {len(result.records)} {jur.name} records from page text")
    else:
        logger.warning(f"No {jur.name} records found in page markup")
    return result


def find_document_links(markup, base_url: str, rule: LinkRule) -> List[str]:
    """
    Find links to sale documents on a listing page.

    Args:
        markup: Page HTML
        base_url: URL of the page, for resolving relative links
        rule: Which links qualify

    Returns:
        Absolute document URLs in page order, without duplicates
    """
    soup = parse_markup(markup)
    urls: List[str] = []

    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        href_lower = href.lower()
        if not href or href_lower.startswith(("mailto:", "javascript:", "#")):
            continue
        if not any(marker in href_lower for marker in rule.href_markers):
            continue

        text = anchor.get_text(" ", strip=True).lower()
        parent_text = ""
        if anchor.parent is not None:
            parent_text = anchor.parent.get_text(" ", strip=True).lower()
            if len(parent_text) > MAX_PARENT_CONTEXT:
                parent_text = ""

        visible = f"{text} {parent_text}"
        if any(re.search(rf"\b{re.escape(word)}", visible) for word in rule.exclude):
            continue

        context = f"{visible} {href_lower}"
        if not any(all(token in context for token in group) for group in rule.context_groups):
            continue

        url = resolve_url(base_url, href)
        if any(marker in href_lower for marker in rule.download_param_markers):
            url = with_download_param(url)
        if url not in urls:
            urls.append(url)

    logger.info(f"Found {len(urls)} document link(s) on {base_url}")
    return urls


def find_download_url(markup: str, base_url: str) -> Optional[str]:
    """
    Find the real file URL in a document viewer page.

    Args:
        markup: Viewer page HTML
        base_url: URL of the viewer page

    Returns:
        Absolute download URL, or None if the page has none
    """
    for pattern in DOWNLOAD_URL_PATTERNS:
        match = pattern.search(markup or "")
        if match:
            found = match.group(1) if match.groups() else match.group(0)
            return resolve_url(base_url, found.replace("&amp;", "&"))
    return None
