"""
County registry for LienX.

Every supported county is one ``Jurisdiction`` value: where its listing
lives, what shape its documents take, and the patterns the generic
extractors need. Adding a county means adding an entry here, not a class.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Pattern, Tuple

from lienx.model import ConfigError


class SourceKind(Enum):
    """
    How a county publishes its listing.
    """

    HTML_TABLE = "html_table"  # Records are in the listing page markup
    PDF_LINKS = "pdf_links"  # The listing page links to one or more PDFs


class RowFormat(Enum):
    """
    Column layout of reconstructed text rows.
    """

    SALE_PARCEL_SITUS = "sale_parcel_situs"
    PIN_OWNER_SITUS_AMOUNT = "pin_owner_situs_amount"
    DATE_PARCEL_OWNER_LOCATION_BID = "date_parcel_owner_location_bid"
    TABLE_COLUMNS = "table_columns"


@dataclass(frozen=True)
class LinkRule:
    """
    Which anchors on a listing page lead to sale documents.

    A link qualifies when its href contains one of ``href_markers``, its
    context (link text, parent text and href) contains every token of at
    least one ``context_groups`` entry, and its text and parent text contain
    none of ``exclude``.
    """

    context_groups: Tuple[Tuple[str, ...], ...]
    href_markers: Tuple[str, ...] = (".pdf",)
    exclude: Tuple[str, ...] = ()
    download_param_markers: Tuple[str, ...] = ()  # Hrefs that need download=true


@dataclass(frozen=True)
class TableLayout:
    """
    Where the data table is and what its columns mean.
    """

    columns: Dict[str, int]  # Record field -> cell offset
    table_index: Optional[int] = None  # Positional table choice; None scans every row
    row_selector: str = "table tr"
    min_cells: int = 3
    required: Tuple[str, ...] = ("parcel_id", "owner_name", "property_address")
    header_literals: Tuple[str, ...] = ("parcel", "owner")
    legal_columns: Tuple[Tuple[str, int], ...] = ()
    date_selectors: str = ".tax-sale-date, .sale-date, h2, h3"
    block_selectors: str = ".content, .main-content, #main"


@dataclass(frozen=True)
class Jurisdiction:
    """
    One county's extraction profile.
    """

    key: str
    name: str
    county_id: int
    listing_url: str
    source_kind: SourceKind
    row_format: RowFormat
    identifier_pattern: str  # Locates an identifier inside a line
    identifier_shape: str  # Full match required after normalization
    default_city: Optional[str] = None
    id_joiner: str = "-"
    header_tokens: Tuple[Tuple[str, ...], ...] = ()  # Each group needs one token present
    record_start_pattern: Optional[str] = None
    record_end_pattern: Optional[str] = None
    record_complete_pattern: Optional[str] = None  # Joined row text that needs no more lines
    skip_patterns: Tuple[str, ...] = ()
    max_record_lines: int = 3
    split_inline_records: bool = False
    min_identifier_length: int = 5
    links: Optional[LinkRule] = None
    table: Optional[TableLayout] = None
    _compiled: Dict[str, Pattern] = field(default_factory=dict, compare=False, repr=False)

    def _pattern(self, name: str, source: Optional[str]) -> Optional[Pattern]:
        if source is None:
            return None
        if name not in self._compiled:
            self._compiled[name] = re.compile(source, re.IGNORECASE)
        return self._compiled[name]

    @property
    def identifier_re(self) -> Pattern:
        return self._pattern("identifier", self.identifier_pattern)

    @property
    def identifier_shape_re(self) -> Pattern:
        return self._pattern("shape", self.identifier_shape)

    @property
    def record_start_re(self) -> Pattern:
        return self._pattern("start", self.record_start_pattern or self.identifier_pattern)

    @property
    def record_end_re(self) -> Optional[Pattern]:
        return self._pattern("end", self.record_end_pattern)

    @property
    def record_complete_re(self) -> Optional[Pattern]:
        return self._pattern("complete", self.record_complete_pattern)

    @property
    def skip_res(self) -> List[Pattern]:
        return [self._pattern(f"skip{i}", p) for i, p in enumerate(self.skip_patterns)]


FULTON_PARCEL = (
    r"\b\d{2}[A-Z]?(?:\s*-\s*|\s+)\d{3,4}(?:\s*-\s*|\s+)[A-Z0-9]{2,4}"
    r"(?:\s*-\s*|\s+)\d{2,3}(?:(?:\s*-\s*|\s+)\d{1,3})?\b"
)
FULTON_SALE_NUMBER = r"\d{4}-\d{5}"
GWINNETT_PIN = r"\bR\d+\s+\d+[A-Z]?\b"
CLAYTON_PARCEL = r"\b\d{5}[A-Z]\s+[A-Z]\d{3}(?:\s+[A-Z]\d{2})?\b"
AMOUNT = r"[\d,]+\.\d{2}"

DEKALB = Jurisdiction(
    key="dekalb",
    name="DeKalb",
    county_id=1,
    listing_url="https://publicaccess.dekalbtax.org/forms/htmlframe.aspx?mode=content/search/tax_sale_listing.html",
    source_kind=SourceKind.HTML_TABLE,
    row_format=RowFormat.TABLE_COLUMNS,
    identifier_pattern=r"\b\d{2}\s+\d{3}\s+\d{2}\s+\d{3}\b",
    identifier_shape=r"[A-Z0-9][A-Z0-9 \-]{2,}",
    default_city="ATLANTA",
    id_joiner=" ",
    min_identifier_length=3,
    table=TableLayout(
        columns={
            "sale_date": 0,
            "parcel_id": 1,
            "owner_name": 4,
            "property_address": 5,
            "tax_amount_due": 14,
        },
        table_index=1,
        min_cells=15,
        required=("parcel_id", "owner_name", "property_address", "tax_amount_due"),
        header_literals=("parcel id", "owner", "tax sale date"),
        legal_columns=(("Tax Sale ID", 3), ("Levy Type", 8), ("Lien Book", 9), ("Page", 10)),
    ),
)

GWINNETT = Jurisdiction(
    key="gwinnett",
    name="Gwinnett",
    county_id=2,
    listing_url="https://www.gwinnetttaxcommissioner.com/property-tax/delinquent_tax/tax-liens-tax-sales",
    source_kind=SourceKind.PDF_LINKS,
    row_format=RowFormat.PIN_OWNER_SITUS_AMOUNT,
    identifier_pattern=GWINNETT_PIN,
    identifier_shape=r"R\d+ \d+[A-Z]?",
    default_city="LAWRENCEVILLE",
    id_joiner=" ",
    header_tokens=(("pin",), ("owner", "ownername"), ("situs",), ("amount",)),
    record_start_pattern=r"^R\d+\s+\d+[A-Z]?\b",
    record_end_pattern=AMOUNT + r"\s*$",
    skip_patterns=(r"^list of properties", r"^tax sale", r"^total\b"),
    max_record_lines=3,
    links=LinkRule(
        context_groups=(("list of properties",), ("listofproperties",), ("list", "properties")),
        href_markers=(".pdf", "/documents/", "download=true"),
        exclude=("bidder", "registration", "packet", "form"),
        download_param_markers=("/documents/",),
    ),
)

COBB = Jurisdiction(
    key="cobb",
    name="Cobb",
    county_id=3,
    listing_url="https://www.cobbtax.gov/property/tax_sale/index.php",
    source_kind=SourceKind.HTML_TABLE,
    row_format=RowFormat.TABLE_COLUMNS,
    identifier_pattern=r"\b\d{2}[0-9-]{3,}\d\b",
    identifier_shape=r"[A-Z0-9][A-Z0-9 \-]{2,}",
    id_joiner=" ",
    min_identifier_length=3,
    table=TableLayout(
        columns={"parcel_id": 0, "owner_name": 1, "property_address": 2, "tax_amount_due": 3},
        row_selector="table tr, .property-item, .tax-item",
        min_cells=3,
        header_literals=("parcel",),
    ),
)

FULTON = Jurisdiction(
    key="fulton",
    name="Fulton",
    county_id=4,
    listing_url="https://fcsoga.org/tax-sales/",
    source_kind=SourceKind.PDF_LINKS,
    row_format=RowFormat.SALE_PARCEL_SITUS,
    identifier_pattern=FULTON_PARCEL,
    identifier_shape=r"\d{2}[A-Z]?-?[A-Z0-9-]{3,}",
    default_city="Atlanta",
    header_tokens=(("sheriff",), ("sale",), ("parcel",), ("situs",)),
    record_start_pattern=r"^(?:" + FULTON_SALE_NUMBER + r"\b|" + FULTON_PARCEL + r")",
    # Parcel followed by situs text, not just a wrapped trailing id group
    record_complete_pattern=FULTON_PARCEL + r"\s+(?!\d{1,3}\s*$)\S",
    skip_patterns=(r"judicial.*(?:delinquent|foreclosure)", r"^fulton county", r"^tax sale"),
    max_record_lines=2,
    links=LinkRule(
        context_groups=(("sheriff", "sale"),),
        href_markers=(".pdf", "/uploads/"),
    ),
)

CLAYTON = Jurisdiction(
    key="clayton",
    name="Clayton",
    county_id=5,
    listing_url="https://publicaccess.claytoncountyga.gov/forms/htmlframe.aspx?mode=content/home_commissioner.htm",
    source_kind=SourceKind.PDF_LINKS,
    row_format=RowFormat.DATE_PARCEL_OWNER_LOCATION_BID,
    identifier_pattern=CLAYTON_PARCEL,
    identifier_shape=r"\d{5}[A-Z] [A-Z]\d{3}(?: [A-Z]\d{2})?",
    id_joiner=" ",
    header_tokens=(("date",), ("parcel",), ("location",), ("years",), ("cry-out", "cryout", "bid")),
    record_start_pattern=r"(?:\d{2}/\d{2}/\d{4}\s+)?" + CLAYTON_PARCEL,
    skip_patterns=(r"^clayton county", r"^tax commissioner"),
    max_record_lines=3,
    split_inline_records=True,
    links=LinkRule(
        context_groups=(("tax_sale",), ("tax-sale",), ("taxsale",), ("tax", "sale")),
        href_markers=(".pdf", "tax_sale", "tax-sale"),
        exclude=("registration", "bidder", "form"),
    ),
)

JURISDICTIONS: Dict[str, Jurisdiction] = {
    j.key: j for j in (DEKALB, GWINNETT, COBB, FULTON, CLAYTON)
}


def get_jurisdiction(key: str) -> Jurisdiction:
    """
    Look up a county by key.

    Args:
        key: Jurisdiction key, case-insensitive ("fulton")

    Returns:
        The jurisdiction profile

    Raises:
        ConfigError: If the key is unknown
    """
    try:
        return JURISDICTIONS[key.strip().lower()]
    except KeyError:
        raise ConfigError(f"Unknown jurisdiction: {key} (expected one of {', '.join(JURISDICTIONS)})")


def enabled_jurisdictions(keys: List[str]) -> List[Jurisdiction]:
    """
    Resolve configured keys in order, rejecting unknown ones.

    Args:
        keys: Jurisdiction keys from configuration

    Returns:
        Jurisdiction profiles
    """
    return [get_jurisdiction(key) for key in keys]
