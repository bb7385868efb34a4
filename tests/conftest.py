"""
Pytest configuration and fixtures.
"""

from typing import List

import pytest

from lienx.config import Config
from lienx.model import LienRecord


def _escape_pdf_string(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(lines: List[str]) -> bytes:
    """
    Build a one-page PDF showing each line in Helvetica.

    Args:
        lines: Text lines, top to bottom

    Returns:
        PDF bytes with a valid cross-reference table
    """
    ops = ["BT", "/F1 12 Tf", "16 TL", "50 750 Td"]
    for i, line in enumerate(lines):
        if i:
            ops.append("T*")
        ops.append(f"({_escape_pdf_string(line)}) Tj")
    ops.append("ET")
    content = "\n".join(ops).encode("latin-1")

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Resources << /Font << /F1 4 0 R >> >> /Contents 5 0 R >>",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        b"<< /Length %d >>\nstream\n" % len(content) + content + b"\nendstream",
    ]

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, 1):
        offsets.append(len(out))
        out += b"%d 0 obj\n" % number + body + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % (len(objects) + 1)
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += b"%010d 00000 n \n" % offset
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_at)
    return bytes(out)


@pytest.fixture
def sample_config():
    """Return a sample configuration."""
    cfg = Config()
    cfg.enrichment.rate_limit_delay = 0
    return cfg


@pytest.fixture
def pdf_builder():
    """Return the minimal PDF builder."""
    return build_pdf


@pytest.fixture
def sample_record() -> LienRecord:
    """Return a sample record."""
    return {
        "parcel_id": "14-0184-0008-002-7",
        "owner_name": "",
        "property_address": "0 BOULEVARD GRANADA SW",
        "city": "Atlanta",
        "zip": None,
        "tax_amount_due": 0.0,
        "sale_date": "2026-02-03",
        "legal_description": None,
    }


@pytest.fixture
def sample_records() -> List[LienRecord]:
    """Return a list of sample records."""
    return [
        {
            "parcel_id": "R5001 012",
            "owner_name": "SMITH JOHN",
            "property_address": "123 MAIN ST",
            "city": "LAWRENCEVILLE",
            "zip": "30046",
            "tax_amount_due": 1523.45,
            "sale_date": "2026-03-03",
            "legal_description": None,
        },
        {
            "parcel_id": "R6002 004A",
            "owner_name": "DOE JANE",
            "property_address": "45 OAK DR",
            "city": "LAWRENCEVILLE",
            "zip": None,
            "tax_amount_due": 310.0,
            "sale_date": "2026-03-03",
            "legal_description": None,
        },
    ]


@pytest.fixture
def fulton_text() -> str:
    """Return Fulton sheriff's sale text with two header sections."""
    return "\n".join([
        "FULTON COUNTY SHERIFF'S TAX SALE",
        "Sale Date: February 3, 2026",
        "SHERIFF SALE # PARCEL ID SITUS",
        "2026-00001 14-0184-0008-002-7 0 BOULEVARD GRANADA SW",
        "2026-00002 17 0045 LL0 12 4 125 PEACHTREE ST NE",
        "Page 1 of 2",
        "JUDICIAL TAX SALE - DELINQUENT",
        "SHERIFF SALE # PARCEL ID SITUS",
        "2026-00003 09F-1802-0085-011-3 3120 CASCADE RD SW",
        "Page 2 of 2",
    ])


@pytest.fixture
def gwinnett_text() -> str:
    """Return Gwinnett list of properties text with a wrapped row."""
    return "\n".join([
        "LIST OF PROPERTIES",
        "PIN OWNER NAME SITUS AMOUNT",
        "R5001 012 SMITH JOHN 123 MAIN ST 1,523.45",
        "R6002 004A DOE JANE",
        "45 OAK DR 310.00",
        "TOTAL 1,833.45",
    ])


@pytest.fixture
def clayton_text() -> str:
    """Return Clayton tax sale text run together on one line."""
    return (
        "DATE PARCEL /OWNER LOCATION YEARS CRY-OUT BID\n"
        "03/03/2026 06002A A010 /JONES MARY 456 ELM ST 2022,2023 $2,100.00 "
        "03/03/2026 13045B B002 /ACME LLC 789 PINE RD 2023 $875.50"
    )
