"""
Data models for LienX.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict


class LienRecord(TypedDict):
    """
    Represents a candidate tax lien extracted from a county listing.
    """

    parcel_id: str  # Normalized per jurisdiction, never empty
    owner_name: str  # "" when the source omits owners
    property_address: str  # Street only
    city: Optional[str]
    zip: Optional[str]
    tax_amount_due: float  # Non-negative, 0.0 when unavailable
    sale_date: Optional[str]  # ISO 8601 (YYYY-MM-DD) where the source allows
    legal_description: Optional[str]  # Auxiliary source fields


class RunStatus(Enum):
    """
    States of an extraction run.
    """

    PENDING = "pending"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    FILTERING = "filtering"
    PERSISTING = "persisting"
    ENRICHING = "enriching"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ParseResult:
    """
    Records reconstructed from one document plus the rows dropped on the way.
    """

    records: List[LienRecord] = field(default_factory=list)
    skipped: int = 0
    strategy: str = ""  # "header", "pattern", "table" or "block"

    def extend(self, other: "ParseResult") -> None:
        self.records.extend(other.records)
        self.skipped += other.skipped


@dataclass
class ExtractionRun:
    """
    Outcome of one jurisdiction run.
    """

    jurisdiction: str
    status: RunStatus = RunStatus.PENDING
    records: List[LienRecord] = field(default_factory=list)
    records_skipped: int = 0
    records_saved: int = 0
    documents_processed: int = 0
    documents_failed: int = 0
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    @property
    def records_found(self) -> int:
        return len(self.records)

    @property
    def succeeded(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        """
        Summarize the run without the records themselves.

        Returns:
            Dictionary suitable for logging or persisting
        """
        return {
            "jurisdiction": self.jurisdiction,
            "status": self.status.value,
            "records_found": self.records_found,
            "records_skipped": self.records_skipped,
            "records_saved": self.records_saved,
            "documents_processed": self.documents_processed,
            "documents_failed": self.documents_failed,
            "error": self.error,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class LienXError(Exception):
    """Base class for all lienx exceptions."""

    pass


class ConfigError(LienXError):
    """Exception raised for configuration errors."""

    pass


class FetchError(LienXError):
    """Exception raised when a document cannot be retrieved."""

    pass


class ExtractionError(LienXError):
    """Exception raised when no data can be extracted from a document."""

    pass


class PdfExtractionError(ExtractionError):
    """
    Exception raised when every PDF text tier failed.

    The per-tier messages are kept in ``errors`` in the order the tiers ran.
    """

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        self.errors = dict(errors or {})
        if self.errors:
            details = "; ".join(f"{tier}: {err}" for tier, err in self.errors.items())
            message = f"{message} ({details})"
        super().__init__(message)


class OcrUnavailableError(ExtractionError):
    """Exception raised when OCR cannot run in the current environment."""

    pass


class EnrichmentError(LienXError):
    """Exception raised for valuation lookup errors."""

    pass


class PersistenceError(LienXError):
    """Exception raised when records cannot be stored."""

    pass


class OutputError(LienXError):
    """Exception raised for output errors."""

    pass
