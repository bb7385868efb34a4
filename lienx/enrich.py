"""
Property valuation enrichment for LienX.

An ``Enricher`` answers two questions: is a candidate lien worth keeping
(its parcel carries a non-zero assessed improvement value), and what is
known about a saved lien's property. ``RealEstateApiEnricher`` answers them
with the RealEstateAPI property search.
"""

import datetime
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from lienx.config import Config, EnrichmentConfig
from lienx.log import get_logger
from lienx.model import ConfigError, EnrichmentError

logger = get_logger(__name__)

IMPROVEMENT_VALUE_KEYS = ("assessedImprovementValue", "improvementValue")


@dataclass
class EnrichmentResult:
    """
    Outcome of a valuation lookup.
    """

    is_valid: bool
    property_data: Optional[Dict[str, Any]] = None


class Enricher:
    """
    Valuation collaborator used by the scrapers.
    """

    def enrich_and_validate(self, parcel_id: str, address: str) -> Optional[EnrichmentResult]:
        """
        Look up a candidate lien before it is saved.

        Args:
            parcel_id: Normalized parcel identifier
            address: Street address

        Returns:
            Lookup result, or None when the lookup failed
        """
        raise NotImplementedError

    def enrich_saved(self, record_id: str, parcel_id: str) -> None:
        """
        Fill valuation data for a saved lien.

        Args:
            record_id: Store identifier of the saved lien
            parcel_id: Normalized parcel identifier
        """
        raise NotImplementedError


def improvement_value(property_data: Optional[Dict[str, Any]]) -> Optional[float]:
    """
    Read the assessed improvement value from a property payload.

    Args:
        property_data: Property search result

    Returns:
        The value, or None when the payload does not carry one
    """
    if not property_data:
        return None

    sources = [property_data]
    for nested in ("taxInfo", "assessment", "propertyInfo"):
        if isinstance(property_data.get(nested), dict):
            sources.append(property_data[nested])

    for source in sources:
        for key in IMPROVEMENT_VALUE_KEYS:
            value = source.get(key)
            if value is None or value == "":
                continue
            try:
                return float(value)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric {key}: {value!r}")
    return None


def is_valid_property(property_data: Optional[Dict[str, Any]]) -> bool:
    """
    Decide whether a lien's property is worth keeping.

    A missing value and an explicit zero are both invalid.

    Args:
        property_data: Property search result

    Returns:
        True if the improvement value is present and above zero
    """
    value = improvement_value(property_data)
    return value is not None and value > 0


def summarize_property(property_data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Select the valuation fields stored alongside a saved lien.

    Args:
        property_data: Property search result

    Returns:
        Flat property document
    """
    def number(*keys) -> float:
        for key in keys:
            value = property_data.get(key)
            if value not in (None, ""):
                try:
                    return float(value)
                except (TypeError, ValueError):
                    continue
        return 0.0

    return {
        "estimated_value": number("estimatedValue"),
        "assessed_improvement_value": improvement_value(property_data),
        "last_sale_price": number("lastSaleAmount", "lastSalePrice"),
        "last_sale_date": property_data.get("lastSaleDate"),
        "year_built": property_data.get("yearBuilt"),
        "bedrooms": property_data.get("bedrooms"),
        "bathrooms": property_data.get("bathrooms"),
        "sqft": number("squareFeet", "sqft"),
        "lot_size_sqft": number("lotSquareFeet", "lotSizeSqft"),
        "property_type": property_data.get("propertyType") or property_data.get("propertyUse"),
        "mortgage_balance": number("openMortgageBalance", "mortgageBalance"),
        "enriched_at": datetime.datetime.utcnow(),
    }


class RealEstateApiEnricher(Enricher):
    """
    Enricher backed by the RealEstateAPI property search.
    """

    def __init__(self, cfg: EnrichmentConfig, store=None, session: Optional[requests.Session] = None,
                 api_key: Optional[str] = None):
        self.cfg = cfg
        self.store = store
        self.session = session or requests.Session()
        self.api_key = api_key or os.environ.get(cfg.api_key_env)
        if not self.api_key:
            raise ConfigError(f"{cfg.api_key_env} environment variable is required for enrichment")

    def search(self, address: Optional[str] = None, parcel_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Run a property search.

        Args:
            address: Full street address
            parcel_id: Parcel identifier, used when there is no address

        Returns:
            Best matching property, or None if the search found nothing

        Raises:
            EnrichmentError: If the request fails
        """
        payload: Dict[str, Any] = {"state": self.cfg.state}
        if address:
            payload["street"] = address
        elif parcel_id:
            payload["apn"] = parcel_id
        else:
            raise EnrichmentError("Property search needs an address or a parcel id")

        try:
            response = self.session.post(
                self.cfg.api_url,
                json=payload,
                headers={
                    "Accept": "application/json",
                    "User-Agent": "LienX/0.1",
                    "x-api-key": self.api_key,
                },
                timeout=self.cfg.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise EnrichmentError(f"Property search failed for {address or parcel_id}: {e}")

        data = body.get("data") if isinstance(body, dict) else None
        if isinstance(data, list):
            if not data:
                return None
            return _best_match(data, address)
        if isinstance(data, dict):
            return data
        return body if isinstance(body, dict) and body else None

    def enrich_and_validate(self, parcel_id: str, address: str) -> Optional[EnrichmentResult]:
        try:
            property_data = self.search(address=address, parcel_id=parcel_id)
        except EnrichmentError as e:
            logger.warning(str(e))
            return None

        if property_data is None:
            logger.debug(f"No property found for {parcel_id}")
            return EnrichmentResult(is_valid=False)

        return EnrichmentResult(is_valid=is_valid_property(property_data), property_data=property_data)

    def enrich_saved(self, record_id: str, parcel_id: str) -> None:
        address = None
        if self.store is not None:
            record = self.store.get(record_id)
            if record:
                parts = [record.get("property_address"), record.get("city"), record.get("zip")]
                address = ", ".join(p for p in parts if p)

        property_data = self.search(address=address, parcel_id=parcel_id)
        if property_data is None:
            raise EnrichmentError(f"No property found for {parcel_id}")

        if self.store is not None:
            self.store.attach_property(record_id, summarize_property(property_data))
        logger.debug(f"Enriched {record_id}")


def _best_match(properties, address: Optional[str]) -> Dict[str, Any]:
    if address:
        first_word = address.lower().split()[0]
        for prop in properties:
            street = ((prop.get("address") or {}).get("street") or "") if isinstance(prop.get("address"), dict) else ""
            if first_word and first_word in street.lower():
                return prop
    return properties[0]


def build_enricher(cfg: Config, store=None, session: Optional[requests.Session] = None) -> Optional[Enricher]:
    """
    Build the configured enricher.

    Args:
        cfg: Application configuration
        store: Lien store the enricher writes property data to
        session: Shared HTTP session

    Returns:
        Enricher, or None when enrichment is disabled or unconfigured
    """
    if not cfg.enrichment.enabled:
        return None
    try:
        return RealEstateApiEnricher(cfg.enrichment, store=store, session=session)
    except ConfigError as e:
        logger.warning(f"Enrichment disabled: {e}")
        return None
