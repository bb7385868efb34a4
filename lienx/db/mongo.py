"""
Lien storage for LienX.

Records are keyed by jurisdiction and normalized parcel id, so re-running a
scrape updates the liens it already stored instead of duplicating them.
"""

import copy
import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import pymongo
from pymongo.errors import PyMongoError

from lienx.config import MongoDBConfig
from lienx.log import get_logger
from lienx.model import ExtractionRun, LienRecord, PersistenceError

logger = get_logger(__name__)


@dataclass
class UpsertResult:
    """
    Operation counts of a bulk upsert.
    """

    matched: int = 0
    modified: int = 0
    upserted: int = 0

    @property
    def saved(self) -> int:
        return self.matched + self.upserted

    def to_dict(self) -> Dict[str, int]:
        return {"matched": self.matched, "modified": self.modified, "upserted": self.upserted}


def keyify(jurisdiction_key: str, parcel_id: str) -> str:
    """
    Generate the deterministic ID of a lien.

    Args:
        jurisdiction_key: Jurisdiction key
        parcel_id: Normalized parcel identifier

    Returns:
        Deterministic ID
    """
    return f"{jurisdiction_key}::{parcel_id}"


def to_mongodb_doc(record: LienRecord, jurisdiction_key: str, county_id: Optional[int] = None) -> Dict:
    """
    Convert a record to a MongoDB document.

    Args:
        record: Record to convert
        jurisdiction_key: Jurisdiction key
        county_id: Numeric county identifier

    Returns:
        MongoDB document
    """
    return {
        "_id": keyify(jurisdiction_key, record["parcel_id"]),
        "jurisdiction": jurisdiction_key,
        "county_id": county_id,
        "parcel_id": record["parcel_id"],
        "owner_name": record.get("owner_name", ""),
        "property_address": record.get("property_address", ""),
        "city": record.get("city"),
        "zip": record.get("zip"),
        "tax_amount_due": record.get("tax_amount_due", 0.0),
        "sale_date": record.get("sale_date"),
        "legal_description": record.get("legal_description"),
        "scraped_at": datetime.datetime.utcnow(),
    }


class LienStore:
    """
    Persistence collaborator used by the scrapers.
    """

    def upsert(self, records: List[LienRecord], jurisdiction_key: str,
               county_id: Optional[int] = None) -> UpsertResult:
        """
        Insert or update records keyed by jurisdiction and parcel id.

        Args:
            records: Records to store
            jurisdiction_key: Jurisdiction the records belong to
            county_id: Numeric county identifier

        Returns:
            Operation counts

        Raises:
            PersistenceError: If the records cannot be stored
        """
        raise NotImplementedError

    def find_ids(self, jurisdiction_key: str, parcel_ids: List[str]) -> Dict[str, str]:
        """
        Map stored parcel ids to their record ids.

        Args:
            jurisdiction_key: Jurisdiction key
            parcel_ids: Parcel ids to look up

        Returns:
            Parcel id to record id, for the parcels that are stored
        """
        raise NotImplementedError

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def attach_property(self, record_id: str, property_data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def log_run(self, run: ExtractionRun) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MongoLienStore(LienStore):
    """
    Lien store backed by MongoDB.
    """

    def __init__(self, cfg: MongoDBConfig, client: Optional[pymongo.MongoClient] = None):
        self.cfg = cfg
        self.client = client or pymongo.MongoClient(cfg.uri, retryWrites=True)
        db = self.client[cfg.database]
        self.collection = db[cfg.collection]
        self.runs = db[cfg.runs_collection]
        self.properties = db[cfg.properties_collection]

    def upsert(self, records: List[LienRecord], jurisdiction_key: str,
               county_id: Optional[int] = None) -> UpsertResult:
        if not records:
            return UpsertResult()

        logger.info(f"Writing {len(records)} {jurisdiction_key} records to MongoDB")

        operations = []
        for record in records:
            doc = to_mongodb_doc(record, jurisdiction_key, county_id)
            update = {
                "$set": {k: v for k, v in doc.items() if k != "_id"},
                "$setOnInsert": {"first_seen_at": doc["scraped_at"]},
            }
            operations.append(pymongo.UpdateOne({"_id": doc["_id"]}, update, upsert=True))

        try:
            result = self.collection.bulk_write(operations, ordered=False)
        except PyMongoError as e:
            logger.error(f"Error writing to MongoDB: {e}")
            raise PersistenceError(f"Error writing to MongoDB: {e}")

        return UpsertResult(
            matched=result.matched_count,
            modified=result.modified_count,
            upserted=len(result.upserted_ids or {}),
        )

    def find_ids(self, jurisdiction_key: str, parcel_ids: List[str]) -> Dict[str, str]:
        ids = [keyify(jurisdiction_key, parcel_id) for parcel_id in parcel_ids]
        if not ids:
            return {}
        try:
            cursor = self.collection.find({"_id": {"$in": ids}}, {"_id": 1, "parcel_id": 1})
            return {doc["parcel_id"]: doc["_id"] for doc in cursor}
        except PyMongoError as e:
            raise PersistenceError(f"Error reading from MongoDB: {e}")

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self.collection.find_one({"_id": record_id})
        except PyMongoError as e:
            raise PersistenceError(f"Error reading from MongoDB: {e}")

    def attach_property(self, record_id: str, property_data: Dict[str, Any]) -> None:
        try:
            self.properties.update_one(
                {"_id": record_id},
                {"$set": dict(property_data, lien_id=record_id)},
                upsert=True,
            )
        except PyMongoError as e:
            raise PersistenceError(f"Error writing property data for {record_id}: {e}")

    def log_run(self, run: ExtractionRun) -> None:
        """
        Record a run summary.

        A failure here is logged and does not fail the run.

        Args:
            run: Finished run
        """
        try:
            self.runs.insert_one(run.to_dict())
        except PyMongoError as e:
            logger.error(f"Error logging {run.jurisdiction} run to MongoDB: {e}")

    def setup(self) -> None:
        """
        Create the indexes the scrapers and readers rely on.

        Raises:
            PersistenceError: If index creation fails
        """
        logger.info("Setting up MongoDB indexes")
        try:
            self.collection.create_index(
                [("jurisdiction", pymongo.ASCENDING), ("parcel_id", pymongo.ASCENDING)],
                unique=True,
            )
            self.collection.create_index([("sale_date", pymongo.ASCENDING)])
            self.collection.create_index([("county_id", pymongo.ASCENDING)])
            self.runs.create_index([("jurisdiction", pymongo.ASCENDING), ("started_at", pymongo.DESCENDING)])
        except PyMongoError as e:
            logger.error(f"Error setting up MongoDB: {e}")
            raise PersistenceError(f"Error setting up MongoDB: {e}")
        logger.info("MongoDB setup complete")

    def close(self) -> None:
        self.client.close()


class MemoryLienStore(LienStore):
    """
    Lien store held in process memory.
    """

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.properties: Dict[str, Dict[str, Any]] = {}
        self.runs: List[Dict[str, Any]] = []

    def upsert(self, records: List[LienRecord], jurisdiction_key: str,
               county_id: Optional[int] = None) -> UpsertResult:
        result = UpsertResult()
        for record in records:
            doc = to_mongodb_doc(record, jurisdiction_key, county_id)
            existing = self.docs.get(doc["_id"])
            if existing is None:
                doc["first_seen_at"] = doc["scraped_at"]
                self.docs[doc["_id"]] = doc
                result.upserted += 1
                continue

            result.matched += 1
            changed = any(existing.get(k) != v for k, v in doc.items() if k != "scraped_at")
            existing.update(doc)
            if changed:
                result.modified += 1
        return result

    def find_ids(self, jurisdiction_key: str, parcel_ids: List[str]) -> Dict[str, str]:
        found = {}
        for parcel_id in parcel_ids:
            record_id = keyify(jurisdiction_key, parcel_id)
            if record_id in self.docs:
                found[parcel_id] = record_id
        return found

    def get(self, record_id: str) -> Optional[Dict[str, Any]]:
        doc = self.docs.get(record_id)
        return copy.deepcopy(doc) if doc is not None else None

    def attach_property(self, record_id: str, property_data: Dict[str, Any]) -> None:
        self.properties[record_id] = dict(property_data, lien_id=record_id)

    def log_run(self, run: ExtractionRun) -> None:
        self.runs.append(run.to_dict())


def build_store(cfg: MongoDBConfig) -> Optional[LienStore]:
    """
    Build the configured lien store and make sure its indexes exist.

    Args:
        cfg: MongoDB configuration

    Returns:
        MongoDB store, or None when persistence is disabled

    Raises:
        PersistenceError: If the indexes cannot be created
    """
    if not cfg.enabled:
        logger.info("MongoDB persistence is disabled in configuration")
        return None
    store = MongoLienStore(cfg)
    store.setup()
    return store
