"""
Database Helper Functions with Fallback

Primary: MongoDB via environment variables DATABASE_URL and DATABASE_NAME
Fallback: Mongita (embedded, file-based MongoDB-compatible client) when env vars
          are not provided. This enables the app to run without external DB.

Only operations both backends understand are used: equality filters, and the
$set / $inc update operators.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel

import config
from errors import DatabaseUnavailableError, ValidationError

logger = logging.getLogger(__name__)


def connect():
    """Open the configured database, falling back to Mongita. Returns None if nothing works."""
    try:
        if config.DATABASE_BACKEND == "memory":
            from mongita import MongitaClientMemory  # type: ignore
            return MongitaClientMemory()[config.FALLBACK_DATABASE_NAME]
        if config.DATABASE_URL and config.DATABASE_NAME and config.DATABASE_BACKEND == "auto":
            from pymongo import MongoClient  # type: ignore
            return MongoClient(config.DATABASE_URL)[config.DATABASE_NAME]
        # Fallback to Mongita (embedded MongoDB-like client)
        from mongita import MongitaClientDisk  # type: ignore
        return MongitaClientDisk()[config.FALLBACK_DATABASE_NAME]  # local file-based DB
    except Exception:
        logger.exception("Primary database unavailable, trying in-memory Mongita")

    # As an ultimate fallback, try Mongita in-memory so the API stays usable
    try:
        from mongita import MongitaClientMemory  # type: ignore
        return MongitaClientMemory()[f"{config.FALLBACK_DATABASE_NAME}_runtime"]
    except Exception:
        logger.exception("No database backend could be opened")
        return None


db = connect()


def get_db():
    """FastAPI dependency returning the shared database handle."""
    if db is None:
        raise DatabaseUnavailableError(
            "Database not available. Ensure DATABASE_URL & DATABASE_NAME are set or fallback is working."
        )
    return db


# Helper functions for common database operations

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stores hand back naive datetimes; treat those as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def object_id(value: Any, what: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {what}: {value!r}")


def create_document(database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a single document with timestamps. Returns inserted id (str)."""
    # Convert Pydantic model to dict if needed
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        # Copy to avoid mutating caller's data
        data_dict = dict(data)

    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now

    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None) -> list:
    """Get documents from collection as a list."""
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def find_by_id(database, collection_name: str, doc_id: Any) -> Optional[dict]:
    return database[collection_name].find_one({"_id": object_id(doc_id)})


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Response shape: ``_id`` becomes a string ``id``."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out
