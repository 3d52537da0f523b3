"""
Database connection and document helpers.

The MongoDB connection is configured from DATABASE_URL and DATABASE_NAME.
When either is missing `db` stays None and routes report the database as
not configured.
"""
import os
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]
else:
    logger.warning("DATABASE_URL or DATABASE_NAME not set, running without a database")


class DocumentNotFound(LookupError):
    pass


def get_db():
    """FastAPI dependency returning the active database handle."""
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes that are already UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def object_id(value: str) -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise DocumentNotFound(value)


def serialize(doc: Optional[dict]) -> Optional[dict]:
    """Expose `_id` as a string `id`, other ObjectIds as strings and datetimes as ISO strings."""
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = as_utc(v).isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(database, collection_name: str, data: Any) -> str:
    if database is None:
        raise RuntimeError("Database not configured")
    if isinstance(data, BaseModel):
        data = data.model_dump()
    else:
        data = dict(data)
    now = utcnow()
    data.setdefault("created_at", now)
    data["updated_at"] = now
    result = database[collection_name].insert_one(data)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    if database is None:
        raise RuntimeError("Database not configured")
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
