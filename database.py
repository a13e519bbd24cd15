"""
MongoDB access for the catalog.

A single ``MongoClient`` is created lazily at import time; request handlers get
the database handle through the ``get_db`` dependency so tests can swap in an
in-memory database. Collection names are the lowercased schema class names
(``Content`` -> ``content``).
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId
from bson.errors import InvalidId
from loguru import logger
from pymongo import ASCENDING, DESCENDING, TEXT, MongoClient
from pymongo.database import Database

import config
from errors import ValidationError

client: MongoClient = MongoClient(config.DATABASE_URL, serverSelectionTimeoutMS=5000, tz_aware=True)
db: Database = client[config.DATABASE_NAME]


def get_db() -> Database:
    return db


# -----------------------------
# Helpers
# -----------------------------

def utcnow() -> datetime:
    # BSON dates carry millisecond precision
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_object_id(id_str: Any) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid ID")


def serialize_doc(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    for key, value in doc.items():
        if isinstance(value, ObjectId):
            doc[key] = str(value)
    return doc


def create_document(database: Database, collection_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    now = utcnow()
    doc = dict(data)
    doc.setdefault("createdAt", now)
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


# -----------------------------
# Indexes
# -----------------------------

def ensure_indexes(database: Database) -> None:
    """Create the indexes that back uniqueness, search and paging."""
    database.content.create_index("slug", unique=True)
    database.content.create_index([("title", TEXT), ("tags", TEXT)], name="content_text")
    database.content.create_index([("type", ASCENDING), ("releaseDate", DESCENDING)])

    database.availability.create_index("contentId")

    # dedupeKey = lower(contentName) + year + contentType
    database.request.create_index("dedupeKey", unique=True)
    database.request.create_index("status")
    database.request.create_index([("createdAt", DESCENDING)])

    database.admin.create_index("email", unique=True)
    logger.debug(f"Indexes ensured on database '{database.name}'")
