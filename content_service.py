"""
Content CRUD, listing and title search.

Slug uniqueness is enforced by the unique index on ``content.slug``; a
clash surfaces as ``ConflictError``. Deleting a title removes its
availability rows afterwards in a separate, non-transactional step.
"""

import math
import re
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from availability_service import AvailabilityService
from database import create_document, serialize_doc, to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import CONTENT_OPTIONAL_FIELDS, CONTENT_TYPES, Content

SORTABLE_FIELDS = ("releaseDate", "rating", "title", "createdAt", "updatedAt", "runtime")
SEARCH_MIN_LENGTH = 3
SEARCH_MAX_RESULTS = 20
SEARCH_PROJECTION = {"title": 1, "type": 1, "posterUrl": 1, "slug": 1, "releaseDate": 1}
MAX_PAGE_SIZE = 100


def parse_sort(sort: Optional[str], default: str = "-releaseDate") -> List[Tuple[str, int]]:
    """Translate ``"-field"``/``"field"`` into a pymongo sort list.

    ``_id`` is appended in the same direction so equal keys keep a fixed
    order across pages.
    """
    sort = (sort or default).strip()
    direction = DESCENDING if sort.startswith("-") else ASCENDING
    field = sort.lstrip("-+")
    if field not in SORTABLE_FIELDS:
        raise ValidationError(f"Cannot sort by '{field}'. Allowed: {', '.join(SORTABLE_FIELDS)}")
    return [(field, direction), ("_id", direction)]


def clamp_paging(page: Any, limit: Any, default_limit: int) -> Tuple[int, int]:
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = default_limit
    if limit < 1:
        limit = default_limit
    return max(page, 1), min(limit, MAX_PAGE_SIZE)


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


class ContentService:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db.content
        self.availability = AvailabilityService(db)

    # -----------------------------
    # Writes
    # -----------------------------
    def create(self, payload: Content) -> Dict[str, Any]:
        try:
            doc = create_document(self.db, "content", payload.to_document())
        except DuplicateKeyError:
            raise ConflictError(f"Content with slug '{payload.slug}' already exists")
        logger.info(f"Content created: {doc['_id']} slug={doc['slug']}")
        return serialize_doc(doc)

    def replace(self, content_id: str, payload: Content) -> Dict[str, Any]:
        doc = payload.to_document()
        doc["updatedAt"] = utcnow()
        update: Dict[str, Any] = {"$set": doc}
        unset = {field: "" for field in CONTENT_OPTIONAL_FIELDS if field not in doc}
        if unset:
            update["$unset"] = unset
        try:
            updated = self.collection.find_one_and_update(
                {"_id": to_object_id(content_id)}, update, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError(f"Content with slug '{payload.slug}' already exists")
        if not updated:
            raise NotFoundError("Content not found")
        return serialize_doc(updated)

    def delete(self, content_id: str) -> Dict[str, str]:
        oid = to_object_id(content_id)
        result = self.collection.delete_one({"_id": oid})
        if result.deleted_count == 0:
            raise NotFoundError("Content not found")
        removed = self.availability.delete_for_content(oid)
        logger.info(f"Content deleted: {oid} (cascade removed {removed} availability rows)")
        return {"message": "Content deleted successfully"}

    # -----------------------------
    # Reads
    # -----------------------------
    def get_by_id(self, content_id: str) -> Dict[str, Any]:
        oid = to_object_id(content_id)
        doc = self.collection.find_one({"_id": oid})
        if not doc:
            raise NotFoundError("Content not found")
        content = serialize_doc(doc)
        content["availability"] = self.availability.rows_for(oid)
        return content

    def list(
        self,
        type: Optional[str] = None,
        page: Any = 1,
        limit: Any = 10,
        sort: Optional[str] = "-releaseDate",
        q: Optional[str] = None,
    ) -> Dict[str, Any]:
        page, limit = clamp_paging(page, limit, default_limit=10)
        query: Dict[str, Any] = {}
        if type:
            query["type"] = self._check_type(type)
        if q and q.strip():
            query["$text"] = {"$search": q.strip()}
            # relevance order replaces the requested sort
            cursor = self.collection.find(query, {"score": {"$meta": "textScore"}}).sort(
                [("score", {"$meta": "textScore"}), ("_id", DESCENDING)]
            )
        else:
            cursor = self.collection.find(query).sort(parse_sort(sort))

        total = self.collection.count_documents(query)
        items = []
        for doc in cursor.skip((page - 1) * limit).limit(limit):
            doc.pop("score", None)
            items.append(serialize_doc(doc))
        return {
            "contents": items,
            "total": total,
            "limit": limit,
            "page": page,
            "pages": page_count(total, limit),
        }

    def list_by_type(self, type: str, page: Any = 1, limit: Any = 20, sort: Optional[str] = "-releaseDate") -> Dict[str, Any]:
        if type not in CONTENT_TYPES:
            raise ValidationError("Invalid content type")
        result = self.list(type=type, page=page, limit=limit, sort=sort)
        result["type"] = type
        return result

    def search(self, q: Optional[str], type: Optional[str] = None) -> List[Dict[str, Any]]:
        if not q or len(q.strip()) < SEARCH_MIN_LENGTH:
            raise ValidationError(f"Please provide a search query with at least {SEARCH_MIN_LENGTH} characters")

        query: Dict[str, Any] = {"title": {"$regex": re.escape(q.strip()), "$options": "i"}}
        if type in CONTENT_TYPES:
            query["type"] = type

        cursor = (
            self.collection.find(query, SEARCH_PROJECTION)
            .sort([("releaseDate", DESCENDING), ("_id", DESCENDING)])
            .limit(SEARCH_MAX_RESULTS)
        )
        results = [serialize_doc(doc) for doc in cursor]
        if not results:
            raise NotFoundError("No content found")
        return results

    @staticmethod
    def _check_type(type: str) -> str:
        if type not in CONTENT_TYPES:
            raise ValidationError(f"type must be one of: {', '.join(CONTENT_TYPES)}")
        return type
