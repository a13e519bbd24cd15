"""
Content requests: public intake and admin triage.

Duplicate submissions are rejected by the unique index on ``dedupeKey``
(trimmed, lowercased name + year + type). The ``duplicate`` status an admin
may assign is independent of that check.
"""

import re
from typing import Any, Dict, Optional

from loguru import logger
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from content_service import clamp_paging, page_count
from database import create_document, serialize_doc, to_object_id, utcnow
from errors import ConflictError, NotFoundError, ValidationError
from schemas import CONTENT_TYPES, REQUEST_PRIORITIES, REQUEST_STATUSES, ContentRequest, ContentRequestUpdate

REQUEST_SORT_FIELDS = ("createdAt", "updatedAt", "contentName", "yearOfRelease", "status", "priority")


def _public(doc: Dict[str, Any]) -> Dict[str, Any]:
    doc = serialize_doc(doc)
    doc.pop("dedupeKey", None)
    return doc


class RequestService:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db.request

    def create(self, payload: ContentRequest, created_ip: Optional[str] = None) -> Dict[str, Any]:
        doc = payload.to_document()
        doc.update({"status": "pending", "dedupeKey": payload.dedupe_key()})
        if created_ip:
            doc["createdIp"] = created_ip
        try:
            created = create_document(self.db, "request", doc)
        except DuplicateKeyError:
            raise ConflictError("This content has already been requested (duplicate request detected).")
        logger.info(f"Request submitted: '{payload.content_name}' ({payload.year_of_release}, {payload.content_type})")
        return _public(created)

    def list(
        self,
        status: Optional[str] = None,
        content_type: Optional[str] = None,
        priority: Optional[str] = None,
        search: Optional[str] = None,
        page: Any = 1,
        limit: Any = 20,
        sort_by: str = "createdAt",
        sort_order: str = "desc",
    ) -> Dict[str, Any]:
        page, limit = clamp_paging(page, limit, default_limit=20)

        query: Dict[str, Any] = {}
        for field, value, allowed in (
            ("status", status, REQUEST_STATUSES),
            ("contentType", content_type, CONTENT_TYPES),
            ("priority", priority, REQUEST_PRIORITIES),
        ):
            if value:
                if value not in allowed:
                    raise ValidationError(f"{field} must be one of: {', '.join(allowed)}")
                query[field] = value
        if search and search.strip():
            pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
            query["$or"] = [{"contentName": pattern}, {"requestedBy": pattern}]

        if sort_by not in REQUEST_SORT_FIELDS:
            raise ValidationError(f"Cannot sort by '{sort_by}'. Allowed: {', '.join(REQUEST_SORT_FIELDS)}")
        direction = ASCENDING if sort_order == "asc" else DESCENDING

        total = self.collection.count_documents(query)
        cursor = (
            self.collection.find(query)
            .sort([(sort_by, direction), ("_id", direction)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        return {
            "data": [_public(doc) for doc in cursor],
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": page_count(total, limit),
            },
        }

    def get_by_id(self, request_id: str) -> Dict[str, Any]:
        doc = self.collection.find_one({"_id": to_object_id(request_id)})
        if not doc:
            raise NotFoundError("Request not found")
        return _public(doc)

    def patch_fields(self, request_id: str, changes: ContentRequestUpdate) -> Dict[str, Any]:
        """Update only status, priority and adminNotes; any status may follow any other."""
        fields = changes.model_dump(by_alias=True, exclude_unset=True)
        if not fields:
            raise ValidationError("Provide at least one of: status, priority, adminNotes")
        fields["updatedAt"] = utcnow()
        updated = self.collection.find_one_and_update(
            {"_id": to_object_id(request_id)}, {"$set": fields}, return_document=ReturnDocument.AFTER
        )
        if not updated:
            raise NotFoundError("Request not found")
        logger.info(f"Request {request_id} updated: {sorted(k for k in fields if k != 'updatedAt')}")
        return _public(updated)

    def delete(self, request_id: str) -> None:
        result = self.collection.delete_one({"_id": to_object_id(request_id)})
        if result.deleted_count == 0:
            raise NotFoundError("Request not found")
