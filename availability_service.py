"""
Availability rows (download/stream options) scoped to a parent Content.

Every mutation filters on the (contentId, availabilityId) pair so a row can
only be changed through the title it belongs to.
"""

from typing import Any, Dict, List

from bson import ObjectId
from loguru import logger
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database

from database import create_document, serialize_doc, to_object_id, utcnow
from errors import NotFoundError
from schemas import AVAILABILITY_OPTIONAL_FIELDS, Availability


class AvailabilityService:
    def __init__(self, db: Database):
        self.db = db
        self.collection = db.availability

    def _require_content(self, content_id: str) -> ObjectId:
        oid = to_object_id(content_id)
        if not self.db.content.find_one({"_id": oid}, {"_id": 1}):
            raise NotFoundError("Content not found")
        return oid

    def rows_for(self, content_oid: ObjectId) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"contentId": content_oid}).sort([("createdAt", ASCENDING), ("_id", ASCENDING)])
        return [serialize_doc(doc) for doc in cursor]

    def list_for_content(self, content_id: str) -> List[Dict[str, Any]]:
        return self.rows_for(self._require_content(content_id))

    def create(self, content_id: str, payload: Availability) -> Dict[str, Any]:
        oid = self._require_content(content_id)
        doc = payload.to_document()
        doc["contentId"] = oid
        created = create_document(self.db, "availability", doc)
        logger.info(f"Availability created: {created['_id']} for content {oid}")
        return serialize_doc(created)

    def replace(self, content_id: str, availability_id: str, payload: Availability) -> Dict[str, Any]:
        doc = payload.to_document()
        doc["updatedAt"] = utcnow()
        update: Dict[str, Any] = {"$set": doc}
        unset = {field: "" for field in AVAILABILITY_OPTIONAL_FIELDS if field not in doc}
        if unset:
            update["$unset"] = unset
        updated = self.collection.find_one_and_update(
            {"_id": to_object_id(availability_id), "contentId": to_object_id(content_id)},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if not updated:
            raise NotFoundError("Availability entry not found")
        return serialize_doc(updated)

    def delete(self, content_id: str, availability_id: str) -> Dict[str, str]:
        result = self.collection.delete_one(
            {"_id": to_object_id(availability_id), "contentId": to_object_id(content_id)}
        )
        if result.deleted_count == 0:
            raise NotFoundError("Availability entry not found")
        return {"message": "Availability entry deleted successfully"}

    def delete_for_content(self, content_oid: ObjectId) -> int:
        return self.collection.delete_many({"contentId": content_oid}).deleted_count
