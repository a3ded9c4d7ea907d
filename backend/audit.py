from datetime import datetime
from typing import Dict, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError


def _metadata_value(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def sanitize_metadata(metadata: Optional[Dict]) -> Dict[str, str]:
    """Flatten metadata to strings; ObjectIds become hex, datetimes ISO 8601."""
    if not isinstance(metadata, dict):
        return {}
    return {
        str(key): _metadata_value(value)
        for key, value in metadata.items()
        if value is not None
    }


class AuditLog:
    def __init__(self, collection, users_collection, logger):
        self.collection = collection
        self.users = users_collection
        self.logger = logger

    def ensure_indexes(self):
        try:
            self.collection.create_index([("created_at", -1)])
            self.collection.create_index([("actor_id", 1), ("action", 1)])
        except PyMongoError as exc:
            self.logger.warning("Unable to ensure indexes for audit logs: %s", exc)

    def record(self, actor_id, action: str, metadata: Optional[Dict] = None):
        if not action:
            return
        try:
            log_document = {
                "actor_id": str(actor_id) if actor_id else None,
                "actor_name": "",
                "action": action,
                "metadata": sanitize_metadata(metadata),
                "created_at": datetime.utcnow(),
            }
            if actor_id and ObjectId.is_valid(str(actor_id)):
                actor = self.users.find_one({"_id": ObjectId(str(actor_id))})
                if actor:
                    log_document["actor_name"] = actor.get("name", "") or ""
                    log_document["metadata"].setdefault("actor_role", actor.get("role", ""))
            self.collection.insert_one(log_document)
        except PyMongoError as exc:
            self.logger.warning("Unable to record audit log: %s", exc)


def serialize_audit_log(document):
    if not document:
        return {}
    created_at = document.get("created_at")
    metadata = document.get("metadata")
    return {
        "id": str(document.get("_id")),
        "actor_id": document.get("actor_id") or "",
        "actor_name": document.get("actor_name") or "",
        "action": document.get("action") or "",
        "metadata": metadata if isinstance(metadata, dict) else {},
        "created_at": created_at.isoformat() + "Z"
        if isinstance(created_at, datetime)
        else None,
    }
