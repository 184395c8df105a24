from __future__ import annotations

from typing import Any, Dict, Optional

from bson import ObjectId


def new_id() -> str:
    return str(ObjectId())


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    raise ValueError(f"Invalid ObjectId: {value!r}")


def convert_object_ids(value: Any) -> Any:
    """Recursively turn ObjectIds into strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, list):
        return [convert_object_ids(item) for item in value]
    if isinstance(value, dict):
        return {key: convert_object_ids(item) for key, item in value.items()}
    return value


def serialize_document(document: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Map a Mongo document to plain data with an ``id`` string in place of ``_id``."""
    if document is None:
        return None
    data = convert_object_ids(dict(document))
    if "_id" in data:
        data["id"] = data.pop("_id")
    return data
