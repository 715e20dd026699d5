"""
Database Helper Functions

MongoDB helper functions shared by the order, payment, catalog and user services.
Every helper goes through the module-level `db` handle, so tests can swap it out.
"""

from pymongo import MongoClient, ReturnDocument, ASCENDING, DESCENDING
from bson import ObjectId
from bson.errors import InvalidId
from datetime import datetime, timezone
from typing import Union, Optional, Dict, Any, List
from pydantic import BaseModel

import config
from errors import ConfigurationError

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    _client = MongoClient(config.DATABASE_URL)
    db = _client[config.DATABASE_NAME]


def _ensure_db():
    if db is None:
        raise ConfigurationError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")


def _to_dict(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        return data.model_dump()
    return dict(data)


def to_object_id(_id: str) -> Optional[ObjectId]:
    try:
        return ObjectId(_id)
    except (InvalidId, TypeError):
        return None


def get_collection(collection_name: str):
    _ensure_db()
    return db[collection_name]


def ensure_indexes():
    """Create the indexes the services rely on. Safe to call repeatedly."""
    _ensure_db()
    db["order"].create_index([("order_number", ASCENDING)], unique=True)
    db["order"].create_index([("customer_id", ASCENDING), ("created_at", DESCENDING)])
    db["orderitem"].create_index([("order_id", ASCENDING)])
    db["user"].create_index([("email", ASCENDING)], unique=True)


# CRUD helpers

def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    _ensure_db()
    payload = _to_dict(data)
    now = datetime.now(timezone.utc)
    payload['created_at'] = now
    payload['updated_at'] = now
    result = db[collection_name].insert_one(payload)
    return str(result.inserted_id)


def create_documents(collection_name: str, items: List[Union[BaseModel, dict]]) -> List[str]:
    _ensure_db()
    if not items:
        return []
    now = datetime.now(timezone.utc)
    payloads = []
    for item in items:
        payload = _to_dict(item)
        payload['created_at'] = now
        payload['updated_at'] = now
        payloads.append(payload)
    result = db[collection_name].insert_many(payloads, ordered=True)
    return [str(_id) for _id in result.inserted_ids]


def get_documents(collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None, sort: Optional[list] = None, skip: Optional[int] = None) -> List[dict]:
    _ensure_db()
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(int(skip))
    if limit:
        cursor = cursor.limit(int(limit))
    return [serialize_doc(doc) for doc in cursor]


def count_documents(collection_name: str, filter_dict: Optional[dict] = None) -> int:
    _ensure_db()
    return db[collection_name].count_documents(filter_dict or {})


def get_document_by_id(collection_name: str, _id: str) -> Optional[dict]:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return None
    doc = db[collection_name].find_one({"_id": oid})
    return serialize_doc(doc) if doc else None


def update_document(collection_name: str, _id: str, update_data: Dict[str, Any]) -> bool:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    update = {"$set": _to_dict(update_data)}
    update["$set"]["updated_at"] = datetime.now(timezone.utc)
    result = db[collection_name].update_one({"_id": oid}, update)
    return result.matched_count > 0


def update_document_versioned(collection_name: str, _id: str, expected_version: int, set_data: Dict[str, Any], push: Optional[Dict[str, Any]] = None) -> Optional[dict]:
    """
    Apply `set_data` (and optional `$push`) only if the stored `version` still
    equals `expected_version`. Returns the updated document, or None when the
    document is missing or was changed by someone else in the meantime.
    """
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return None
    update = {"$set": dict(set_data), "$inc": {"version": 1}}
    update["$set"]["updated_at"] = datetime.now(timezone.utc)
    if push:
        update["$push"] = push
    doc = db[collection_name].find_one_and_update(
        {"_id": oid, "version": expected_version},
        update,
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc) if doc else None


def delete_document(collection_name: str, _id: str) -> bool:
    _ensure_db()
    oid = to_object_id(_id)
    if oid is None:
        return False
    result = db[collection_name].delete_one({"_id": oid})
    return result.deleted_count > 0


def delete_documents(collection_name: str, filter_dict: dict) -> int:
    _ensure_db()
    result = db[collection_name].delete_many(filter_dict)
    return result.deleted_count


# Utility

def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    if "_id" in d:
        d["_id"] = str(d["_id"])  # convert ObjectId to string
    return d
