"""
Database access

A single MongoDB database stands behind the whole storefront. ``db`` is None
when DATABASE_URL / DATABASE_NAME are not set; request handlers get the
database through ``get_db`` so tests can swap in an in-memory one.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

import settings
from errors import NotFoundError, RemotePersistenceError


db: Optional[Database] = None

if settings.DATABASE_URL and settings.DATABASE_NAME:
    client = MongoClient(settings.DATABASE_URL)
    db = client[settings.DATABASE_NAME]


def get_db() -> Database:
    if db is None:
        raise RemotePersistenceError("connect to the database", RuntimeError("Database not configured"))
    return db


def ensure_indexes(database: Database) -> None:
    """Unique keys the checkout and cart rely on."""
    database["cartitem"].create_index(
        [("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True
    )
    database["order"].create_index("payment_reference", unique=True)
    database["user"].create_index("email", unique=True)
    database["preferences"].create_index("user_id", unique=True)


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId], kind: str = "Document") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not ObjectId.is_valid(value):
        raise NotFoundError(kind, str(value))
    return ObjectId(value)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace ``_id`` with a string ``id`` and datetimes with isoformat."""
    if not doc:
        return doc
    doc = dict(doc)
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
        elif isinstance(v, ObjectId):
            doc[k] = str(v)
    return doc


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database: Optional[Database] = None) -> str:
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        data = data.model_dump()
    stamp = now()
    doc = {**data, "created_at": stamp, "updated_at": stamp}
    try:
        inserted_id = database[collection_name].insert_one(doc).inserted_id
    except PyMongoError as e:
        raise RemotePersistenceError(f"create {collection_name}", e) from e
    return str(inserted_id)


def get_document(collection_name: str, doc_id: Union[str, ObjectId], database: Optional[Database] = None) -> Dict[str, Any]:
    database = database if database is not None else get_db()
    oid = to_object_id(doc_id, collection_name.capitalize())
    try:
        doc = database[collection_name].find_one({"_id": oid})
    except PyMongoError as e:
        raise RemotePersistenceError(f"read {collection_name}", e) from e
    if not doc:
        raise NotFoundError(collection_name.capitalize(), str(doc_id))
    return doc
