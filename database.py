"""
Database helpers for MediFinder

Connects to MongoDB using DATABASE_URL / DATABASE_NAME. When they are not set
the module still imports and `db` stays None, so routes can report that the
database is not configured.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument

import config
from schemas import StockStatus

logger = logging.getLogger(__name__)

_client = None
db = None

if config.DATABASE_URL and config.DATABASE_NAME:
    try:
        _client = MongoClient(config.DATABASE_URL)
        db = _client[config.DATABASE_NAME]
    except Exception as e:
        logger.error(f"Could not connect to MongoDB: {str(e)}")
        db = None


def get_db():
    if db is None:
        raise RuntimeError("Database not available. Check DATABASE_URL and DATABASE_NAME environment variables.")
    return db


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at / updated_at stamps and return its id"""
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = datetime.now(timezone.utc)
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    result = get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List[tuple]] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    cursor = get_db()[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def take_one_unit(medicine_oid) -> Optional[Dict[str, Any]]:
    """
    Atomically remove one unit from a medicine's stock.

    The decrement only matches while quantity > 0, so concurrent callers can
    never drive it negative. Returns the updated document, or None when the
    medicine is missing or already out of units.
    """
    medicines = get_db()["medicine"]
    updated = medicines.find_one_and_update(
        {"_id": medicine_oid, "quantity": {"$gt": 0}},
        {"$inc": {"quantity": -1}, "$set": {"updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if updated is not None and updated.get("quantity", 0) <= 0:
        medicines.update_one({"_id": medicine_oid, "quantity": {"$lte": 0}},
                             {"$set": {"stock": StockStatus.OUT_OF_STOCK.value}})
        updated["stock"] = StockStatus.OUT_OF_STOCK.value
    return updated
