"""
MongoDB access for the Shop Finder API.

`db` is None when DATABASE_URL is not configured so the app can still boot
and report its state on /test.
"""
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import MongoClient, ReturnDocument
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "shopfinder")

db: Optional[Database] = None

if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // timedelta(milliseconds=1)


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    if db is None:
        raise RuntimeError("Database not configured")
    doc = data.model_dump(mode="json") if isinstance(data, BaseModel) else dict(data)
    doc.setdefault("_id", doc.get("id") or new_id())
    db[collection_name].insert_one(doc)
    return str(doc["_id"])


def get_documents(collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  limit: Optional[int] = None) -> List[Dict[str, Any]]:
    if db is None:
        raise RuntimeError("Database not configured")
    cursor = db[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


class MongoPersistence:
    """Persistence collaborator used by the scheduler and the routes.

    Facilities live in the `facility` collection keyed by their id. Each
    facility's status history is a single `transition_log` document holding
    an `events` array, so appends, purges and clears are atomic per facility.
    """

    def __init__(self, database: Database):
        self.db = database

    def read_facilities(self) -> List[Dict[str, Any]]:
        return list(self.db["facility"].find({}))

    def read_facility(self, facility_id: str) -> Optional[Dict[str, Any]]:
        return self.db["facility"].find_one({"_id": facility_id})

    def write_facility(self, facility_id: str, partial_update: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.db["facility"].find_one_and_update(
            {"_id": facility_id},
            {"$set": partial_update},
            return_document=ReturnDocument.AFTER,
        )

    def restock_items(self, facility_id: str, item_ids: List[str], due_by: int) -> List[str]:
        """Flip due items back to available in place; returns the ids actually flipped.

        Each item is matched on its id and on still being unavailable with a
        restock time at or before `due_by` (epoch ms), so items added, removed
        or re-timed since the caller's snapshot are left as they are.
        """
        flipped = []
        for item_id in item_ids:
            result = self.db["facility"].update_one(
                {"_id": facility_id,
                 "items": {"$elemMatch": {"id": item_id, "available": False,
                                          "restock_at": {"$ne": None, "$lte": due_by}}}},
                {"$set": {"items.$.available": True, "items.$.restock_at": None}},
            )
            if result.modified_count:
                flipped.append(item_id)
        return flipped

    def append_transition(self, event: Dict[str, Any]) -> None:
        self.db["transition_log"].update_one(
            {"_id": event["facility_id"]},
            {"$push": {"events": event}},
            upsert=True,
        )

    def read_transitions(self, facility_id: str) -> List[Dict[str, Any]]:
        doc = self.db["transition_log"].find_one({"_id": facility_id})
        return list(doc.get("events", [])) if doc else []

    def read_all_transitions(self) -> List[Dict[str, Any]]:
        events: List[Dict[str, Any]] = []
        for doc in self.db["transition_log"].find({}):
            events.extend(doc.get("events", []))
        return events

    def delete_transitions_matching(self, facility_id: str, predicate: Optional[Dict[str, Any]] = None) -> None:
        """Remove events matching `predicate` (a query on event fields), or all of them."""
        if predicate is None:
            self.db["transition_log"].update_one({"_id": facility_id}, {"$set": {"events": []}})
        else:
            self.db["transition_log"].update_one({"_id": facility_id}, {"$pull": {"events": predicate}})
