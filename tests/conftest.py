"""
Shared test fixtures.

Provides an in-memory stand-in for the Motor database and a fake
real-time connection so services can be exercised without MongoDB,
Redis or a socket.
"""

import copy
import os
import uuid
from types import SimpleNamespace
from unittest.mock import patch

# Settings are read at import time
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STORE_RETRY_DELAY_SECONDS", "0")
os.environ.setdefault("CHAT_PUBSUB_BACKEND", "local")
os.environ.setdefault("AUTH_PROVIDER", "jwt")

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from campool_chat.models.identity import Identity


# =============================================================================
# In-memory Motor collection
# =============================================================================


def _resolve(doc, path):
    values = [doc]
    for part in path.split("."):
        found = []
        for value in values:
            if isinstance(value, list):
                found.extend(
                    item[part] for item in value
                    if isinstance(item, dict) and part in item
                )
            elif isinstance(value, dict) and part in value:
                found.append(value[part])
        values = found
    return values


def _candidates(doc, path):
    # A list field matches on the list itself or any of its elements
    out = []
    for value in _resolve(doc, path):
        out.append(value)
        if isinstance(value, list):
            out.extend(value)
    return out


def _compare(op, left, right):
    try:
        if op == "$lt":
            return left < right
        if op == "$lte":
            return left <= right
        if op == "$gt":
            return left > right
        return left >= right
    except TypeError:
        return False


def _match_field(doc, path, condition):
    candidates = _candidates(doc, path)

    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, arg in condition.items():
            if op == "$ne":
                if arg in candidates:
                    return False
            elif op == "$in":
                if not any(c in arg for c in candidates):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                scalars = [c for c in candidates if not isinstance(c, list)]
                if not any(_compare(op, c, arg) for c in scalars):
                    return False
            else:
                raise NotImplementedError(op)
        return True

    return condition in candidates


def matches(doc, query) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in condition):
                return False
        elif not _match_field(doc, key, condition):
            return False
    return True


def _sorted(docs, key_or_list, direction=None):
    keys = [(key_or_list, direction or 1)] if isinstance(key_or_list, str) else list(key_or_list)
    docs = list(docs)
    for field, order in reversed(keys):
        docs.sort(key=lambda d: d.get(field), reverse=order == -1)
    return docs


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs

    def sort(self, key_or_list, direction=None):
        self._docs = _sorted(self._docs, key_or_list, direction)
        return self

    def skip(self, count):
        self._docs = self._docs[count:]
        return self

    def limit(self, count):
        if count:
            self._docs = self._docs[:count]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class FakeCollection:
    """Enough of AsyncIOMotorCollection for the chat services."""

    def __init__(self):
        self.docs = []

    def _matching(self, query):
        return [d for d in self.docs if matches(d, query)]

    async def insert_one(self, doc):
        doc.setdefault("_id", ObjectId())
        if any(d["_id"] == doc["_id"] for d in self.docs):
            raise DuplicateKeyError("E11000 duplicate key error")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one(self, query=None, projection=None, sort=None):
        docs = self._matching(query)
        if sort:
            docs = _sorted(docs, sort)
        return copy.deepcopy(docs[0]) if docs else None

    def find(self, query=None, projection=None):
        return FakeCursor([copy.deepcopy(d) for d in self._matching(query)])

    async def count_documents(self, query):
        return len(self._matching(query))

    async def distinct(self, key, query=None):
        values = []
        for doc in self._matching(query):
            for value in _resolve(doc, key):
                if value not in values:
                    values.append(value)
        return values

    async def update_many(self, query, update):
        modified = 0
        matched = self._matching(query)
        for doc in matched:
            for field, value in update.get("$addToSet", {}).items():
                current = doc.setdefault(field, [])
                if value not in current:
                    current.append(value)
                    modified += 1
        return SimpleNamespace(matched_count=len(matched), modified_count=modified)


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())

    def __getitem__(self, name):
        return getattr(self, name)


@pytest.fixture
def fake_db():
    """Patch every module that talks to MongoDB onto one in-memory database."""
    db = FakeDatabase()
    with patch("campool_chat.services.message_store.get_db", return_value=db), \
            patch("campool_chat.services.ride_directory.get_db", return_value=db), \
            patch("campool_chat.services.identity_service.get_db", return_value=db):
        yield db


# =============================================================================
# Rides and connections
# =============================================================================


class FakeConnection:
    """Records events instead of writing them to a socket."""

    def __init__(self, user_id: str, name: str = None):
        self.connection_id = str(uuid.uuid4())
        self.identity = Identity(user_id=user_id, name=name or f"user-{user_id[-4:]}")
        self.events = []
        self.closed = False

    @property
    def user_id(self):
        return self.identity.user_id

    def send_event(self, event):
        if self.closed:
            return False
        self.events.append(event)
        return True

    def of_type(self, event_type):
        return [e for e in self.events if e["type"] == event_type]


def new_user_id() -> str:
    return str(ObjectId())


def make_ride(db, driver_id=None, passengers=None, **fields) -> str:
    """Insert a ride shaped like the ride-posting service's documents."""
    ride_id = ObjectId()
    db.rides.docs.append(
        {
            "_id": ride_id,
            "driverId": ObjectId(driver_id) if driver_id else ObjectId(),
            "startPoint": fields.get("start_point", "Campus"),
            "destination": fields.get("destination", "Airport"),
            "status": fields.get("status", "active"),
            "passengers": [
                {"userId": ObjectId(uid), "status": status}
                for uid, status in (passengers or [])
            ],
        }
    )
    return str(ride_id)
