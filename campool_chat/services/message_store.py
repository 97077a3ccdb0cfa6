"""Message Store - Durable ordered chat log with per-message read tracking."""

import asyncio
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from weakref import WeakValueDictionary

from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from campool_chat.database import get_db
from campool_chat.models.chat_message import ChatMessage
from campool_chat.errors import ChatValidationError, NotFoundError
from campool_chat.utils.retry import run_with_retry
from campool_chat.utils.timezone_utils import utc_now, to_storage_precision


logger = logging.getLogger(__name__)

# Total order of a room: store timestamp, then ObjectId for equal timestamps
ASCENDING = [("created_at", 1), ("_id", 1)]
DESCENDING = [("created_at", -1), ("_id", -1)]


class MessageStore:
    """
    MongoDB-backed store for the ``chat_messages`` collection.

    Messages are append-only. Timestamps are assigned here, truncated to
    the millisecond precision MongoDB keeps, and clamped so they never go
    backwards within a room; ties are broken by ObjectId, which increases
    within a process. Read receipts only ever add to ``read_by``.
    """

    def __init__(self):
        self._locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()
        self._last_created: Dict[str, datetime] = {}

    @property
    def collection(self):
        return get_db().chat_messages

    def _room_lock(self, ride_id: str) -> asyncio.Lock:
        lock = self._locks.get(ride_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[ride_id] = lock
        return lock

    # =========================================================================
    # Writes
    # =========================================================================

    async def append(
        self, ride_id: str, sender_id: str, sender_name: Optional[str], text: str
    ) -> ChatMessage:
        """
        Persist a new message and return it with its id and timestamp.

        Raises:
            StoreUnavailableError: write did not succeed within the retry budget
        """
        async with self._room_lock(ride_id):
            created_at = await self._next_timestamp(ride_id)
            doc = {
                "_id": ObjectId(),
                "ride_id": ride_id,
                "sender_id": sender_id,
                "sender_name": sender_name,
                "text": text,
                "created_at": created_at,
                "read_by": [],
            }

            async def _insert():
                try:
                    await self.collection.insert_one(dict(doc))
                except DuplicateKeyError:
                    # An earlier attempt landed before its ack was lost
                    logger.info(f"Message {doc['_id']} already stored, treating retry as success")

            await run_with_retry(_insert, label="message insert")
            self._last_created[ride_id] = created_at

        return ChatMessage.from_document(doc)

    async def _next_timestamp(self, ride_id: str) -> datetime:
        now = to_storage_precision(utc_now())

        last = self._last_created.get(ride_id)
        if last is None:
            latest = await run_with_retry(
                lambda: self.collection.find_one(
                    {"ride_id": ride_id}, {"created_at": 1}, sort=DESCENDING
                ),
                label="latest message lookup",
            )
            last = latest["created_at"] if latest else None

        if last is not None and now < last:
            return last
        return now

    async def mark_read(
        self,
        ride_id: str,
        user_id: str,
        last_seen_at: Optional[datetime] = None,
        last_message_id: Optional[str] = None,
    ) -> int:
        """
        Add ``user_id`` to the readers of every message up to the cursor.

        The cursor is a message id (inclusive, wins when both are given) or
        a timestamp (inclusive). Without a cursor the whole room is marked.
        Returns the number of messages newly marked; repeating a call, or
        calling with an earlier cursor, returns 0.

        Raises:
            ChatValidationError: malformed message id
            NotFoundError: message id does not belong to the room
        """
        query: dict = {"ride_id": ride_id, "read_by": {"$ne": user_id}}

        if last_message_id:
            if not ObjectId.is_valid(last_message_id):
                raise ChatValidationError("Invalid lastMessageId")
            oid = ObjectId(last_message_id)

            anchor = await run_with_retry(
                lambda: self.collection.find_one(
                    {"_id": oid, "ride_id": ride_id}, {"created_at": 1}
                ),
                label="read cursor lookup",
            )
            if not anchor:
                raise NotFoundError("Message not found in this ride")

            query["$or"] = [
                {"created_at": {"$lt": anchor["created_at"]}},
                {"created_at": anchor["created_at"], "_id": {"$lte": oid}},
            ]
        elif last_seen_at is not None:
            query["created_at"] = {"$lte": last_seen_at}

        result = await run_with_retry(
            lambda: self.collection.update_many(
                query, {"$addToSet": {"read_by": user_id}}
            ),
            label="mark read",
        )
        return result.modified_count

    # =========================================================================
    # Reads
    # =========================================================================

    async def fetch_page(
        self,
        ride_id: str,
        page: int,
        limit: int,
        before: Optional[datetime] = None,
    ) -> Tuple[List[ChatMessage], int]:
        """
        Get one page of a room's history and the total matching count.

        Page 1 is the newest ``limit`` messages, page 2 the block before
        it, and so on. Each page is returned oldest first.
        """
        query: dict = {"ride_id": ride_id}
        if before is not None:
            query["created_at"] = {"$lt": before}

        async def _load():
            cursor = (
                self.collection.find(query)
                .sort(DESCENDING)
                .skip((page - 1) * limit)
                .limit(limit)
            )
            docs = [doc async for doc in cursor]
            total = await self.collection.count_documents(query)
            return docs, total

        docs, total = await run_with_retry(_load, label="history page")

        messages = [ChatMessage.from_document(doc) for doc in docs]
        messages.reverse()
        return messages, total

    async def count(self, ride_id: str) -> int:
        return await run_with_retry(
            lambda: self.collection.count_documents({"ride_id": ride_id}),
            label="message count",
        )

    async def latest_message(self, ride_id: str) -> Optional[ChatMessage]:
        doc = await run_with_retry(
            lambda: self.collection.find_one({"ride_id": ride_id}, sort=DESCENDING),
            label="latest message lookup",
        )
        return ChatMessage.from_document(doc) if doc else None

    async def unread_count(self, ride_id: str, user_id: str) -> int:
        """Messages from others that the user has not read."""
        return await run_with_retry(
            lambda: self.collection.count_documents(
                {
                    "ride_id": ride_id,
                    "sender_id": {"$ne": user_id},
                    "read_by": {"$ne": user_id},
                }
            ),
            label="unread count",
        )

    async def rooms_with_messages_from(self, user_id: str) -> List[str]:
        return await run_with_retry(
            lambda: self.collection.distinct("ride_id", {"sender_id": user_id}),
            label="sender rooms lookup",
        )
