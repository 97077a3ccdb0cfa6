"""Chat Service - Room protocol, history, read receipts and inbox."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional
from weakref import WeakValueDictionary

from campool_chat.config import settings
from campool_chat.models.chat_message import (
    ChatMessage,
    ConversationSummary,
    HistoryPage,
)
from campool_chat.models.identity import Identity
from campool_chat.services.broker import LocalBroker
from campool_chat.errors import ChatValidationError
from campool_chat.services.message_store import MessageStore
from campool_chat.services.ride_directory import RideDirectory
from campool_chat.services.room_registry import RoomRegistry
from campool_chat.utils.timezone_utils import ensure_utc


logger = logging.getLogger(__name__)

# Largest skip MongoDB accepts (BSON int64)
MAX_HISTORY_OFFSET = 2 ** 63 - 1


# =============================================================================
# Server -> client events
# =============================================================================

RECEIVE_MESSAGE = "receiveMessage"
USER_JOINED = "userJoined"
USER_LEFT = "userLeft"
TYPING = "typing"
STOP_TYPING = "stopTyping"


def presence_event(event_type: str, ride_id: str, identity: Identity) -> dict:
    return {
        "type": event_type,
        "rideId": ride_id,
        "userId": identity.user_id,
        "name": identity.name,
    }


def message_event(message: ChatMessage) -> dict:
    return {"type": RECEIVE_MESSAGE, "message": message.to_wire()}


class ChatService:
    """
    Per-ride chat rooms.

    Real-time operations take the caller's connection; REST operations
    take only the verified identity. Any authenticated user may use any
    existing ride's room unless participant gating is turned on in the
    ride directory.
    """

    def __init__(
        self,
        registry: Optional[RoomRegistry] = None,
        store: Optional[MessageStore] = None,
        rides: Optional[RideDirectory] = None,
        broker: Optional[LocalBroker] = None,
    ):
        self.registry = registry or RoomRegistry()
        self.store = store or MessageStore()
        self.rides = rides or RideDirectory()
        self.broker = broker or LocalBroker(self.registry)
        self._send_locks: "WeakValueDictionary[str, asyncio.Lock]" = WeakValueDictionary()

    def _send_lock(self, ride_id: str) -> asyncio.Lock:
        lock = self._send_locks.get(ride_id)
        if lock is None:
            lock = asyncio.Lock()
            self._send_locks[ride_id] = lock
        return lock

    # =========================================================================
    # Real-time protocol
    # =========================================================================

    def connect(self, connection) -> None:
        self.registry.register(connection)

    async def join_room(self, connection, ride_id: str) -> bool:
        """
        Join a ride room.

        Other members are told about the join only when the connection was
        not already in the room. Returns True on a new membership.

        Raises:
            ChatValidationError / RideNotFoundError / ForbiddenError:
                nothing is changed
        """
        await self.rides.require_access(ride_id, connection.user_id)

        added = self.registry.add(connection, ride_id)
        if added:
            logger.info(f"User {connection.user_id} joined room {ride_id}")
            await self.broker.publish(
                ride_id,
                presence_event(USER_JOINED, ride_id, connection.identity),
                exclude=connection.connection_id,
            )
        return added

    async def leave_room(self, connection, ride_id: Optional[str]) -> bool:
        """Leave a room. Leaving a room not joined is a no-op."""
        if not isinstance(ride_id, str) or not self.registry.remove(connection, ride_id):
            return False

        logger.info(f"User {connection.user_id} left room {ride_id}")
        await self.broker.publish(
            ride_id,
            presence_event(USER_LEFT, ride_id, connection.identity),
            exclude=connection.connection_id,
        )
        return True

    async def send_message(self, connection, ride_id: str, text) -> ChatMessage:
        """
        Persist a message and fan it out to every connection in the room.

        The sender's own connection gets the message through the same
        fan-out when it is a member. Storing and publishing hold the room's
        lock so recipients see messages in store order. Nothing is
        published if the write fails.

        Raises:
            ChatValidationError: bad ride id, empty or oversized text
            RideNotFoundError / ForbiddenError
            StoreUnavailableError: write failed; retryable
        """
        body = self._clean_text(text)
        await self.rides.require_access(ride_id, connection.user_id)

        async with self._send_lock(ride_id):
            message = await self.store.append(
                ride_id=ride_id,
                sender_id=connection.user_id,
                sender_name=connection.identity.name,
                text=body,
            )
            await self.broker.publish(ride_id, message_event(message))

        return message

    async def set_typing(self, connection, ride_id: Optional[str], is_typing: bool) -> None:
        """Fire-and-forget typing indicator to the other members."""
        if not isinstance(ride_id, str) or not self.registry.is_member(connection, ride_id):
            return

        await self.broker.publish(
            ride_id,
            presence_event(TYPING if is_typing else STOP_TYPING, ride_id, connection.identity),
            exclude=connection.connection_id,
        )

    async def disconnect(self, connection) -> None:
        """Drop all memberships of a closed connection and tell the rooms."""
        rooms = self.registry.remove_all(connection)
        for ride_id in rooms:
            await self.broker.publish(
                ride_id,
                presence_event(USER_LEFT, ride_id, connection.identity),
                exclude=connection.connection_id,
            )
        if rooms:
            logger.info(
                f"Connection {connection.connection_id} of user {connection.user_id} "
                f"closed, left {len(rooms)} room(s)"
            )

    @staticmethod
    def _clean_text(text) -> str:
        if not isinstance(text, str):
            raise ChatValidationError("Text required")

        body = text.strip()
        if not body:
            raise ChatValidationError("Text required")
        if len(body) > settings.chat_max_message_length:
            raise ChatValidationError(
                f"Message too long (max {settings.chat_max_message_length} characters)"
            )
        return body

    # =========================================================================
    # Request/response access
    # =========================================================================

    async def fetch_history(
        self,
        identity: Identity,
        ride_id: str,
        page: int = 1,
        limit: Optional[int] = None,
        before: Optional[datetime] = None,
    ) -> HistoryPage:
        """
        Get one page of a room's history.

        ``limit`` is clamped to 1..CHAT_MAX_PAGE_SIZE. Page 1 holds the
        newest messages; ``has_more`` says whether older pages exist.
        """
        if page < 1:
            raise ChatValidationError("page must be >= 1")

        if limit is None:
            limit = settings.chat_default_page_size
        limit = min(settings.chat_max_page_size, max(1, limit))

        if (page - 1) * limit > MAX_HISTORY_OFFSET:
            raise ChatValidationError("page is out of range")

        await self.rides.require_access(ride_id, identity.user_id)

        messages, total = await self.store.fetch_page(
            ride_id, page=page, limit=limit, before=ensure_utc(before)
        )

        return HistoryPage(
            messages=messages,
            page=page,
            limit=limit,
            total=total,
            has_more=page * limit < total,
        )

    async def mark_read(
        self,
        identity: Identity,
        ride_id: str,
        last_seen_at: Optional[datetime] = None,
        last_message_id: Optional[str] = None,
    ) -> int:
        """Mark the room read by the caller up to the cursor. Idempotent."""
        await self.rides.require_access(ride_id, identity.user_id)

        updated = await self.store.mark_read(
            ride_id,
            identity.user_id,
            last_seen_at=ensure_utc(last_seen_at),
            last_message_id=last_message_id,
        )
        logger.debug(f"User {identity.user_id} read {updated} message(s) in room {ride_id}")
        return updated

    async def get_inbox(
        self, identity: Identity, limit: Optional[int] = None
    ) -> List[ConversationSummary]:
        """
        Conversations of the caller, most recently active first.

        Covers rides the caller drives or rides in plus rooms the caller
        has written in. Rooms without messages are left out.
        """
        limit = limit or settings.chat_inbox_limit

        rides = {r.ride_id: r for r in await self.rides.rides_for_user(identity.user_id)}
        ride_ids = set(rides) | set(
            await self.store.rooms_with_messages_from(identity.user_id)
        )

        conversations = []
        for ride_id in ride_ids:
            last = await self.store.latest_message(ride_id)
            if last is None:
                continue

            ride = rides.get(ride_id)
            if ride is None:
                ride = await self.rides.get_ride_or_none(ride_id)

            conversations.append(
                ConversationSummary(
                    ride_id=ride_id,
                    ride_title=ride.title if ride else "Ride chat",
                    last_message=last,
                    unread_count=await self.store.unread_count(ride_id, identity.user_id),
                )
            )

        conversations.sort(
            key=lambda c: (c.last_message.created_at, c.last_message.id), reverse=True
        )
        return conversations[:limit]
