"""Room Broker - Fan-out of room events, in-process or through Redis pub/sub."""

import asyncio
import json
import logging
from typing import Optional

from redis.exceptions import RedisError

from campool_chat.services.room_registry import RoomRegistry


logger = logging.getLogger(__name__)


# =============================================================================
# Redis Channel Naming Convention
# =============================================================================
#
# All channels are namespaced under "campool:chat:" prefix.
#
# - campool:chat:room:{ride_id}  - events for one ride room
#
# Every process pattern-subscribes to campool:chat:room:* and delivers to
# the members it holds in its own RoomRegistry.
#
# =============================================================================


class RedisChannels:
    """Redis channel builders."""

    @staticmethod
    def room(ride_id: str) -> str:
        return f"campool:chat:room:{ride_id}"

    @staticmethod
    def all_rooms() -> str:
        return "campool:chat:room:*"


class LocalBroker:
    """
    Delivers room events straight to this process's registry.

    Suitable for a single API process only.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    def deliver(self, ride_id: str, event: dict, exclude: Optional[str] = None) -> int:
        """
        Queue an event on every local member except ``exclude``.

        Dead connections are skipped. Returns how many connections took it.
        """
        delivered = 0
        for connection in self.registry.members_of(ride_id):
            if exclude is not None and connection.connection_id == exclude:
                continue
            if connection.send_event(event):
                delivered += 1
        return delivered

    async def publish(self, ride_id: str, event: dict, exclude: Optional[str] = None) -> None:
        self.deliver(ride_id, event, exclude)

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class RedisBroker(LocalBroker):
    """
    Shares room events between API processes through Redis pub/sub.

    Publishing does not deliver locally; this process receives its own
    publish through the subscription like every other process does, so
    all processes see one room's events in the same order.
    """

    def __init__(self, registry: RoomRegistry, client, reconnect_delay: float = 1.0):
        super().__init__(registry)
        self.client = client
        self.reconnect_delay = reconnect_delay
        self._listener: Optional[asyncio.Task] = None

    async def publish(self, ride_id: str, event: dict, exclude: Optional[str] = None) -> None:
        envelope = {"ride_id": ride_id, "event": event, "exclude": exclude}
        try:
            await self.client.publish(RedisChannels.room(ride_id), json.dumps(envelope))
        except RedisError as e:
            # Presence and fan-out are best effort; the message is already stored
            logger.error(f"Redis publish to room {ride_id} failed: {e}")

    def handle_envelope(self, raw: str) -> None:
        """Deliver one pub/sub payload to local members."""
        try:
            envelope = json.loads(raw)
            ride_id = envelope["ride_id"]
            event = envelope["event"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring malformed room envelope: {e}")
            return

        self.deliver(ride_id, event, envelope.get("exclude"))

    async def start(self) -> None:
        if self._listener is None:
            self._listener = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

    async def _listen(self) -> None:
        """Pattern-subscribe to every room channel, resubscribing after errors."""
        while True:
            pubsub = self.client.pubsub()
            try:
                await pubsub.psubscribe(RedisChannels.all_rooms())
                logger.info(f"Subscribed to Redis pattern '{RedisChannels.all_rooms()}'")

                async for message in pubsub.listen():
                    if message["type"] in ("message", "pmessage"):
                        self.handle_envelope(message["data"])
            except RedisError as e:
                logger.error(f"Redis room listener error: {e}, resubscribing")
                await asyncio.sleep(self.reconnect_delay)
            finally:
                try:
                    await pubsub.aclose()
                except RedisError:
                    pass
