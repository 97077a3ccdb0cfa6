"""Process-wide chat singletons and fan-out lifecycle."""

import logging

from campool_chat.config import settings
from campool_chat.database import get_redis
from campool_chat.services.broker import LocalBroker, RedisBroker
from campool_chat.services.chat_service import ChatService
from campool_chat.services.identity_service import IdentityService
from campool_chat.services.room_registry import RoomRegistry


logger = logging.getLogger(__name__)

room_registry = RoomRegistry()
chat_service = ChatService(registry=room_registry)
identity_service = IdentityService()


async def start_fanout() -> None:
    """Switch to Redis fan-out when configured and start its listener."""
    if settings.chat_pubsub_backend == "redis":
        chat_service.broker = RedisBroker(room_registry, get_redis())
        logger.info("Chat fan-out: redis pub/sub")
    else:
        chat_service.broker = LocalBroker(room_registry)
        logger.info("Chat fan-out: in-process (single instance only)")

    await chat_service.broker.start()


async def stop_fanout() -> None:
    await chat_service.broker.stop()
