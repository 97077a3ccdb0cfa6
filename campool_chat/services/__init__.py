"""Campool Chat Services Package"""

from campool_chat.services.identity_service import IdentityService
from campool_chat.services.ride_directory import RideDirectory
from campool_chat.services.message_store import MessageStore
from campool_chat.services.room_registry import RoomRegistry
from campool_chat.services.broker import LocalBroker, RedisBroker
from campool_chat.services.chat_service import ChatService

__all__ = [
    "IdentityService",
    "RideDirectory",
    "MessageStore",
    "RoomRegistry",
    "LocalBroker",
    "RedisBroker",
    "ChatService",
]
