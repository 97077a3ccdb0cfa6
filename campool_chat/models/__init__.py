"""Campool Chat Models Package"""

from campool_chat.models.chat_message import (
    ChatMessage,
    HistoryPage,
    ReadReceiptRequest,
    ReadReceiptResponse,
    ConversationSummary,
    ClientEvent,
)
from campool_chat.models.identity import Identity
from campool_chat.models.ride import RideInfo

__all__ = [
    "ChatMessage", "HistoryPage", "ReadReceiptRequest", "ReadReceiptResponse",
    "ConversationSummary", "ClientEvent",
    "Identity",
    "RideInfo",
]
