"""Chat Message Model - Defines the chat message schema for per-ride rooms."""

from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake case in Python, camelCase on the wire; accepts either on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatMessage(CamelModel):
    """
    Chat message model for MongoDB.

    Append-only chat for ride rooms. A message is never edited or deleted;
    the only later change is adding readers to ``read_by``.

    Fields:
    - id: MongoDB ObjectId as a string
    - ride_id: Room (ride) the message belongs to
    - sender_id: Sender user ID
    - sender_name: Display name at time of message, not updated on rename
    - text: Trimmed message body
    - created_at: Server assigned, non-decreasing within a room
    - read_by: User IDs that have read this message
    """
    id: str = Field(..., description="Unique message ID")
    ride_id: str = Field(..., description="Ride (room) ID")
    sender_id: str = Field(..., description="Sender user ID")
    sender_name: Optional[str] = Field(None, description="Sender display name")
    text: str = Field(..., description="Message content")
    created_at: datetime
    read_by: List[str] = Field(default_factory=list)

    @classmethod
    def from_document(cls, doc: dict) -> "ChatMessage":
        return cls(
            id=str(doc["_id"]),
            ride_id=doc["ride_id"],
            sender_id=doc["sender_id"],
            sender_name=doc.get("sender_name"),
            text=doc["text"],
            created_at=doc["created_at"],
            read_by=list(doc.get("read_by", [])),
        )

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys for WebSocket frames."""
        return self.model_dump(mode="json", by_alias=True)


class HistoryPage(CamelModel):
    """One page of room history, oldest first within the page."""
    messages: List[ChatMessage]
    page: int
    limit: int
    total: int
    has_more: bool


class ReadReceiptRequest(CamelModel):
    """Read cursor. ``last_message_id`` wins when both are given."""
    last_seen_at: Optional[datetime] = None
    last_message_id: Optional[str] = None


class ReadReceiptResponse(CamelModel):
    success: bool = True
    updated: int = 0


class ConversationSummary(CamelModel):
    """Inbox entry for one ride room."""
    ride_id: str
    ride_title: str
    last_message: ChatMessage
    unread_count: int


class ClientEvent(CamelModel):
    """Frame sent by a client over the real-time channel."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    type: str
    # Checked by the room operation so a bad value is reported in its ack
    ride_id: Optional[Any] = None
    text: Optional[Any] = None
    ack_id: Optional[Union[int, str]] = None
