"""
Chat Router

History, read receipts and inbox for clients without a live connection.
"""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Query

from campool_chat import state
from campool_chat.dependencies import get_current_identity
from campool_chat.models.chat_message import (
    ConversationSummary,
    HistoryPage,
    ReadReceiptRequest,
    ReadReceiptResponse,
)
from campool_chat.models.identity import Identity


router = APIRouter()


@router.get("/inbox", response_model=List[ConversationSummary])
async def get_inbox(
    limit: Optional[int] = Query(None, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
):
    """
    Get the caller's ride conversations.

    One entry per ride room with its latest message and how many messages
    from others the caller has not read, newest activity first.
    """
    return await state.chat_service.get_inbox(identity, limit=limit)


@router.get("/{ride_id}/messages", response_model=HistoryPage)
async def get_messages(
    ride_id: str,
    page: int = Query(1),
    limit: Optional[int] = Query(None),
    before: Optional[datetime] = Query(None),
    identity: Identity = Depends(get_current_identity),
):
    """
    Get a page of chat history for a ride.

    Page 1 is the newest block of messages; follow ``hasMore`` to older
    pages. Messages inside a page are oldest first. ``before`` limits the
    history to messages sent strictly before that time.

    Errors: 400 invalid rideId or pagination, 404 ride not found.
    """
    return await state.chat_service.fetch_history(
        identity, ride_id, page=page, limit=limit, before=before
    )


@router.post("/{ride_id}/read", response_model=ReadReceiptResponse)
async def mark_read(
    ride_id: str,
    request: Optional[ReadReceiptRequest] = Body(None),
    identity: Identity = Depends(get_current_identity),
):
    """
    Mark messages in a ride chat as read by the caller.

    Marks every message up to ``lastMessageId`` (or ``lastSeenAt``), or the
    whole room when neither is given. Repeating the call is harmless.

    Errors: 400 invalid rideId or lastMessageId, 404 ride or message not found.
    """
    request = request or ReadReceiptRequest()

    updated = await state.chat_service.mark_read(
        identity,
        ride_id,
        last_seen_at=request.last_seen_at,
        last_message_id=request.last_message_id,
    )

    return ReadReceiptResponse(success=True, updated=updated)
