"""
WebSocket Router

Real-time ride chat: join/leave rooms, send messages, typing indicators.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query, status
from pydantic import ValidationError

from campool_chat import state
from campool_chat.dependencies import extract_bearer_token
from campool_chat.models.chat_message import ClientEvent
from campool_chat.services.connection import ChatConnection
from campool_chat.errors import (
    AuthenticationError,
    ChatError,
    StoreUnavailableError,
)
from campool_chat.utils.timezone_utils import utc_now


logger = logging.getLogger(__name__)

router = APIRouter()

# Close code for rejected credentials (application range 4000-4999)
WS_CLOSE_INVALID_TOKEN = 4001


# =============================================================================
# WebSocket Endpoint
# =============================================================================


@router.websocket("")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    """
    WebSocket endpoint for ride chat.

    Connect with: ws://host/ws?token=<token>
    (or send an ``Authorization: Bearer <token>`` header)

    Client frames ({"type": ..., "rideId": ..., "text": ..., "ackId": ...}):
    - joinRoom / leaveRoom / sendMessage: answered with an "ack" frame
    - typing / stopTyping: no answer
    - ping: answered with "pong"

    Frames sent to client:
    - connected: connection authenticated
    - ack: result of joinRoom / leaveRoom / sendMessage
    - receiveMessage: a persisted message in a joined room
    - userJoined / userLeft: presence in a joined room
    - typing / stopTyping: another member's typing state
    - error: a frame could not be understood
    """
    token = token or extract_bearer_token(websocket.headers.get("authorization"))

    try:
        identity = await state.identity_service.verify(token)
    except AuthenticationError as e:
        logger.info(f"Rejected chat connection: {e.message}")
        await websocket.close(code=WS_CLOSE_INVALID_TOKEN, reason="Invalid token")
        return
    except StoreUnavailableError:
        await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER, reason="Try again later")
        return

    await websocket.accept()

    connection = ChatConnection(websocket, identity)
    connection.start()
    state.chat_service.connect(connection)
    logger.info(f"Chat connection {connection.connection_id} opened for user {identity.user_id}")

    connection.send_event(
        {
            "type": "connected",
            "userId": identity.user_id,
            "connectionId": connection.connection_id,
            "timestamp": utc_now().isoformat(),
        }
    )

    try:
        while True:
            data = await websocket.receive_text()
            await handle_frame(connection, data)
    except WebSocketDisconnect:
        pass
    finally:
        await state.chat_service.disconnect(connection)
        await connection.close()
        logger.info(f"Chat connection {connection.connection_id} closed")


# =============================================================================
# Frame Handling
# =============================================================================


def _ack(connection: ChatConnection, frame: ClientEvent, ok: bool, **extra) -> None:
    connection.send_event(
        {"type": "ack", "ackId": frame.ack_id, "event": frame.type, "ok": ok, **extra}
    )


async def handle_frame(connection: ChatConnection, data: str) -> None:
    """Parse one client frame and run the matching room operation."""
    try:
        raw = json.loads(data)
    except json.JSONDecodeError:
        connection.send_event(
            {"type": "error", "error": "Malformed frame", "code": "validation_error"}
        )
        return

    try:
        frame = ClientEvent.model_validate(raw)
    except ValidationError:
        # Answer in an ack when the client is waiting on one
        if isinstance(raw, dict) and raw.get("ackId") is not None:
            connection.send_event(
                {
                    "type": "ack",
                    "ackId": raw["ackId"],
                    "event": raw.get("type"),
                    "ok": False,
                    "error": "Malformed frame",
                    "code": "validation_error",
                    "retryable": False,
                }
            )
        else:
            connection.send_event(
                {"type": "error", "error": "Malformed frame", "code": "validation_error"}
            )
        return

    chat = state.chat_service

    if frame.type == "ping":
        connection.send_event({"type": "pong", "timestamp": utc_now().isoformat()})

    elif frame.type == "typing":
        await chat.set_typing(connection, frame.ride_id, is_typing=True)

    elif frame.type == "stopTyping":
        await chat.set_typing(connection, frame.ride_id, is_typing=False)

    elif frame.type == "leaveRoom":
        await chat.leave_room(connection, frame.ride_id)
        _ack(connection, frame, True)

    elif frame.type == "joinRoom":
        try:
            await chat.join_room(connection, frame.ride_id)
            _ack(connection, frame, True)
        except ChatError as e:
            _ack(connection, frame, False, **e.to_dict())
        except Exception:
            logger.exception(f"joinRoom failed for user {connection.user_id}")
            _ack(connection, frame, False, error="join failed", code="internal_error")

    elif frame.type == "sendMessage":
        try:
            message = await chat.send_message(connection, frame.ride_id, frame.text)
            _ack(connection, frame, True, message=message.to_wire())
        except ChatError as e:
            _ack(connection, frame, False, **e.to_dict())
        except Exception:
            logger.exception(f"sendMessage failed for user {connection.user_id}")
            _ack(connection, frame, False, error="send failed", code="internal_error")

    else:
        connection.send_event(
            {
                "type": "error",
                "error": f"Unknown event type: {frame.type}",
                "code": "validation_error",
            }
        )
