"""Chat Connection - One authenticated WebSocket with an ordered outbound queue."""

import asyncio
import logging
import uuid
from typing import Optional

from fastapi import WebSocket, status

from campool_chat.config import settings
from campool_chat.models.identity import Identity


logger = logging.getLogger(__name__)


class ChatConnection:
    """
    Server side of a client's real-time channel.

    Events are queued and written by a single writer task, so delivery
    order matches enqueue order and fan-out never waits on a slow socket.
    Sending to a closed connection is a silent no-op.
    """

    def __init__(
        self,
        websocket: WebSocket,
        identity: Identity,
        queue_size: Optional[int] = None,
    ):
        self.connection_id = str(uuid.uuid4())
        self.websocket = websocket
        self.identity = identity
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue(
            maxsize=queue_size or settings.ws_outbound_queue_size
        )
        self._writer: Optional[asyncio.Task] = None
        self._closer: Optional[asyncio.Task] = None

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    def start(self) -> None:
        """Start the writer task. Call once the socket is accepted."""
        self._writer = asyncio.create_task(self._drain())

    def send_event(self, event: dict) -> bool:
        """
        Queue an event for delivery.

        Returns False if the connection is closed. A full queue means the
        client stopped reading; the connection is closed instead of
        buffering without bound.
        """
        if self.closed:
            return False

        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                f"Outbound queue full for connection {self.connection_id} "
                f"(user={self.user_id}), closing"
            )
            self.closed = True
            if self._writer:
                self._writer.cancel()
            self._closer = asyncio.create_task(
                self._close_socket(status.WS_1013_TRY_AGAIN_LATER)
            )
            return False

        return True

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            try:
                await self.websocket.send_json(event)
            except Exception as e:
                # Peer went away; the receive loop will see the disconnect
                logger.debug(f"Send to connection {self.connection_id} failed: {e}")
                self.closed = True
                return

    async def _close_socket(self, code: int) -> None:
        try:
            await self.websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Close of connection {self.connection_id} failed: {e}")

    async def close(self) -> None:
        """Stop accepting events, flush what is queued, stop the writer."""
        self.closed = True
        if self._closer is not None:
            await self._closer

        if self._writer is None or self._writer.done():
            return

        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            self._writer.cancel()

        try:
            await self._writer
        except asyncio.CancelledError:
            pass
