"""
Tests for Chat Connection

Unit tests for the ordered outbound queue of a socket.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from fastapi import status

from campool_chat.models.identity import Identity
from campool_chat.services.connection import ChatConnection


def make_socket():
    socket = MagicMock()
    socket.send_json = AsyncMock()
    socket.close = AsyncMock()
    return socket


@pytest.fixture
def identity():
    return Identity(user_id=str(ObjectId()), name="Asha")


class TestChatConnection:
    """Tests for ChatConnection."""

    @pytest.mark.asyncio
    async def test_events_written_in_order(self, identity):
        socket = make_socket()
        conn = ChatConnection(socket, identity, queue_size=10)
        conn.start()

        for i in range(5):
            assert conn.send_event({"type": "receiveMessage", "n": i}) is True
        await conn.close()

        sent = [call.args[0]["n"] for call in socket.send_json.call_args_list]
        assert sent == [0, 1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_send_after_close_is_noop(self, identity):
        socket = make_socket()
        conn = ChatConnection(socket, identity, queue_size=10)
        conn.start()
        await conn.close()

        assert conn.send_event({"type": "typing"}) is False
        socket.send_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_full_queue_closes_slow_client(self, identity):
        """A client that stops reading is dropped instead of buffered forever."""
        socket = make_socket()
        conn = ChatConnection(socket, identity, queue_size=2)

        # Writer not started, so nothing drains
        assert conn.send_event({"n": 1}) is True
        assert conn.send_event({"n": 2}) is True
        assert conn.send_event({"n": 3}) is False

        assert conn.closed is True
        assert conn._closer is not None
        await conn.close()
        socket.close.assert_awaited_once_with(code=status.WS_1013_TRY_AGAIN_LATER)

    @pytest.mark.asyncio
    async def test_failed_write_marks_connection_closed(self, identity):
        socket = make_socket()
        socket.send_json = AsyncMock(side_effect=RuntimeError("socket gone"))
        conn = ChatConnection(socket, identity, queue_size=10)
        conn.start()

        conn.send_event({"type": "typing"})
        await asyncio.sleep(0.01)

        assert conn.closed is True
        assert conn.send_event({"type": "typing"}) is False
        await conn.close()
