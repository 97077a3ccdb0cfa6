"""Room Registry - In-memory membership of live connections in ride rooms."""

from typing import Dict, Set

from campool_chat.services.connection import ChatConnection


class RoomRegistry:
    """
    Process-local bookkeeping of which connections are in which room.

    Fan-out costs O(room size) instead of O(all connections). Methods never
    await, so each one runs atomically on the event loop and concurrent
    joins, leaves and broadcasts cannot interleave inside an operation.
    Nothing here is persisted: after a restart clients rebuild it by
    rejoining. Multi-process deployments pair it with the Redis broker so
    that every process fans out to its own members.
    """

    def __init__(self):
        # ride_id -> connections in the room
        self.rooms: Dict[str, Set[ChatConnection]] = {}
        # connection -> ride_ids it joined
        self.connection_rooms: Dict[ChatConnection, Set[str]] = {}

    def register(self, connection: ChatConnection) -> None:
        """Track a freshly authenticated connection with no rooms."""
        self.connection_rooms.setdefault(connection, set())

    def add(self, connection: ChatConnection, ride_id: str) -> bool:
        """Add a connection to a room. Returns False if it was already there."""
        joined = self.connection_rooms.setdefault(connection, set())
        if ride_id in joined:
            return False

        joined.add(ride_id)
        self.rooms.setdefault(ride_id, set()).add(connection)
        return True

    def remove(self, connection: ChatConnection, ride_id: str) -> bool:
        """Remove a connection from a room. Returns False if it was not there."""
        joined = self.connection_rooms.get(connection)
        if not joined or ride_id not in joined:
            return False

        joined.discard(ride_id)
        members = self.rooms.get(ride_id)
        if members is not None:
            members.discard(connection)
            if not members:
                del self.rooms[ride_id]
        return True

    def remove_all(self, connection: ChatConnection) -> Set[str]:
        """Forget a connection entirely. Returns the rooms it was in."""
        joined = self.connection_rooms.pop(connection, set())
        for ride_id in joined:
            members = self.rooms.get(ride_id)
            if members is not None:
                members.discard(connection)
                if not members:
                    del self.rooms[ride_id]
        return joined

    def members_of(self, ride_id: str) -> Set[ChatConnection]:
        """Snapshot of a room's connections, safe to iterate while others change it."""
        return set(self.rooms.get(ride_id, ()))

    def rooms_of(self, connection: ChatConnection) -> Set[str]:
        return set(self.connection_rooms.get(connection, ()))

    def is_member(self, connection: ChatConnection, ride_id: str) -> bool:
        return ride_id in self.connection_rooms.get(connection, ())

    def stats(self) -> dict:
        return {
            "connections": len(self.connection_rooms),
            "active_rooms": len(self.rooms),
        }
