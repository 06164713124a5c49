from typing import Dict, List, Optional

from errors import RoomFull
from logging_config import get_logger
from models import Identity, Room

logger = get_logger(__name__)


class ConnectionRegistry:
    """Maps live connections to the identity they declared.

    Keeps a reverse index so peer-addressed signals can find the connection
    currently holding an identity id. Identity ids are not required to be
    unique across connections; the most recent registration wins.
    """

    def __init__(self):
        self._identities: Dict[str, Identity] = {}  # connection id -> identity
        self._connections: Dict[str, object] = {}  # connection id -> connection
        self._holders: Dict[str, str] = {}  # identity id -> connection id

    def register(self, connection, identity: Identity):
        previous = self._identities.get(connection.id)
        if previous and previous.id != identity.id and self._holders.get(previous.id) == connection.id:
            del self._holders[previous.id]

        holder = self._holders.get(identity.id)
        if holder and holder != connection.id:
            logger.warning(f"Identity {identity.id} re-registered by connection {connection.id}, was held by {holder}")

        self._identities[connection.id] = identity
        self._connections[connection.id] = connection
        self._holders[identity.id] = connection.id
        logger.debug(f"Registered connection {connection.id} as {identity.id} ({identity.display_name})")

    def lookup(self, connection) -> Optional[Identity]:
        return self._identities.get(connection.id)

    def connection_for(self, identity_id: str):
        connection_id = self._holders.get(identity_id)
        if connection_id is None:
            return None
        return self._connections.get(connection_id)

    def unregister(self, connection):
        identity = self._identities.pop(connection.id, None)
        self._connections.pop(connection.id, None)
        if identity is None:
            logger.debug(f"Unregister for unknown connection {connection.id} ignored")
            return
        if self._holders.get(identity.id) == connection.id:
            del self._holders[identity.id]
        logger.debug(f"Unregistered connection {connection.id} ({identity.id})")

    def connections(self) -> List[object]:
        return list(self._connections.values())

    def __len__(self):
        return len(self._identities)


class RoomDirectory:
    """In-process room records: created on first join, deleted when empty.

    Nothing here awaits, so every method is atomic on the event loop.
    """

    def __init__(self, default_capacity: Optional[int] = None):
        self.default_capacity = default_capacity or None
        self._rooms: Dict[str, Room] = {}

    @staticmethod
    def default_name(room_id: str) -> str:
        return f"Room {room_id[:8]}"

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def get_or_create(self, room_id: str, name: Optional[str] = None, capacity: Optional[int] = None) -> Room:
        room = self._rooms.get(room_id)
        if room is not None:
            return room
        room = Room(
            id=room_id,
            name=(name or "").strip() or self.default_name(room_id),
            capacity=capacity if capacity else self.default_capacity,
        )
        self._rooms[room_id] = room
        logger.info(f"Created room {room_id}: name={room.name}, capacity={room.capacity}")
        return room

    def can_admit(self, room_id: str, identity_id: str) -> bool:
        room = self._rooms.get(room_id)
        if room is None or identity_id in room.members:
            return True
        return not room.is_full

    def add_member(self, room_id: str, identity: Identity, name: Optional[str] = None, capacity: Optional[int] = None) -> Room:
        room = self.get_or_create(room_id, name=name, capacity=capacity)
        if identity.id in room.members:
            logger.debug(f"{identity.id} already a member of room {room_id}")
            return room
        if room.is_full:
            logger.info(f"Room {room_id} is full ({len(room.members)}/{room.capacity}), rejecting {identity.id}")
            raise RoomFull(room_id, room.capacity)
        room.members[identity.id] = identity
        logger.debug(f"Added {identity.id} to room {room_id} ({len(room.members)} members)")
        return room

    def remove_member(self, room_id: str, identity_id: str) -> Optional[Room]:
        """Remove a member; returns the room, or None if it no longer exists."""
        room = self._rooms.get(room_id)
        if room is None:
            return None
        if room.members.pop(identity_id, None) is not None:
            logger.debug(f"Removed {identity_id} from room {room_id} ({len(room.members)} members)")
        if not room.members:
            del self._rooms[room_id]
            logger.info(f"Room {room_id} is empty, deleted")
            return None
        return room

    def list_members(self, room_id: str) -> List[Identity]:
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return room.participants()

    def list_rooms(self) -> List[Room]:
        return list(self._rooms.values())

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def __len__(self):
        return len(self._rooms)


class MemoryBackend:
    """Owns the registry and directory for one server process."""

    def __init__(self, default_capacity: Optional[int] = None):
        self.registry = ConnectionRegistry()
        self.directory = RoomDirectory(default_capacity=default_capacity)
        logger.info(f"Initializing MemoryBackend (default capacity: {self.directory.default_capacity})")

    @property
    def room_count(self) -> int:
        return len(self.directory)

    @property
    def user_count(self) -> int:
        return len(self.registry)
