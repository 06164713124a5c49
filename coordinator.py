import asyncio
from contextlib import AsyncExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from backend import MemoryBackend
from errors import NotRegistered, RoomFull, TransportLoss
from logging_config import get_logger
from message_types import ERROR, ROOM_JOINED, ROOM_PARTICIPANTS, USER_JOINED, USER_LEFT
from models import Identity, Room
from relay import SignalingRelay

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    REGISTERED = "registered"
    IN_ROOM = "in_room"


@dataclass
class Membership:
    room_id: str
    identity: Identity


class RoomCoordinator:
    """Join/leave/disconnect orchestration for every connection of a process.

    Room member sets are only changed while holding that room's lock, and all
    operations for one connection are serialized by the connection's lock, so
    a teardown never interleaves with an in-flight join.
    """

    def __init__(self, backend: MemoryBackend):
        self.backend = backend
        self.relay = SignalingRelay(backend)
        self._room_locks: Dict[str, asyncio.Lock] = {}
        self._connection_locks: Dict[str, asyncio.Lock] = {}
        self._memberships: Dict[str, Membership] = {}  # connection id -> membership
        self._states: Dict[str, ConnectionState] = {}

    def state_of(self, connection) -> ConnectionState:
        return self._states.get(connection.id, ConnectionState.DISCONNECTED)

    def room_of(self, connection) -> Optional[str]:
        membership = self._memberships.get(connection.id)
        return membership.room_id if membership else None

    def _room_lock(self, room_id: str) -> asyncio.Lock:
        lock = self._room_locks.get(room_id)
        if lock is None:
            lock = self._room_locks[room_id] = asyncio.Lock()
        return lock

    def _connection_lock(self, connection) -> asyncio.Lock:
        lock = self._connection_locks.get(connection.id)
        if lock is None:
            lock = self._connection_locks[connection.id] = asyncio.Lock()
        return lock

    def _release_room_lock(self, room_id: str):
        # only forget the lock once the room is gone and nobody is waiting on it
        lock = self._room_locks.get(room_id)
        if lock is not None and room_id not in self.backend.directory and not lock.locked():
            del self._room_locks[room_id]

    def register(self, connection, identity: Identity):
        self.backend.registry.register(connection, identity)
        if self.state_of(connection) == ConnectionState.DISCONNECTED:
            self._states[connection.id] = ConnectionState.REGISTERED
        logger.info(f"Connection {connection.id} registered as {identity.id} ({identity.display_name})")

    async def join_room(
        self,
        connection,
        room_id: str,
        identity: Optional[Identity] = None,
        room_name: Optional[str] = None,
        capacity: Optional[int] = None,
    ) -> Room:
        """Move ``connection`` into ``room_id``.

        Raises ``RoomFull`` without touching any state when the room has no
        space for this identity.
        """
        async with self._connection_lock(connection):
            if connection.closed:
                raise TransportLoss(f"Connection {connection.id} is closed")
            declared = identity
            identity = declared or self.backend.registry.lookup(connection)
            if identity is None:
                raise NotRegistered(connection.id)

            previous = self._memberships.get(connection.id)
            room_ids = {room_id}
            if previous is not None:
                room_ids.add(previous.room_id)

            async with AsyncExitStack() as stack:
                for locked_id in sorted(room_ids):
                    await stack.enter_async_context(self._room_lock(locked_id))

                directory = self.backend.directory
                if not directory.can_admit(room_id, identity.id):
                    room = directory.get(room_id)
                    raise RoomFull(room_id, room.capacity)

                if declared is not None:
                    self.register(connection, declared)

                if previous is not None and (previous.room_id != room_id or previous.identity.id != identity.id):
                    logger.info(f"{previous.identity.id} leaving room {previous.room_id} to join {room_id}")
                    self._leave_locked(connection, previous)

                existing = directory.get(room_id)
                newly_joined = existing is None or identity.id not in existing.members
                room = directory.add_member(room_id, identity, name=room_name, capacity=capacity)
                self._memberships[connection.id] = Membership(room_id=room_id, identity=identity)
                self._states[connection.id] = ConnectionState.IN_ROOM

                connection.send(ROOM_JOINED, room.snapshot())
                if newly_joined:
                    self._broadcast(room, USER_JOINED, identity.to_wire(), exclude=identity.id)
                connection.send(ROOM_PARTICIPANTS, [member.to_wire() for member in room.participants()])

            for locked_id in room_ids:
                self._release_room_lock(locked_id)

        logger.info(f"{identity.display_name} ({identity.id}) joined room {room_id} ({len(room.members)} members)")
        return room

    async def leave_room(self, connection, room_id: Optional[str] = None) -> bool:
        """Leave the connection's current room. Returns False if there was nothing to leave."""
        async with self._connection_lock(connection):
            if self.backend.registry.lookup(connection) is None and connection.id not in self._memberships:
                raise NotRegistered(connection.id)
            membership = self._memberships.get(connection.id)
            if membership is None:
                logger.debug(f"Connection {connection.id} asked to leave {room_id} but is not in a room")
                return False
            if room_id is not None and membership.room_id != room_id:
                logger.debug(f"Connection {connection.id} asked to leave {room_id} but is in {membership.room_id}")
                return False
            async with self._room_lock(membership.room_id):
                self._leave_locked(connection, membership)
            self._release_room_lock(membership.room_id)
            return True

    async def disconnect(self, connection) -> bool:
        """Tear down everything held by ``connection``; runs once per connection."""
        lock = self._connection_lock(connection)
        async with lock:
            state = self._states.pop(connection.id, None)
            membership = self._memberships.get(connection.id)
            if membership is not None:
                async with self._room_lock(membership.room_id):
                    self._leave_locked(connection, membership)
                self._release_room_lock(membership.room_id)
            self.backend.registry.unregister(connection)

        if self._connection_locks.get(connection.id) is lock and not lock.locked():
            del self._connection_locks[connection.id]

        if state is None and membership is None:
            logger.debug(f"Connection {connection.id} already torn down")
            return False
        logger.info(f"Connection {connection.id} torn down")
        return True

    def relay_signal(self, connection, message: dict):
        identity = self.backend.registry.lookup(connection)
        if identity is None:
            raise NotRegistered(connection.id)
        message["from"] = identity.id
        return self.relay.relay(connection, message)

    def report_error(self, connection, code: str, message: str, room_id: Optional[str] = None):
        payload = {"code": code, "message": message}
        if room_id is not None:
            payload["roomId"] = room_id
        connection.send(ERROR, payload)

    def _leave_locked(self, connection, membership: Membership):
        room = self.backend.directory.remove_member(membership.room_id, membership.identity.id)
        self._memberships.pop(connection.id, None)
        if self._states.get(connection.id) == ConnectionState.IN_ROOM:
            self._states[connection.id] = ConnectionState.REGISTERED
        logger.info(f"{membership.identity.id} left room {membership.room_id}")
        if room is None:
            return
        self._broadcast(room, USER_LEFT, {"userId": membership.identity.id})
        self._broadcast(room, ROOM_PARTICIPANTS, [member.to_wire() for member in room.participants()])

    def _broadcast(self, room: Room, event: str, data, exclude: Optional[str] = None):
        registry = self.backend.registry
        for member_id in room.members:
            if member_id == exclude:
                continue
            connection = registry.connection_for(member_id)
            if connection is None:
                continue
            connection.send(event, data)
