"""
WebSocket side of the client: talks to the signaling server, keeps the
current room and participant list, and re-emits server events.

Events emitted (all through ``EventEmitter``):

* ``socket-connected`` / ``socket-disconnected``
* ``transport-lost`` when the channel drops without a local ``close()``
* ``room-joined``, ``user-joined``, ``user-left``, ``room-participants``
* ``signal`` for every relayed negotiation message
* ``server-error`` for ``error`` frames (e.g. ``room-full``)
"""
import asyncio
import json
from typing import Any, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from client.events import EventEmitter
from constants import SIGNALING_URL
from logging_config import get_logger
from message_types import (
    ERROR,
    JOIN_ROOM,
    LEAVE_ROOM,
    ROOM_JOINED,
    ROOM_PARTICIPANTS,
    SIGNAL,
    USER_CONNECT,
    USER_JOINED,
    USER_LEFT,
)
from models import Identity

logger = get_logger(__name__)


class SignalingClient(EventEmitter):
    def __init__(self, url: str = SIGNALING_URL, transport=None):
        super().__init__()
        self.url = url
        self.user: Optional[Identity] = None
        self.current_room: Optional[dict] = None
        self.participants: List[dict] = []
        self._transport = transport  # anything with ``async send(str)`` and ``async close()``
        self._pending_frames: List[str] = []
        self._reader: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def connected(self) -> bool:
        return self._transport is not None

    async def connect(self):
        if self.connected:
            logger.debug("Signaling socket already connected")
            return
        logger.info(f"Connecting to signaling server at {self.url}")
        self._closing = False
        self._transport = await websockets.connect(self.url)
        self._reader = asyncio.create_task(self._read_loop(self._transport))
        await self._on_open()

    async def attach(self, transport):
        """Use an already open transport, e.g. an in-process bridge."""
        self._closing = False
        self._transport = transport
        await self._on_open()

    async def _on_open(self):
        logger.info("Connected to signaling server")
        pending, self._pending_frames = self._pending_frames, []
        for raw in pending:
            await self._transport.send(raw)
        self.emit("socket-connected")

    async def _read_loop(self, ws):
        lost = False
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring non-JSON frame from server: {raw[:80]!r}")
                    continue
                self.handle_frame(frame)
        except ConnectionClosedOK:
            logger.info("Signaling socket closed")
        except ConnectionClosed as e:
            logger.warning(f"Signaling socket lost: {e}")
            lost = True
        finally:
            self.connection_closed(lost=lost or not self._closing)

    def connection_closed(self, lost: bool = False):
        if self._transport is None:
            return
        self._transport = None
        self.current_room = None
        self.participants = []
        self.emit("socket-disconnected")
        if lost:
            self.emit("transport-lost")

    def handle_frame(self, frame: dict):
        event = frame.get("event")
        data = frame.get("data")
        logger.debug(f"Received {event} from server")

        if event == SIGNAL:
            self.emit("signal", data)
        elif event == ROOM_JOINED:
            self.current_room = data
            self.emit(ROOM_JOINED, data)
        elif event == USER_JOINED:
            logger.info(f"User joined: {data.get('username')}")
            self.emit(USER_JOINED, data)
        elif event == USER_LEFT:
            user_id = data.get("userId") if isinstance(data, dict) else data
            logger.info(f"User left: {user_id}")
            self.emit(USER_LEFT, user_id)
        elif event == ROOM_PARTICIPANTS:
            self.participants = list(data or [])
            self.emit(ROOM_PARTICIPANTS, self.participants)
        elif event == ERROR:
            logger.warning(f"Server error {data.get('code')}: {data.get('message')}")
            self.emit("server-error", data)
        else:
            logger.debug(f"Ignoring unknown event {event}")

    async def send(self, event: str, data: Any):
        raw = json.dumps({"event": event, "data": data})
        if not self.connected:
            logger.debug(f"Socket not connected, queuing {event}")
            self._pending_frames.append(raw)
            return
        await self._transport.send(raw)

    async def register(self, user_id: str, username: str):
        self.user = Identity(id=user_id, display_name=username)
        await self.send(USER_CONNECT, {"id": user_id, "username": username})

    async def join_room(self, room_id: str, room_name: str = None, max_participants: int = None):
        if self.user is None:
            raise RuntimeError("register() must be called before join_room()")
        payload = {"roomId": room_id, "userId": self.user.id, "username": self.user.display_name}
        if room_name:
            payload["roomName"] = room_name
        if max_participants:
            payload["maxParticipants"] = max_participants
        logger.info(f"Joining room {room_id}")
        await self.send(JOIN_ROOM, payload)

    async def leave_room(self):
        if self.current_room is None:
            return
        room_id = self.current_room["id"]
        self.current_room = None
        self.participants = []
        await self.send(LEAVE_ROOM, {"roomId": room_id})

    async def send_signal(self, signal_type: str, to: str = None, data: Any = None, room_id: str = None):
        payload = {"type": signal_type, "from": self.user.id if self.user else ""}
        if to is not None:
            payload["to"] = to
        room_id = room_id or (self.current_room or {}).get("id")
        if room_id is not None:
            payload["roomId"] = room_id
        if data is not None:
            payload["data"] = data
        await self.send(SIGNAL, payload)

    async def close(self):
        self._closing = True
        transport = self._transport
        if transport is None:
            return
        await transport.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        self.connection_closed(lost=False)
