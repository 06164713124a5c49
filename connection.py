import asyncio
import uuid
from typing import Any, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from logging_config import get_logger

logger = get_logger(__name__)


class Connection:
    """Server-side handle for one client WebSocket.

    Outgoing frames go through an ordered queue drained by a writer task, so
    callers never wait on the remote peer and per-recipient order is kept.
    """

    def __init__(self, websocket: WebSocket, queue_size: int = 256, connection_id: Optional[str] = None):
        self.id = connection_id or uuid.uuid4().hex
        self.websocket = websocket
        self._outbound: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: Optional[asyncio.Task] = None
        self.closed = False

    def start(self):
        if self._writer is None:
            self._writer = asyncio.create_task(self._drain())

    def send(self, event: str, data: Any) -> bool:
        """Queue a frame for delivery. Returns False if it was dropped."""
        if self.closed:
            logger.debug(f"Dropping {event} for closed connection {self.id}")
            return False
        try:
            self._outbound.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning(f"Outbound queue full for connection {self.id}, dropping {event}")
            return False
        return True

    async def _drain(self):
        try:
            while True:
                frame = await self._outbound.get()
                if frame is None:
                    break
                try:
                    await self.websocket.send_json(frame)
                except Exception as e:
                    logger.warning(f"Error sending {frame['event']} to connection {self.id}: {e}")
                    self.closed = True
                    break
        except asyncio.CancelledError:
            logger.debug(f"Writer task cancelled for connection {self.id}")

    async def close(self, code: int = 1000):
        if self.closed:
            return
        self.closed = True
        if self._writer is not None:
            # let queued frames go out before the socket closes
            try:
                self._outbound.put_nowait(None)
                await asyncio.wait_for(self._writer, timeout=1.0)
            except (asyncio.QueueFull, asyncio.TimeoutError):
                self._writer.cancel()
        if self.websocket.client_state != WebSocketState.DISCONNECTED:
            try:
                await self.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"Error closing WebSocket {self.id}: {e}")

    def __repr__(self):
        return f"Connection({self.id})"
