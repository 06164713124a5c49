from typing import List

from backend import MemoryBackend
from errors import UnknownPeer
from logging_config import get_logger
from message_types import SIGNAL

logger = get_logger(__name__)


class SignalingRelay:
    """Routes ``signal`` frames to a single peer or to a whole room.

    The ``data`` field is never read or changed, so the relay is agnostic to
    whatever negotiation protocol the clients speak.
    """

    def __init__(self, backend: MemoryBackend):
        self.backend = backend

    def relay(self, sender, message: dict) -> List[object]:
        """Forward ``message`` and return the connections it was queued for."""
        target_id = message.get("to")
        room_id = message.get("roomId")

        if target_id:
            try:
                recipient = self._peer_connection(target_id)
            except UnknownPeer as e:
                logger.debug(f"Dropping {message.get('type')} from {message.get('from')}: {e}")
                return []
            recipient.send(SIGNAL, message)
            logger.debug(f"Relayed {message.get('type')} from {message.get('from')} to {target_id}")
            return [recipient]

        if room_id:
            recipients = []
            registry = self.backend.registry
            for member in self.backend.directory.list_members(room_id):
                connection = registry.connection_for(member.id)
                if connection is None or connection is sender or connection.closed:
                    continue
                connection.send(SIGNAL, message)
                recipients.append(connection)
            logger.debug(f"Relayed {message.get('type')} from {message.get('from')} to {len(recipients)} members of room {room_id}")
            return recipients

        logger.debug(f"Dropping {message.get('type')} from {message.get('from')}: no destination")
        return []

    def _peer_connection(self, identity_id: str):
        connection = self.backend.registry.connection_for(identity_id)
        if connection is None or connection.closed:
            raise UnknownPeer(identity_id)
        return connection
