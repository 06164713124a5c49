class SignalingError(Exception):
    """Base class for errors raised by the signaling core."""

    code = "signaling-error"

    def __init__(self, message: str = None):
        super().__init__(message or self.code)
        self.message = message or self.code


class RoomFull(SignalingError):
    code = "room-full"

    def __init__(self, room_id: str, capacity: int):
        super().__init__(f"Room {room_id} is full ({capacity}/{capacity})")
        self.room_id = room_id
        self.capacity = capacity


class UnknownPeer(SignalingError):
    code = "unknown-peer"

    def __init__(self, identity_id: str):
        super().__init__(f"Peer {identity_id} is not connected")
        self.identity_id = identity_id


class NotRegistered(SignalingError):
    code = "not-registered"

    def __init__(self, connection_id: str):
        super().__init__(f"Connection {connection_id} has not declared an identity")
        self.connection_id = connection_id


class NegotiationFailure(SignalingError):
    code = "negotiation-failure"

    def __init__(self, peer_id: str, step: str, cause: Exception = None):
        super().__init__(f"Negotiation with {peer_id} failed during {step}: {cause}")
        self.peer_id = peer_id
        self.step = step
        self.cause = cause


class TransportLoss(SignalingError):
    code = "transport-loss"
