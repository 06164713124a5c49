import asyncio
import copy
import json
import uuid

from aiortc import MediaStreamTrack, RTCSessionDescription

from app import handle_frame
from client.media import LocalMedia
from client.negotiation import NegotiationEngine
from client.signaling import SignalingClient
from coordinator import RoomCoordinator


class FakeConnection:
    """Stands in for connection.Connection: records frames instead of sending them."""

    def __init__(self, connection_id=None):
        self.id = connection_id or uuid.uuid4().hex
        self.sent = []
        self.closed = False

    def send(self, event, data):
        if self.closed:
            return False
        self.sent.append((event, copy.deepcopy(data)))
        return True

    def events(self, name=None):
        return [data for event, data in self.sent if name is None or event == name]

    def event_names(self):
        return [event for event, _ in self.sent]

    def clear(self):
        self.sent = []


class FakeSourceTrack(MediaStreamTrack):
    def __init__(self, kind):
        super().__init__()
        self.kind = kind
        self.frames = []

    async def recv(self):
        return self.frames.pop(0)


class FakeRemoteTrack:
    def __init__(self, kind):
        self.kind = kind


class FakePeerConnection:
    """Enough of RTCPeerConnection for the engine, with no ICE or DTLS underneath."""

    _next_host = 1

    def __init__(self, fail_on=None):
        self.handlers = {}
        self.tracks = []
        self.localDescription = None
        self.remoteDescription = None
        self.added_candidates = []
        self.connectionState = "new"
        self.closed = False
        self.fail_on = fail_on
        self.host = FakePeerConnection._next_host
        FakePeerConnection._next_host += 1

    def on(self, event, f=None):
        self.handlers.setdefault(event, []).append(f)
        return f

    def emit(self, event, *args):
        for handler in self.handlers.get(event, []):
            handler(*args)

    def addTrack(self, track):
        self.tracks.append(track)

    def _check(self, step):
        if self.fail_on == step:
            raise RuntimeError(f"{step} failed")

    def _sdp(self):
        lines = ["v=0", f"o=- {self.host} 0 IN IP4 127.0.0.1", "s=-", "t=0 0"]
        for index, track in enumerate(self.tracks):
            lines += [
                f"m={track.kind} 9 UDP/TLS/RTP/SAVPF 96",
                f"a=mid:{index}",
                f"a=candidate:{self.host}{index} 1 udp 2130706431 10.0.0.{self.host} {5000 + index} typ host",
            ]
        return "\r\n".join(lines) + "\r\n"

    async def createOffer(self):
        await asyncio.sleep(0)
        self._check("createOffer")
        return RTCSessionDescription(sdp=self._sdp(), type="offer")

    async def createAnswer(self):
        await asyncio.sleep(0)
        self._check("createAnswer")
        return RTCSessionDescription(sdp=self._sdp(), type="answer")

    async def setLocalDescription(self, description):
        await asyncio.sleep(0)
        self.localDescription = description

    async def setRemoteDescription(self, description):
        await asyncio.sleep(0)
        self._check("setRemoteDescription")
        self.remoteDescription = description
        for line in description.sdp.splitlines():
            if line.startswith("m="):
                self.emit("track", FakeRemoteTrack(line[2:].split()[0]))

    async def addIceCandidate(self, candidate):
        await asyncio.sleep(0)
        self._check("addIceCandidate")
        self.added_candidates.append(candidate)

    async def close(self):
        self.closed = True
        self.connectionState = "closed"


class ServerSideConnection(FakeConnection):
    """Server half of an in-process bridge: frames go straight to a SignalingClient."""

    def __init__(self, client: SignalingClient):
        super().__init__()
        self.client = client

    def send(self, event, data):
        if not super().send(event, data):
            return False
        frame = {"event": event, "data": copy.deepcopy(data)}
        asyncio.get_running_loop().call_soon(self.client.handle_frame, frame)
        return True


class BridgeTransport:
    """Client half of the bridge: frames run through the real server dispatch."""

    def __init__(self, coordinator: RoomCoordinator, connection: ServerSideConnection):
        self.coordinator = coordinator
        self.connection = connection
        self.sent = []

    async def send(self, raw):
        self.sent.append(raw)
        await handle_frame(self.coordinator, self.connection, raw)

    async def close(self):
        self.connection.closed = True
        await self.coordinator.disconnect(self.connection)


class Peer:
    """A client (signaling + engine) wired to an in-process coordinator."""

    def __init__(self, coordinator, user_id, username, media=True, **engine_options):
        self.signaling = SignalingClient("ws://bridge")
        self.connection = ServerSideConnection(self.signaling)
        self.transport = BridgeTransport(coordinator, self.connection)
        self.connections = []

        def factory():
            pc = FakePeerConnection()
            self.connections.append(pc)
            return pc

        local_media = LocalMedia([FakeSourceTrack("audio"), FakeSourceTrack("video")]) if media else None
        self.engine = NegotiationEngine(
            self.signaling,
            local_media=local_media,
            peer_connection_factory=factory,
            **engine_options,
        )
        self.user_id = user_id
        self.username = username

    async def connect(self):
        await self.signaling.attach(self.transport)
        await self.signaling.register(self.user_id, self.username)

    def signals_sent(self, signal_type=None):
        frames = [json.loads(raw) for raw in self.transport.sent]
        return [
            frame["data"] for frame in frames
            if frame["event"] == "signal" and (signal_type is None or frame["data"]["type"] == signal_type)
        ]

    async def drop_transport(self):
        """Simulate the socket dying under both ends."""
        self.connection.closed = True
        await self.transport.coordinator.disconnect(self.connection)
        self.signaling.connection_closed(lost=True)


async def settle(*peers, rounds=50):
    for _ in range(rounds):
        await asyncio.sleep(0)
        for peer in peers:
            await peer.signaling.drain()
            await peer.engine.drain()

