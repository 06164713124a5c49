"""
Per-peer WebRTC negotiation on top of ``aiortc``.

The engine listens to a ``SignalingClient`` and keeps one ``PeerSession``
(one ``RTCPeerConnection``) per remote participant of the current room:

* an existing member offers to every newcomer (``user-joined``);
* an incoming ``offer`` creates a session and is answered;
* ``candidate`` messages are applied once a remote description exists;
* ``hangup``, ``user-left`` or a lost signaling socket close the session.

Session states only move forward: IDLE -> OFFER_SENT | OFFER_RECEIVED ->
ANSWERED -> CONNECTED -> CLOSED. Anything that resolves after a session was
closed is ignored.
"""
import asyncio
from enum import Enum
from typing import Callable, Dict, List, Optional

from aiortc import RTCConfiguration, RTCIceServer, RTCPeerConnection, RTCSessionDescription
from aiortc.sdp import candidate_from_sdp

from client.events import EventEmitter
from client.media import LocalMedia
from client.signaling import SignalingClient
from constants import BUFFER_EARLY_CANDIDATES, ICE_SERVERS
from errors import NegotiationFailure
from logging_config import get_logger
from message_types import ANSWER, CANDIDATE, HANGUP, OFFER, USER_JOINED, USER_LEFT

logger = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    OFFER_SENT = "offer_sent"
    OFFER_RECEIVED = "offer_received"
    ANSWERED = "answered"
    CONNECTED = "connected"
    CLOSED = "closed"


_RANK = {
    SessionState.IDLE: 0,
    SessionState.OFFER_SENT: 1,
    SessionState.OFFER_RECEIVED: 1,
    SessionState.ANSWERED: 2,
    SessionState.CONNECTED: 3,
    SessionState.CLOSED: 4,
}


class PeerSession:
    def __init__(self, peer_id: str, pc):
        self.peer_id = peer_id
        self.pc = pc
        self.state = SessionState.IDLE
        self.local_description: Optional[RTCSessionDescription] = None
        self.remote_description: Optional[RTCSessionDescription] = None
        self.pending_candidates: List[dict] = []
        self.remote_tracks: list = []
        # description changes on one session never overlap
        self.lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.state == SessionState.CLOSED

    def __repr__(self):
        return f"PeerSession({self.peer_id}, {self.state.value})"


def description_to_wire(description: RTCSessionDescription) -> dict:
    return {"sdp": description.sdp, "type": description.type}


def local_candidates(sdp: str) -> List[dict]:
    """Pull ``a=candidate`` lines out of a local description, one dict per candidate."""
    sections: List[List[str]] = []
    for line in sdp.splitlines():
        if line.startswith("m="):
            sections.append([])
        elif sections:
            sections[-1].append(line.strip())

    candidates = []
    for index, lines in enumerate(sections):
        mid = next((line[len("a=mid:"):] for line in lines if line.startswith("a=mid:")), None)
        for line in lines:
            if line.startswith("a=candidate:"):
                candidates.append({"candidate": line[len("a="):], "sdpMid": mid, "sdpMLineIndex": index})
    return candidates


def parse_candidate(data: dict):
    """Build an aiortc ``RTCIceCandidate``; None for an end-of-candidates marker."""
    value = (data or {}).get("candidate")
    if not value:
        return None
    if value.startswith("candidate:"):
        value = value[len("candidate:"):]
    candidate = candidate_from_sdp(value)
    candidate.sdpMid = data.get("sdpMid")
    candidate.sdpMLineIndex = data.get("sdpMLineIndex")
    return candidate


class NegotiationEngine(EventEmitter):
    """
    Drives one negotiation per remote peer.

    Events emitted:

    * ``session-state`` (peer_id, SessionState)
    * ``participant-stream`` (peer_id, list of remote tracks)
    * ``participant-removed`` (peer_id)
    * ``peer-failed`` (peer_id, NegotiationFailure)
    """

    def __init__(
        self,
        signaling: SignalingClient,
        local_media: Optional[LocalMedia] = None,
        ice_servers: List[str] = ICE_SERVERS,
        peer_connection_factory: Optional[Callable[[], object]] = None,
        buffer_early_candidates: bool = BUFFER_EARLY_CANDIDATES,
    ):
        super().__init__()
        self.signaling = signaling
        self.local_media = local_media
        self.ice_servers = list(ice_servers)
        self.peer_connection_factory = peer_connection_factory or self._default_peer_connection
        self.buffer_early_candidates = buffer_early_candidates
        self.sessions: Dict[str, PeerSession] = {}
        self._early_candidates: Dict[str, List[dict]] = {}
        self._signal_subscriptions = [
            signaling.on(USER_JOINED, self._on_user_joined),
            signaling.on(USER_LEFT, self._on_user_left),
            signaling.on("signal", self._on_signal),
            signaling.on("socket-disconnected", self._on_socket_disconnected),
        ]

    def _default_peer_connection(self):
        servers = [RTCIceServer(urls=url) for url in self.ice_servers]
        return RTCPeerConnection(RTCConfiguration(iceServers=servers))

    @property
    def user_id(self) -> Optional[str]:
        return self.signaling.user.id if self.signaling.user else None

    def session_for(self, peer_id: str) -> Optional[PeerSession]:
        return self.sessions.get(peer_id)

    def detach(self):
        for subscription in self._signal_subscriptions:
            self.signaling.off(subscription)
        self._signal_subscriptions = []

    # ---- session bookkeeping ----

    def _new_session(self, peer_id: str) -> PeerSession:
        session = PeerSession(peer_id, self.peer_connection_factory())
        self.sessions[peer_id] = session

        def on_track(track):
            self._on_track(session, track)

        def on_connection_state_change():
            self._on_connection_state_change(session)

        session.pc.on("track", on_track)
        session.pc.on("connectionstatechange", on_connection_state_change)

        early = self._early_candidates.pop(peer_id, [])
        if early:
            logger.debug(f"Moving {len(early)} early candidates into session for {peer_id}")
            session.pending_candidates.extend(early)
        logger.debug(f"Created negotiation session for {peer_id}")
        return session

    def _advance(self, session: PeerSession, state: SessionState):
        if session.closed or _RANK[state] <= _RANK[session.state]:
            return
        logger.info(f"Session {session.peer_id}: {session.state.value} -> {state.value}")
        session.state = state
        self.emit("session-state", session.peer_id, state)

    def _attach_local_media(self, session: PeerSession):
        if self.local_media is None:
            return
        for track in self.local_media.tracks:
            session.pc.addTrack(track)

    async def _fail(self, session: PeerSession, step: str, error: Exception):
        if session.closed:
            logger.debug(f"Ignoring {step} error for closed session {session.peer_id}: {error}")
            return
        failure = NegotiationFailure(session.peer_id, step, error)
        logger.error(str(failure), exc_info=error)
        await self.close_session(session.peer_id, reason="failed")
        self.emit("peer-failed", session.peer_id, failure)

    async def close_session(self, peer_id: str, reason: str = "hangup") -> bool:
        """Release the peer connection and forget the session. Safe mid-negotiation."""
        self._early_candidates.pop(peer_id, None)
        session = self.sessions.pop(peer_id, None)
        if session is None:
            return False
        session.state = SessionState.CLOSED
        logger.info(f"Closing session {peer_id} ({reason})")
        try:
            await session.pc.close()
        except Exception as e:
            logger.warning(f"Error closing peer connection for {peer_id}: {e}")
        self.emit("session-state", peer_id, SessionState.CLOSED)
        self.emit("participant-removed", peer_id)
        return True

    async def close_all(self, reason: str = "hangup"):
        for peer_id in list(self.sessions):
            await self.close_session(peer_id, reason=reason)

    # ---- outgoing ----

    async def call(self, peer_id: str) -> Optional[PeerSession]:
        """Offer to ``peer_id`` (IDLE -> OFFER_SENT)."""
        if self.local_media is None:
            logger.info(f"No local media, not offering to {peer_id}")
            return None
        existing = self.sessions.get(peer_id)
        if existing is not None:
            logger.debug(f"Session for {peer_id} already {existing.state.value}, not offering")
            return existing

        session = self._new_session(peer_id)
        self._attach_local_media(session)
        try:
            async with session.lock:
                offer = await session.pc.createOffer()
                if session.closed:
                    return session
                await session.pc.setLocalDescription(offer)
                if session.closed:
                    return session
                session.local_description = session.pc.localDescription
                self._advance(session, SessionState.OFFER_SENT)
            await self.signaling.send_signal(OFFER, to=peer_id, data=description_to_wire(session.local_description))
            await self._send_local_candidates(session)
        except Exception as e:
            await self._fail(session, "create-offer", e)
        return session

    async def _send_local_candidates(self, session: PeerSession):
        for candidate in local_candidates(session.local_description.sdp):
            if session.closed:
                return
            await self.signaling.send_signal(CANDIDATE, to=session.peer_id, data=candidate)

    # ---- incoming ----

    def _on_user_joined(self, user: dict):
        peer_id = user.get("id")
        if not peer_id or peer_id == self.user_id:
            return None
        return self.call(peer_id)

    def _on_user_left(self, user_id: str):
        return self.close_session(user_id, reason="peer-left")

    def _on_socket_disconnected(self):
        return self.close_all(reason="transport-lost")

    def _on_signal(self, message: dict):
        signal_type = message.get("type")
        sender = message.get("from")
        if not sender or sender == self.user_id:
            return None
        to = message.get("to")
        if to and self.user_id and to != self.user_id:
            logger.debug(f"Ignoring {signal_type} addressed to {to}")
            return None

        if signal_type == OFFER:
            return self._handle_offer(sender, message.get("data"))
        if signal_type == ANSWER:
            return self._handle_answer(sender, message.get("data"))
        if signal_type == CANDIDATE:
            return self._handle_candidate(sender, message.get("data"))
        if signal_type == HANGUP:
            return self.close_session(sender, reason="remote-hangup")
        logger.warning(f"Unknown signal type {signal_type} from {sender}")
        return None

    async def _handle_offer(self, peer_id: str, data: dict):
        if not data:
            return
        session = self.sessions.get(peer_id)
        if session is not None and session.state != SessionState.IDLE:
            logger.warning(f"Offer from {peer_id} while session is {session.state.value}, ignoring")
            return
        if session is None:
            session = self._new_session(peer_id)
            self._attach_local_media(session)

        try:
            async with session.lock:
                # our own offer may have gone out while waiting for the lock
                if session.state != SessionState.IDLE:
                    logger.warning(f"Offer from {peer_id} while session is {session.state.value}, ignoring")
                    return
                self._advance(session, SessionState.OFFER_RECEIVED)
                description = RTCSessionDescription(sdp=data["sdp"], type=data["type"])
                await session.pc.setRemoteDescription(description)
                if session.closed:
                    return
                session.remote_description = description
                await self._flush_candidates(session)
                answer = await session.pc.createAnswer()
                if session.closed:
                    return
                await session.pc.setLocalDescription(answer)
                if session.closed:
                    return
                session.local_description = session.pc.localDescription
                self._advance(session, SessionState.ANSWERED)
            await self.signaling.send_signal(ANSWER, to=peer_id, data=description_to_wire(session.local_description))
            await self._send_local_candidates(session)
        except Exception as e:
            await self._fail(session, "answer", e)

    async def _handle_answer(self, peer_id: str, data: dict):
        session = self.sessions.get(peer_id)
        if session is None or not data:
            logger.debug(f"Answer from {peer_id} without a session, dropped")
            return
        try:
            async with session.lock:
                if session.state != SessionState.OFFER_SENT:
                    logger.warning(f"Answer from {peer_id} while session is {session.state.value}, ignoring")
                    return
                description = RTCSessionDescription(sdp=data["sdp"], type=data["type"])
                await session.pc.setRemoteDescription(description)
                if session.closed:
                    return
                session.remote_description = description
                self._advance(session, SessionState.CONNECTED)
                await self._flush_candidates(session)
        except Exception as e:
            await self._fail(session, "apply-answer", e)

    async def _handle_candidate(self, peer_id: str, data: dict):
        session = self.sessions.get(peer_id)
        if session is None:
            if self.buffer_early_candidates:
                self._early_candidates.setdefault(peer_id, []).append(data)
                logger.debug(f"Buffered early candidate from {peer_id}")
            else:
                logger.debug(f"Candidate from {peer_id} without a session, dropped")
            return
        if session.remote_description is None:
            session.pending_candidates.append(data)
            return
        await self._add_candidate(session, data)

    async def _flush_candidates(self, session: PeerSession):
        pending, session.pending_candidates = session.pending_candidates, []
        for data in pending:
            await self._add_candidate(session, data)

    async def _add_candidate(self, session: PeerSession, data: dict):
        if session.closed:
            return
        value = (data or {}).get("candidate", "")
        if value and f"a={value}" in session.remote_description.sdp:
            # already applied with the remote description
            return
        try:
            candidate = parse_candidate(data)
            if candidate is None:
                return
            await session.pc.addIceCandidate(candidate)
            logger.debug(f"Added candidate from {session.peer_id}")
        except Exception as e:
            await self._fail(session, "add-candidate", e)

    def _on_track(self, session: PeerSession, track):
        if session.closed:
            return
        logger.info(f"Received {track.kind} track from {session.peer_id}")
        session.remote_tracks.append(track)
        self._advance(session, SessionState.CONNECTED)
        self.emit("participant-stream", session.peer_id, list(session.remote_tracks))

    def _on_connection_state_change(self, session: PeerSession):
        state = session.pc.connectionState
        logger.debug(f"Peer connection to {session.peer_id} is {state}")
        if state == "connected":
            self._advance(session, SessionState.CONNECTED)
        elif state == "failed" and not session.closed:
            self.spawn(self._fail(session, "ice", RuntimeError("ICE connection failed")))

    # ---- local controls ----

    async def hang_up(self):
        """Leave the call: tell the room, close every session, leave the room."""
        if self.signaling.current_room is not None:
            await self.signaling.send_signal(HANGUP)
        await self.close_all(reason="local-hangup")
        await self.signaling.leave_room()

    def toggle_mute(self) -> bool:
        return self.local_media.toggle_audio() if self.local_media else False

    def toggle_video(self) -> bool:
        return self.local_media.toggle_video() if self.local_media else False
