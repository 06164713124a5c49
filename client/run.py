import argparse
import asyncio
import uuid

from aiortc.contrib.media import MediaBlackhole

from client.media import LocalMedia
from client.negotiation import NegotiationEngine
from client.signaling import SignalingClient
from constants import LOG_FILE, LOG_LEVEL, SIGNALING_URL
from logging_config import get_logger, setup_logging

logger = get_logger(__name__)


async def run(args):
    signaling = SignalingClient(args.server)
    media = LocalMedia.from_player(args.play, format=args.format) if args.play else None
    engine = NegotiationEngine(signaling, local_media=media)
    # remote media has to be consumed or aiortc buffers it forever
    sink = MediaBlackhole()

    async def on_stream(peer_id, tracks):
        logger.info(f"[{peer_id}] receiving {[t.kind for t in tracks]}")
        sink.addTrack(tracks[-1])
        await sink.start()

    engine.on("session-state", lambda peer_id, state: logger.info(f"[{peer_id}] {state.value}"))
    engine.on("participant-stream", on_stream)
    engine.on("peer-failed", lambda peer_id, failure: logger.warning(f"[{peer_id}] {failure}"))
    signaling.on("room-participants", lambda people: logger.info(f"Participants: {[p['username'] for p in people]}"))
    signaling.on("server-error", lambda error: logger.error(f"Server refused: {error.get('message')}"))

    lost = asyncio.Event()
    signaling.on("transport-lost", lost.set)

    await signaling.connect()
    await signaling.register(args.user_id or uuid.uuid4().hex, args.name)
    await signaling.join_room(args.room, room_name=args.room_name, max_participants=args.max_participants)

    try:
        if args.duration:
            await asyncio.wait_for(lost.wait(), timeout=args.duration)
        else:
            await lost.wait()
    except asyncio.TimeoutError:
        pass
    finally:
        await engine.hang_up()
        await signaling.close()
        await sink.stop()
        if media:
            media.stop()


def main():
    parser = argparse.ArgumentParser(description="Join a signaling room and negotiate with every peer in it")
    parser.add_argument("--server", default=SIGNALING_URL, help="Signaling WebSocket URL")
    parser.add_argument("--room", required=True, help="Room id to join")
    parser.add_argument("--room-name", default=None, help="Name used if the room is created by this join")
    parser.add_argument("--max-participants", type=int, default=None, help="Capacity used if the room is created")
    parser.add_argument("--name", default="python-peer", help="Display name")
    parser.add_argument("--user-id", default=None, help="Identity id (random if omitted)")
    parser.add_argument("--play", default=None, help="Media file or device to publish")
    parser.add_argument("--format", default=None, help="Container/device format for --play (e.g. v4l2)")
    parser.add_argument("--duration", type=float, default=None, help="Seconds to stay in the room")
    args = parser.parse_args()

    setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
