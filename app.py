from contextlib import asynccontextmanager
import json

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from backend import MemoryBackend
from connection import Connection
from constants import CORS_ORIGINS, DEFAULT_MAX_PARTICIPANTS, LOG_FILE, LOG_LEVEL, OUTBOUND_QUEUE_SIZE
from coordinator import RoomCoordinator
from errors import NotRegistered, RoomFull, TransportLoss
from logging_config import get_logger, setup_logging
from message_types import BAD_REQUEST, JOIN_ROOM, LEAVE_ROOM, SIGNAL, USER_CONNECT
from models import Identity
from routers.health import health_router
from routers.rooms import rooms_router
from schemas.signaling import Frame, JoinRoom, LeaveRoom, Signal, UserConnect

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def make_identity(user_id: str, username: str = None) -> Identity:
    display_name = username.strip() if username and username.strip() else f"User_{user_id[:8]}"
    return Identity(id=user_id, display_name=display_name)


async def handle_frame(coordinator: RoomCoordinator, connection: Connection, raw: str):
    """Parse one inbound frame and dispatch it. Client mistakes are reported, never raised."""
    try:
        frame = Frame.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Malformed frame from connection {connection.id}: {e}")
        coordinator.report_error(connection, BAD_REQUEST, "Frames must be JSON objects with an 'event' field")
        return

    event = frame.event
    room_id = None
    try:
        if event == USER_CONNECT:
            request = UserConnect.model_validate(frame.data)
            coordinator.register(connection, make_identity(request.id, request.username))

        elif event == JOIN_ROOM:
            request = JoinRoom.model_validate(frame.data)
            room_id = request.room_id
            identity = make_identity(request.user_id, request.username) if request.user_id else None
            await coordinator.join_room(
                connection,
                request.room_id,
                identity=identity,
                room_name=request.room_name,
                capacity=request.max_participants,
            )

        elif event == LEAVE_ROOM:
            request = LeaveRoom.model_validate(frame.data or {})
            room_id = request.room_id
            await coordinator.leave_room(connection, request.room_id)

        elif event == SIGNAL:
            Signal.model_validate(frame.data)
            coordinator.relay_signal(connection, dict(frame.data))

        else:
            logger.warning(f"Unknown event '{event}' from connection {connection.id}")
            coordinator.report_error(connection, BAD_REQUEST, f"Unknown event '{event}'")

    except ValidationError as e:
        logger.warning(f"Invalid {event} payload from connection {connection.id}: {e.errors()}")
        coordinator.report_error(connection, BAD_REQUEST, f"Invalid {event} payload", room_id=room_id)
    except RoomFull as e:
        logger.warning(f"Join rejected for connection {connection.id}: {e}")
        coordinator.report_error(connection, e.code, e.message, room_id=e.room_id)
    except NotRegistered as e:
        logger.warning(f"{event} before user-connect on connection {connection.id}")
        coordinator.report_error(connection, e.code, e.message, room_id=room_id)


def create_app(default_capacity: int = DEFAULT_MAX_PARTICIPANTS) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.backend = MemoryBackend(default_capacity=default_capacity)
        app.state.coordinator = RoomCoordinator(app.state.backend)
        logger.info("Signaling backend started")
        yield
        connections = app.state.backend.registry.connections()
        logger.info(f"Shutting down, closing {len(connections)} connections")
        for connection in connections:
            await app.state.coordinator.disconnect(connection)
            await connection.close(code=1001)

    app = FastAPI(title="Room Signaling", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(rooms_router)

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Signaling channel. One connection holds at most one identity and one room."""
        coordinator: RoomCoordinator = websocket.app.state.coordinator
        await websocket.accept()
        connection = Connection(websocket, queue_size=OUTBOUND_QUEUE_SIZE)
        connection.start()
        logger.info(f"WebSocket connection accepted: {connection.id}")

        message_count = 0
        try:
            while True:
                data = await websocket.receive_text()
                message_count += 1
                logger.debug(f"Received message #{message_count} from connection {connection.id}")
                await handle_frame(coordinator, connection, data)
        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for connection {connection.id}")
        except TransportLoss as e:
            logger.info(f"Transport lost for connection {connection.id}: {e}")
        except Exception as e:
            logger.error(f"WebSocket error for connection {connection.id}: {e}", exc_info=True)
        finally:
            await coordinator.disconnect(connection)
            await connection.close()

    logger.info("FastAPI application initialized")
    return app


app = create_app()
