from fastapi import APIRouter, HTTPException, Request
from schemas.rooms import Participant, RoomDetailsResponse, RoomSummary
from logging_config import get_logger

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


@rooms_router.get("/", response_model=list[RoomSummary], response_model_by_alias=True)
async def list_rooms(request: Request):
    directory = request.app.state.backend.directory
    rooms = directory.list_rooms()
    logger.debug(f"Listing {len(rooms)} rooms")
    return [
        RoomSummary(
            room_id=room.id,
            name=room.name,
            participant_count=len(room.members),
            max_participants=room.capacity,
        )
        for room in rooms
    ]


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse, response_model_by_alias=True)
async def get_room_details(room_id: str, request: Request):
    """
    Get a live room's details.

    Rooms only exist while they have members, so an empty or never-joined
    room id is a 404.
    """
    client_host = request.client.host if request.client else 'unknown'
    logger.info(f"Room details request for {room_id} from {client_host}")

    room = request.app.state.backend.directory.get(room_id)
    if not room:
        logger.warning(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    return RoomDetailsResponse(
        room_id=room.id,
        name=room.name,
        created_at=room.created_at,
        max_participants=room.capacity,
        participants=[Participant(**member.to_wire()) for member in room.participants()],
        is_full=room.is_full,
    )
