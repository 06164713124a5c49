from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Participant(BaseModel):
    id: str
    username: str


class RoomSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    name: str
    participant_count: int = Field(alias="participantCount")
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants")


class RoomDetailsResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId")
    name: str
    created_at: str = Field(alias="createdAt")
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants")
    participants: list[Participant]
    is_full: bool = Field(alias="isFull")


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    room_count: int = Field(alias="roomCount")
    user_count: int = Field(alias="userCount")
