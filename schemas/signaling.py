from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Frame(BaseModel):
    """Envelope of every WebSocket frame: ``{"event": ..., "data": ...}``."""

    event: str
    data: Any = None


class UserConnect(BaseModel):
    id: str = Field(min_length=1)
    username: str = ""

    @field_validator("username")
    @classmethod
    def strip_username(cls, value: str) -> str:
        return value.strip()


class JoinRoom(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: str = Field(alias="roomId", min_length=1)
    user_id: Optional[str] = Field(default=None, alias="userId")
    username: Optional[str] = None
    room_name: Optional[str] = Field(default=None, alias="roomName")
    max_participants: Optional[int] = Field(default=None, alias="maxParticipants", ge=1)


class LeaveRoom(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    room_id: Optional[str] = Field(default=None, alias="roomId")


class Signal(BaseModel):
    """A negotiation message. ``data`` is carried through untouched."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: Literal["offer", "answer", "candidate", "hangup"]
    sender: Optional[str] = Field(default=None, alias="from")
    to: Optional[str] = None
    room_id: Optional[str] = Field(default=None, alias="roomId")
    data: Any = None
