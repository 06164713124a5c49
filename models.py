from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Identity:
    """A client-declared user identity. Never verified."""

    id: str
    display_name: str

    def to_wire(self) -> dict:
        return {"id": self.id, "username": self.display_name}


@dataclass
class Room:
    id: str
    name: str
    capacity: Optional[int] = None
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    # insertion ordered: identity id -> Identity
    members: Dict[str, Identity] = field(default_factory=dict)

    @property
    def is_full(self) -> bool:
        return self.capacity is not None and len(self.members) >= self.capacity

    def participants(self) -> List[Identity]:
        return list(self.members.values())

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "participants": [member.to_wire() for member in self.members.values()],
            "maxParticipants": self.capacity,
        }
