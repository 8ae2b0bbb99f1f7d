import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import List, Optional


class EventCategory(str, enum.Enum):
    CONFERENCE = "conference"
    WORKSHOP = "workshop"
    SEMINAR = "seminar"
    OTHER = "other"


class EventStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Allowed status changes; completed and cancelled are terminal.
STATUS_TRANSITIONS = {
    EventStatus.DRAFT: {EventStatus.PUBLISHED, EventStatus.CANCELLED},
    EventStatus.PUBLISHED: {EventStatus.COMPLETED, EventStatus.CANCELLED},
    EventStatus.COMPLETED: set(),
    EventStatus.CANCELLED: set(),
}


class UserRole(str, enum.Enum):
    PARTICIPANT = "participant"
    ADMIN = "admin"


class RegistrationOutcome(str, enum.Enum):
    """Result of an attempt to append a user to an event's roster."""
    REGISTERED = "registered"
    NOT_FOUND = "not_found"
    NOT_PUBLISHED = "not_published"
    ALREADY_REGISTERED = "already_registered"
    FULL = "full"


@dataclass
class User:
    id: str
    first_name: str
    last_name: str
    email: str
    password: str  # bcrypt hash
    role: str = UserRole.PARTICIPANT.value
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def summary(self) -> dict:
        return {"id": self.id, "firstName": self.first_name, "lastName": self.last_name, "email": self.email}

    def to_public(self) -> dict:
        """User details without the password hash."""
        return {
            **self.summary(),
            "role": self.role,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class Participant:
    user_id: str
    joined_at: datetime


@dataclass
class Event:
    id: str
    title: str
    description: str
    category: str
    price: float
    owner_id: str
    start_date: datetime
    end_date: datetime
    status: str = EventStatus.DRAFT.value
    capacity: int = 100
    location: Optional[str] = None
    participants: List[Participant] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def participant_ids(self) -> List[str]:
        return [p.user_id for p in self.participants]

    @property
    def available_spots(self) -> int:
        return max(self.capacity - len(self.participants), 0)

    def can_cancel(self, now: Optional[datetime] = None, hours_before: float = 24) -> bool:
        """Whether a registration may still be cancelled given a cutoff before the start."""
        now = now or datetime.now(UTC)
        return self.start_date - now > timedelta(hours=hours_before)

    def to_dict(self, owner: Optional[dict] = None, participants: Optional[List[dict]] = None) -> dict:
        """Serialize the event; owner/participants may be passed in already populated."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "price": self.price,
            "location": self.location,
            "owner": owner if owner is not None else self.owner_id,
            "status": self.status,
            "capacity": self.capacity,
            "participants": participants if participants is not None else self.participant_ids,
            "availableSpots": self.available_spots,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""
    allowed: bool
    reason: str = ""
