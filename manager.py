import logging
from typing import Callable, List, Optional

from database import Database
from errors import (
    CapacityError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from models import (
    STATUS_TRANSITIONS,
    Decision,
    Event,
    EventCategory,
    EventStatus,
    Participant,
    RegistrationOutcome,
    User,
)
from utils import clamp_pagination, is_valid_id, new_id, parse_date, total_pages, utcnow

logger = logging.getLogger(__name__)

REQUIRED_EVENT_FIELDS = ("title", "description", "category", "price", "start_date", "end_date")
UPDATABLE_EVENT_FIELDS = REQUIRED_EVENT_FIELDS + ("capacity", "status", "location")
DEFAULT_CAPACITY = 100

# Actions an admin may perform on events they do not own.
ADMIN_ACTIONS = {"delete"}

CancellationPolicy = Callable[[Event], bool]


def user_from_row(row: dict) -> User:
    return User(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        email=row["email"],
        password=row["password"],
        role=row["role"],
        created_at=parse_date(row["created_at"]),
        updated_at=parse_date(row["updated_at"]),
    )


def event_from_row(row: dict) -> Event:
    return Event(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        category=row["category"],
        price=row["price"],
        owner_id=row["owner_id"],
        start_date=parse_date(row["start_date"]),
        end_date=parse_date(row["end_date"]),
        status=row["status"],
        capacity=row["capacity"],
        location=row["location"],
        participants=[
            Participant(user_id=p["user_id"], joined_at=parse_date(p["joined_at"]))
            for p in row.get("participants", [])
        ],
        created_at=parse_date(row["created_at"]),
        updated_at=parse_date(row["updated_at"]),
    )


def authorize(action: str, requester: User, event: Event) -> Decision:
    """Decide whether requester may perform action ("update" or "delete") on event."""
    if event.owner_id == requester.id:
        return Decision(True, "owner")
    if action in ADMIN_ACTIONS and requester.is_admin:
        return Decision(True, "admin")
    return Decision(False, f"You do not have permission to {action} this event")


def cancellation_window(hours: float = 24) -> CancellationPolicy:
    """Policy refusing cancellations closer than `hours` to the event start."""
    def policy(event: Event) -> bool:
        return event.can_cancel(hours_before=hours)
    return policy


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate_category(category) -> str:
    if category not in {c.value for c in EventCategory}:
        raise ValidationError(f"Invalid category: {category}")
    return category


def _validate_price(price) -> float:
    try:
        price = float(price)
    except (TypeError, ValueError):
        raise ValidationError("Price must be a number")
    if price < 0:
        raise ValidationError("Price must not be negative")
    return price


def _validate_capacity(capacity) -> int:
    if isinstance(capacity, bool) or not isinstance(capacity, (int, float)) or int(capacity) != capacity:
        raise ValidationError("Capacity must be a whole number")
    if capacity <= 0:
        raise ValidationError("Capacity must be positive")
    return int(capacity)


def _check_dates(start, end):
    if end < start:
        raise ValidationError("End date must be after start date")


class EventManager:
    """Owns event state changes and roster rules."""

    def __init__(self, db: Database, cancellation_policy: Optional[CancellationPolicy] = None):
        self.db = db
        self.cancellation_policy = cancellation_policy

    def _load(self, event_id: str) -> Event:
        if not event_id or not is_valid_id(event_id):
            raise ValidationError("Invalid event ID")
        row = self.db.get_event(event_id)
        if not row:
            raise NotFoundError("Event not found")
        return event_from_row(row)

    def get_event(self, event_id: str) -> Event:
        """Retrieve an event by ID."""
        return self._load(event_id)

    def describe(self, event: Event, with_participants: bool = False) -> dict:
        """Serialize an event with its owner (and optionally roster) populated."""
        wanted = [event.owner_id] + (event.participant_ids if with_participants else [])
        users = self.db.get_users(wanted)
        owner = users.get(event.owner_id)
        participants = None
        if with_participants:
            participants = [user_from_row(users[uid]).summary() for uid in event.participant_ids if uid in users]
        return event.to_dict(owner=user_from_row(owner).summary() if owner else None, participants=participants)

    def create_event(self, owner: User, fields: dict) -> Event:
        """Create a draft event owned by `owner`."""
        if any(_is_missing(fields.get(name)) for name in REQUIRED_EVENT_FIELDS):
            raise ValidationError("All required fields must be provided")
        start = parse_date(fields["start_date"])
        end = parse_date(fields["end_date"])
        _check_dates(start, end)
        capacity = fields.get("capacity")
        now = utcnow()
        event = Event(
            id=new_id(),
            title=str(fields["title"]).strip(),
            description=str(fields["description"]).strip(),
            category=_validate_category(fields["category"]),
            price=_validate_price(fields["price"]),
            owner_id=owner.id,
            start_date=start,
            end_date=end,
            status=EventStatus.DRAFT.value,
            capacity=DEFAULT_CAPACITY if capacity is None else _validate_capacity(capacity),
            location=fields.get("location") or None,
            created_at=now,
            updated_at=now,
        )
        self.db.add_event(event)
        logger.info(f"Event {event.id} created by {owner.id}")
        return event

    def update_event(self, event_id: str, requester: User, patch: dict) -> Event:
        """Apply a partial update; falsy or absent values keep the stored ones."""
        event = self._load(event_id)
        decision = authorize("update", requester, event)
        if not decision.allowed:
            raise ForbiddenError(decision.reason)

        patch = {k: v.strip() if isinstance(v, str) else v for k, v in patch.items()}
        changes = {k: v for k, v in patch.items() if k in UPDATABLE_EVENT_FIELDS and v}
        if not changes:
            return event

        start = parse_date(changes["start_date"]) if "start_date" in changes else event.start_date
        end = parse_date(changes["end_date"]) if "end_date" in changes else event.end_date
        _check_dates(start, end)
        if "start_date" in changes:
            changes["start_date"] = start.isoformat()
        if "end_date" in changes:
            changes["end_date"] = end.isoformat()
        if "category" in changes:
            _validate_category(changes["category"])
        if "price" in changes:
            changes["price"] = _validate_price(changes["price"])
        if "capacity" in changes:
            changes["capacity"] = _validate_capacity(changes["capacity"])
            if changes["capacity"] < len(event.participants):
                raise ValidationError("Capacity cannot be less than the number of registered participants")
        if "status" in changes:
            self._check_transition(event.status, changes["status"])

        if not self.db.update_event(event.id, changes, utcnow().isoformat()):
            if "capacity" in changes and self.db.get_event(event.id):
                raise ValidationError("Capacity cannot be less than the number of registered participants")
            raise NotFoundError("Event not found")
        logger.info(f"Event {event.id} updated by {requester.id}")
        return self._load(event.id)

    @staticmethod
    def _check_transition(current: str, target: str):
        try:
            target_status = EventStatus(target)
        except ValueError:
            raise ValidationError(f"Invalid status: {target}")
        current_status = EventStatus(current)
        if target_status != current_status and target_status not in STATUS_TRANSITIONS[current_status]:
            raise InvalidStateError(f"Cannot change event status from {current} to {target}")

    def delete_event(self, event_id: str, requester: User) -> None:
        """Delete an event (owner or admin)."""
        event = self._load(event_id)
        decision = authorize("delete", requester, event)
        if not decision.allowed:
            raise ForbiddenError(decision.reason)
        if not self.db.delete_event(event.id):
            raise NotFoundError("Event not found")
        logger.info(f"Event {event.id} deleted by {requester.id} ({decision.reason})")

    def register(self, event_id: str, requester: User) -> Event:
        """Add the requester to the event's roster."""
        if not event_id or not is_valid_id(event_id):
            raise ValidationError("Invalid event ID")
        outcome = self.db.register_participant(event_id, requester.id, utcnow().isoformat())
        if outcome is RegistrationOutcome.NOT_FOUND:
            raise NotFoundError("Event not found")
        if outcome is RegistrationOutcome.NOT_PUBLISHED:
            raise InvalidStateError("Cannot register for an event that is not published")
        if outcome is RegistrationOutcome.ALREADY_REGISTERED:
            raise ConflictError("You are already registered for this event")
        if outcome is RegistrationOutcome.FULL:
            raise CapacityError("Event is at full capacity")
        logger.info(f"User {requester.id} registered for event {event_id}")
        return self._load(event_id)

    def cancel_registration(self, event_id: str, requester: User) -> Event:
        """Remove the requester from the event's roster."""
        event = self._load(event_id)
        if requester.id not in event.participant_ids:
            raise InvalidStateError("You are not registered for this event")
        if self.cancellation_policy is not None and not self.cancellation_policy(event):
            raise InvalidStateError("Registration can no longer be cancelled for this event")
        if not self.db.remove_participant(event.id, requester.id):
            raise InvalidStateError("You are not registered for this event")
        logger.info(f"User {requester.id} cancelled registration for event {event.id}")
        return self._load(event.id)

    def list_events(self, category=None, status=None, search=None, page=1, page_size=10) -> dict:
        """Search and paginate events, newest first."""
        page, page_size = clamp_pagination(page, page_size)
        rows, total = self.db.list_events(
            category=category,
            status=status,
            search=search,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return {
            "events": [self.describe(event_from_row(r)) for r in rows],
            "totalEvents": total,
            "currentPage": page,
            "totalPages": total_pages(total, page_size),
        }

    def my_events(self, requester: User) -> List[Event]:
        """Events owned by the requester, newest first."""
        return [event_from_row(r) for r in self.db.list_events_by_owner(requester.id)]

    def registered_events(self, requester: User) -> List[Event]:
        """Events the requester is registered for, by start date."""
        return [event_from_row(r) for r in self.db.list_events_by_participant(requester.id)]
