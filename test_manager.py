from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from conftest import add_user
from errors import (
    CapacityError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from manager import EventManager, authorize, cancellation_window
from utils import new_id, utcnow


def test_create_event_defaults(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    assert event.status == "draft"
    assert event.capacity == 100
    assert event.participants == []
    assert event.owner_id == owner.id
    assert manager.get_event(event.id).title == "Python Workshop"


@pytest.mark.parametrize("missing", ["title", "description", "category", "price", "start_date", "end_date"])
def test_create_event_requires_fields(manager, owner, event_fields, missing):
    del event_fields[missing]
    with pytest.raises(ValidationError, match="All required fields"):
        manager.create_event(owner, event_fields)


def test_create_event_rejects_end_before_start(manager, owner, event_fields):
    event_fields.update(start_date="2025-01-10", end_date="2025-01-05")
    with pytest.raises(ValidationError, match="End date must be after start date"):
        manager.create_event(owner, event_fields)


def test_create_event_accepts_ordered_dates(manager, owner, event_fields):
    event_fields.update(start_date="2025-01-05", end_date="2025-01-10")
    event = manager.create_event(owner, event_fields)
    assert event.end_date > event.start_date


def test_create_event_allows_free_events(manager, owner, event_fields):
    event_fields["price"] = 0
    assert manager.create_event(owner, event_fields).price == 0


@pytest.mark.parametrize("field,value", [
    ("category", "party"),
    ("capacity", 0),
    ("capacity", -3),
    ("price", -1),
    ("start_date", "not a date"),
])
def test_create_event_rejects_bad_values(manager, owner, event_fields, field, value):
    event_fields[field] = value
    with pytest.raises(ValidationError):
        manager.create_event(owner, event_fields)


def test_update_by_owner_is_partial(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    updated = manager.update_event(event.id, owner, {"title": "Renamed", "description": "", "price": None})
    assert updated.title == "Renamed"
    assert updated.description == event.description
    assert updated.price == event.price


def test_update_by_non_owner_is_forbidden(manager, owner, attendee, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(ForbiddenError):
        manager.update_event(event.id, attendee, {"title": "Hijacked"})


def test_admin_cannot_update_others_event(manager, owner, admin, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(ForbiddenError):
        manager.update_event(event.id, admin, {"title": "Admin edit"})


def test_update_unknown_event(manager, owner):
    with pytest.raises(NotFoundError):
        manager.update_event(new_id(), owner, {"title": "x"})


def test_update_rejects_malformed_id(manager, owner):
    with pytest.raises(ValidationError, match="Invalid event ID"):
        manager.update_event("not-an-id", owner, {"title": "x"})


def test_update_checks_single_date_against_existing(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(ValidationError):
        manager.update_event(event.id, owner, {"end_date": "2025-01-01T00:00:00"})
    with pytest.raises(ValidationError):
        manager.update_event(event.id, owner, {"start_date": "2025-02-01T00:00:00"})
    updated = manager.update_event(event.id, owner, {"start_date": "2025-01-06T09:00:00"})
    assert updated.start_date.day == 6


def test_update_checks_both_dates_in_one_patch(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(ValidationError, match="End date must be after start date"):
        manager.update_event(event.id, owner, {"start_date": "2025-01-10", "end_date": "2025-01-05"})
    updated = manager.update_event(event.id, owner, {"start_date": "2025-01-05", "end_date": "2025-01-10"})
    assert updated.end_date > updated.start_date


def test_update_ignores_blank_text(manager, owner, event_fields):
    event = manager.create_event(owner, {**event_fields, "location": "Hall B"})
    updated = manager.update_event(event.id, owner, {"title": "   ", "description": "\t", "location": " "})
    assert updated.title == event.title
    assert updated.description == event.description
    assert updated.location == "Hall B"
    assert manager.update_event(event.id, owner, {"title": "  Renamed  "}).title == "Renamed"


def test_update_status_follows_transitions(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    assert manager.update_event(event.id, owner, {"status": "published"}).status == "published"
    assert manager.update_event(event.id, owner, {"status": "published"}).status == "published"
    with pytest.raises(InvalidStateError):
        manager.update_event(event.id, owner, {"status": "draft"})
    assert manager.update_event(event.id, owner, {"status": "completed"}).status == "completed"
    with pytest.raises(InvalidStateError):
        manager.update_event(event.id, owner, {"status": "cancelled"})


def test_update_cannot_shrink_capacity_below_roster(manager, owner, attendee, db, published_event):
    manager.register(published_event.id, attendee)
    manager.register(published_event.id, add_user(db, "second@example.com"))
    with pytest.raises(ValidationError):
        manager.update_event(published_event.id, owner, {"capacity": 1})
    assert manager.update_event(published_event.id, owner, {"capacity": 2}).capacity == 2


def test_update_ignores_owner_and_participants(manager, owner, attendee, published_event):
    updated = manager.update_event(
        published_event.id, owner, {"owner_id": attendee.id, "participants": [attendee.id]}
    )
    assert updated.owner_id == owner.id
    assert updated.participants == []


def test_delete_by_owner(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    manager.delete_event(event.id, owner)
    with pytest.raises(NotFoundError):
        manager.get_event(event.id)


def test_delete_by_admin(manager, owner, admin, event_fields):
    event = manager.create_event(owner, event_fields)
    manager.delete_event(event.id, admin)
    with pytest.raises(NotFoundError):
        manager.get_event(event.id)


def test_delete_by_stranger_is_forbidden(manager, owner, attendee, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(ForbiddenError):
        manager.delete_event(event.id, attendee)


def test_authorize_reports_reason(manager, owner, attendee, admin, event_fields):
    event = manager.create_event(owner, event_fields)
    assert authorize("update", owner, event).reason == "owner"
    assert authorize("delete", admin, event).reason == "admin"
    decision = authorize("update", attendee, event)
    assert not decision.allowed
    assert "permission" in decision.reason


def test_register_requires_published(manager, owner, attendee, event_fields):
    event = manager.create_event(owner, event_fields)
    with pytest.raises(InvalidStateError):
        manager.register(event.id, attendee)
    manager.update_event(event.id, owner, {"status": "cancelled"})
    with pytest.raises(InvalidStateError):
        manager.register(event.id, attendee)


def test_register_completed_event_fails(manager, owner, attendee, published_event):
    manager.update_event(published_event.id, owner, {"status": "completed"})
    with pytest.raises(InvalidStateError):
        manager.register(published_event.id, attendee)


def test_register_twice_conflicts(manager, attendee, published_event):
    manager.register(published_event.id, attendee)
    with pytest.raises(ConflictError):
        manager.register(published_event.id, attendee)
    assert len(manager.get_event(published_event.id).participants) == 1


def test_register_unknown_event(manager, attendee):
    with pytest.raises(NotFoundError):
        manager.register(new_id(), attendee)


def test_capacity_boundary(manager, owner, attendee, db, event_fields):
    event = manager.create_event(owner, {**event_fields, "capacity": 1})
    manager.update_event(event.id, owner, {"status": "published"})
    registered = manager.register(event.id, attendee)
    assert registered.available_spots == 0
    with pytest.raises(CapacityError):
        manager.register(event.id, add_user(db, "late@example.com"))
    assert len(manager.get_event(event.id).participants) == 1


def test_roster_keeps_registration_order(manager, db, published_event):
    users = [add_user(db, f"user{i}@example.com") for i in range(3)]
    for user in users:
        manager.register(published_event.id, user)
    assert manager.get_event(published_event.id).participant_ids == [u.id for u in users]


def test_concurrent_registrations_never_exceed_capacity(manager, owner, db, event_fields):
    event = manager.create_event(owner, {**event_fields, "capacity": 3})
    manager.update_event(event.id, owner, {"status": "published"})
    users = [add_user(db, f"racer{i}@example.com") for i in range(10)]

    def attempt(user):
        try:
            manager.register(event.id, user)
            return True
        except CapacityError:
            return False

    with ThreadPoolExecutor(max_workers=10) as executor:
        results = list(executor.map(attempt, users))

    assert results.count(True) == 3
    assert len(manager.get_event(event.id).participants) == 3


def test_cancel_registration(manager, attendee, published_event):
    manager.register(published_event.id, attendee)
    event = manager.cancel_registration(published_event.id, attendee)
    assert len(event.participants) == 0


def test_cancel_without_registration(manager, attendee, published_event):
    with pytest.raises(InvalidStateError):
        manager.cancel_registration(published_event.id, attendee)


def test_cancellation_policy_is_unwired_by_default(manager, owner, attendee, event_fields):
    soon = utcnow() + timedelta(hours=1)
    fields = {**event_fields, "start_date": soon.isoformat(), "end_date": (soon + timedelta(hours=2)).isoformat()}
    event = manager.create_event(owner, fields)
    manager.update_event(event.id, owner, {"status": "published"})
    manager.register(event.id, attendee)
    assert manager.cancel_registration(event.id, attendee).participants == []


def test_cancellation_window_policy(db, owner, attendee, event_fields):
    manager = EventManager(db, cancellation_policy=cancellation_window(24))
    soon = utcnow() + timedelta(hours=2)
    fields = {**event_fields, "start_date": soon.isoformat(), "end_date": (soon + timedelta(hours=2)).isoformat()}
    event = manager.create_event(owner, fields)
    manager.update_event(event.id, owner, {"status": "published"})
    manager.register(event.id, attendee)
    with pytest.raises(InvalidStateError, match="no longer be cancelled"):
        manager.cancel_registration(event.id, attendee)


def test_list_events_search_and_pagination(manager, owner, event_fields):
    for i in range(5):
        manager.create_event(owner, {**event_fields, "title": f"Django Sprint {i}"})
    manager.create_event(owner, {**event_fields, "title": "Rust meetup", "description": "Ownership talk"})

    page = manager.list_events(search="django", page=1, page_size=2)
    assert page["totalEvents"] == 5
    assert page["totalPages"] == 3
    assert len(page["events"]) == 2
    assert page["events"][0]["title"] == "Django Sprint 4"

    assert manager.list_events(search="OWNERSHIP")["totalEvents"] == 1
    assert manager.list_events(category="seminar")["totalEvents"] == 0


def test_list_events_search_folds_non_ascii_case(manager, owner, event_fields):
    manager.create_event(owner, {**event_fields, "title": "Café Émile"})
    manager.create_event(owner, {**event_fields, "title": "Straße fest", "description": "Ein Abend"})
    assert manager.list_events(search="CAFÉ")["totalEvents"] == 1
    assert manager.list_events(search="émile")["totalEvents"] == 1
    assert manager.list_events(search="STRASSE")["totalEvents"] == 1


def test_list_events_clamps_pagination(manager, owner, event_fields):
    manager.create_event(owner, event_fields)
    page = manager.list_events(page=0, page_size=-5)
    assert page["currentPage"] == 1
    assert page["totalPages"] == 1
    assert manager.list_events(page="abc", page_size="x")["currentPage"] == 1


def test_my_events_and_registrations(manager, owner, attendee, event_fields):
    later = manager.create_event(owner, {**event_fields, "start_date": "2025-03-01", "end_date": "2025-03-02"})
    sooner = manager.create_event(owner, {**event_fields, "start_date": "2025-02-01", "end_date": "2025-02-02"})
    for event in (later, sooner):
        manager.update_event(event.id, owner, {"status": "published"})
        manager.register(event.id, attendee)

    assert [e.id for e in manager.my_events(owner)] == [sooner.id, later.id]
    assert [e.id for e in manager.registered_events(attendee)] == [sooner.id, later.id]
    assert manager.my_events(attendee) == []
