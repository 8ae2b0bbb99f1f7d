import pytest
from fastapi.testclient import TestClient

from auth import hash_password
from config import Settings
from database import Database
from main import create_app
from manager import EventManager
from models import User, UserRole
from utils import new_id, utcnow


@pytest.fixture
def settings(tmp_path):
    return Settings(database_path=str(tmp_path / "test.db"), secret_key="test-secret")


@pytest.fixture
def db(settings):
    database = Database(settings.database_path)
    yield database
    database.close()


@pytest.fixture
def manager(db):
    return EventManager(db)


def add_user(db, email, role=UserRole.PARTICIPANT.value, password="password123"):
    now = utcnow()
    user = User(
        id=new_id(),
        first_name="Test",
        last_name=email.split("@")[0].title(),
        email=email,
        password=hash_password(password),
        role=role,
        created_at=now,
        updated_at=now,
    )
    db.add_user(user)
    return user


@pytest.fixture
def owner(db):
    return add_user(db, "owner@example.com")


@pytest.fixture
def attendee(db):
    return add_user(db, "attendee@example.com")


@pytest.fixture
def admin(db):
    return add_user(db, "admin@example.com", role=UserRole.ADMIN.value)


@pytest.fixture
def event_fields():
    return {
        "title": "Python Workshop",
        "description": "Hands-on introduction to FastAPI",
        "category": "workshop",
        "price": 25.0,
        "start_date": "2025-01-05T10:00:00",
        "end_date": "2025-01-10T18:00:00",
    }


@pytest.fixture
def published_event(manager, owner, event_fields):
    event = manager.create_event(owner, event_fields)
    return manager.update_event(event.id, owner, {"status": "published"})


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def login(client, email, password="password123"):
    response = client.post("/api/v1/users/login", json={"email": email, "password": password})
    # the login cookie would otherwise take precedence over the header for every later request
    client.cookies.clear()
    return {"Authorization": f"Bearer {response.json()['data']['accessToken']}"}


def signup(client, email, password="password123"):
    client.post("/api/v1/users/register", json={
        "firstName": "Test",
        "lastName": "User",
        "email": email,
        "password": password,
    })
    return login(client, email, password)
