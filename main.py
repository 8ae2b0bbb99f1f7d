import logging
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import (
    ACCESS_TOKEN_COOKIE,
    create_access_token,
    get_current_user,
    get_db,
    get_manager,
    get_settings,
    hash_password,
    verify_password,
)
from config import Settings
from database import Database
from errors import ApiError, ConflictError, NotFoundError, UnauthorizedError, ValidationError
from manager import EventManager, cancellation_window, user_from_row
from models import User, UserRole
from utils import api_response, new_id, utcnow

# Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6

# -------------------------------
# Schemas
# -------------------------------
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


Category = Literal["conference", "workshop", "seminar", "other"]
Status = Literal["draft", "published", "completed", "cancelled"]


class EventCreate(CamelModel):
    # Presence of the required fields is checked by EventManager
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    capacity: Optional[int] = None
    location: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "title": "Python Workshop",
                "description": "Hands-on introduction to FastAPI",
                "category": "workshop",
                "price": 25.0,
                "startDate": "2025-05-01T10:00:00",
                "endDate": "2025-05-01T12:00:00",
                "capacity": 50,
                "location": "Room 4",
            }
        }
    )


class EventUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[Category] = None
    price: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    capacity: Optional[int] = None
    status: Optional[Status] = None
    location: Optional[str] = None


class UserRegister(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class UserLogin(CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


def _normalize_email(email: str) -> str:
    return email.strip().lower()

# -------------------------------
# User Routes
# -------------------------------
users_router = APIRouter(prefix="/api/v1/users", tags=["users"])


@users_router.post("/register", status_code=status.HTTP_201_CREATED, summary="Register a new user")
def register_user(payload: UserRegister, db: Database = Depends(get_db)):
    """Register a new participant account."""
    if not all([payload.first_name, payload.last_name, payload.email, payload.password]):
        raise ValidationError("All fields are required")
    if len(payload.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    email = _normalize_email(payload.email)
    if db.get_user_by_email(email):
        raise ConflictError("User with this email already exists")
    now = utcnow()
    user = User(
        id=new_id(),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=email,
        password=hash_password(payload.password),
        role=UserRole.PARTICIPANT.value,
        created_at=now,
        updated_at=now,
    )
    if not db.add_user(user):
        raise ConflictError("User with this email already exists")
    logger.info(f"User {user.email} registered")
    return api_response(201, user.to_public(), "User registered successfully")


@users_router.post("/login", summary="Login and receive an access token")
def login_user(
    payload: UserLogin,
    response: Response,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Authenticate a user; the token is returned and set as an httpOnly cookie."""
    if not payload.email or not payload.password:
        raise ValidationError("Email and password are required")
    row = db.get_user_by_email(_normalize_email(payload.email))
    if not row:
        raise NotFoundError("User not found")
    user = user_from_row(row)
    if not verify_password(payload.password, user.password):
        logger.warning(f"Failed login for {user.email}")
        raise UnauthorizedError("Invalid credentials")
    access_token = create_access_token(user.id, settings)
    response.set_cookie(ACCESS_TOKEN_COOKIE, access_token, httponly=True, secure=settings.is_production)
    logger.info(f"User {user.email} logged in")
    return api_response(200, {"user": user.to_public(), "accessToken": access_token}, "User logged in successfully")


@users_router.post("/logout", summary="Clear the access token cookie")
def logout_user(
    response: Response,
    current_user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
):
    response.delete_cookie(ACCESS_TOKEN_COOKIE, httponly=True, secure=settings.is_production)
    logger.info(f"User {current_user.email} logged out")
    return api_response(200, {}, "User logged out")


@users_router.get("/profile", summary="Get own profile")
def get_profile(current_user: User = Depends(get_current_user)):
    return api_response(200, current_user.to_public(), "User profile fetched successfully")


@users_router.patch("/profile", summary="Update own profile")
def update_profile(
    payload: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Database = Depends(get_db),
):
    """Update first and/or last name."""
    if not payload.first_name and not payload.last_name:
        raise ValidationError("At least one field is required for update")
    db.update_user(
        current_user.id,
        utcnow().isoformat(),
        first_name=payload.first_name.strip() if payload.first_name else None,
        last_name=payload.last_name.strip() if payload.last_name else None,
    )
    row = db.get_user(current_user.id)
    if not row:
        raise NotFoundError("User not found")
    logger.info(f"User {current_user.id} updated their profile")
    return api_response(200, user_from_row(row).to_public(), "Profile updated successfully")

# -------------------------------
# Event Routes
# -------------------------------
events_router = APIRouter(prefix="/api/v1/events", tags=["events"])


@events_router.get("", summary="List, search and paginate events")
def list_events(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    category: Optional[str] = None,
    event_type: Optional[str] = Query(None, alias="eventType"),
    status: Optional[str] = None,
    search: Optional[str] = None,
    search_term: Optional[str] = Query(None, alias="searchTerm"),
    manager: EventManager = Depends(get_manager),
):
    data = manager.list_events(
        category=category or event_type,
        status=status,
        search=search or search_term,
        page=page or 1,
        page_size=limit or 10,
    )
    return api_response(200, data, "Events fetched successfully")


@events_router.post("", status_code=status.HTTP_201_CREATED, summary="Create a new event")
def create_event(
    payload: EventCreate,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Create a draft event owned by the caller."""
    event = manager.create_event(current_user, payload.model_dump())
    return api_response(201, manager.describe(event), "Event created successfully")


@events_router.get("/user/my-events", summary="Events created by the caller")
def my_events(current_user: User = Depends(get_current_user), manager: EventManager = Depends(get_manager)):
    events = manager.my_events(current_user)
    return api_response(200, [e.to_dict() for e in events], "Events fetched successfully")


@events_router.get("/user/registered", summary="Events the caller is registered for")
def registered_events(current_user: User = Depends(get_current_user), manager: EventManager = Depends(get_manager)):
    events = manager.registered_events(current_user)
    return api_response(200, [manager.describe(e) for e in events], "Registered events fetched successfully")


@events_router.get("/{event_id}", summary="Fetch one event")
def get_event(event_id: str, manager: EventManager = Depends(get_manager)):
    event = manager.get_event(event_id)
    return api_response(200, manager.describe(event, with_participants=True), "Event fetched successfully")


@events_router.patch("/{event_id}", summary="Update an event")
def update_event(
    event_id: str,
    payload: EventUpdate,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Update an event (owner only)."""
    event = manager.update_event(event_id, current_user, payload.model_dump())
    return api_response(200, manager.describe(event), "Event updated successfully")


@events_router.delete("/{event_id}", summary="Delete an event")
def delete_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    """Delete an event (owner or admin)."""
    manager.delete_event(event_id, current_user)
    return api_response(200, {}, "Event deleted successfully")


@events_router.post("/{event_id}/register", summary="Register for an event")
def register_for_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    event = manager.register(event_id, current_user)
    return api_response(200, manager.describe(event), "Successfully registered for the event")


@events_router.delete("/{event_id}/register", summary="Cancel a registration")
def cancel_registration(
    event_id: str,
    current_user: User = Depends(get_current_user),
    manager: EventManager = Depends(get_manager),
):
    event = manager.cancel_registration(event_id, current_user)
    return api_response(200, manager.describe(event), "Successfully cancelled registration")

# -------------------------------
# Error handlers
# -------------------------------
async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [{"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]} for e in exc.errors()]
    return JSONResponse(status_code=400, content=ValidationError("Invalid request data", errors=errors).to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    error = ApiError(str(exc.detail), status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=error.to_dict(), headers=exc.headers)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=ApiError("Internal server error").to_dict())

# -------------------------------
# App
# -------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    db = Database(settings.database_path)
    policy = None
    if settings.cancellation_cutoff_hours is not None:
        policy = cancellation_window(settings.cancellation_cutoff_hours)
    app.state.db = db
    app.state.manager = EventManager(db, cancellation_policy=policy)
    yield
    logger.info("Closing database connection")
    db.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the API; the database is opened and closed by the lifespan."""
    settings = settings or Settings.from_env()
    app = FastAPI(title="Event Management API", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/", summary="API root endpoint")
    def root():
        return {"message": "Event Management API is running"}

    app.include_router(users_router)
    app.include_router(events_router)
    return app


app = create_app()
