import logging
from datetime import datetime, timedelta, UTC
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.hash import bcrypt

from config import Settings
from database import Database
from errors import ForbiddenError, UnauthorizedError
from manager import EventManager, user_from_row
from models import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_COOKIE = "accessToken"

# OAuth2 scheme; auto_error is off so the cookie can be used instead of the header
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/users/login", auto_error=False)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def get_manager(request: Request) -> EventManager:
    return request.app.state.manager


def hash_password(password: str) -> str:
    return bcrypt.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.verify(password, hashed)


def create_access_token(user_id: str, settings: Settings) -> str:
    """Create a JWT access token carrying only the user id."""
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {"sub": user_id, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings) -> str:
    """Return the user id from a token, or raise UnauthorizedError."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.warning(f"Token rejected: {e}")
        raise UnauthorizedError("Invalid access token")
    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        raise UnauthorizedError("Invalid access token")
    return user_id


async def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
    db: Database = Depends(get_db),
) -> User:
    """Resolve the caller from the access-token cookie or the bearer header."""
    token = request.cookies.get(ACCESS_TOKEN_COOKIE) or token
    if not token:
        raise UnauthorizedError("Unauthorized request")
    user_id = decode_access_token(token, settings)
    row = db.get_user(user_id)
    if row is None:
        logger.warning(f"Token presented for unknown user {user_id}")
        raise UnauthorizedError("Invalid access token")
    return user_from_row(row)


async def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Allow only admins through."""
    if not current_user.is_admin:
        raise ForbiddenError("Access denied. Admin permission required.")
    return current_user
