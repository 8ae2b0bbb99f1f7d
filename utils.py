from datetime import datetime, UTC
from typing import Any, Tuple
import math
import uuid

from errors import ValidationError

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def parse_date(value) -> datetime:
    """Parse an ISO-8601 string (or datetime) into an aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            try:
                parsed = datetime.strptime(str(value), "%Y-%m-%d %H:%M")
            except ValueError:
                raise ValidationError("Invalid date format")
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    return uuid.uuid4().hex


def is_valid_id(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def clamp_pagination(page, page_size) -> Tuple[int, int]:
    """Coerce page/page_size into sane values."""
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size)
    except (TypeError, ValueError):
        page_size = DEFAULT_PAGE_SIZE
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    return page, min(page_size, MAX_PAGE_SIZE)


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


def api_response(status_code: int, data: Any, message: str = "Success") -> dict:
    """Wrap a payload in the standard success envelope."""
    return {"statusCode": status_code, "data": data, "message": message, "success": status_code < 400}
