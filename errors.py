from typing import Any, List, Optional


class ApiError(Exception):
    """Base error surfaced to API callers with a status code and message."""
    status_code = 500

    def __init__(self, message: str, errors: Optional[List[Any]] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "statusCode": self.status_code,
            "message": self.message,
            "data": None,
            "success": False,
            "errors": self.errors,
        }


class ValidationError(ApiError):
    status_code = 400


class UnauthorizedError(ApiError):
    status_code = 401


class ForbiddenError(ApiError):
    status_code = 403


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class InvalidStateError(ApiError):
    """Operation is not valid for the event's current status or roster."""
    status_code = 400


class CapacityError(ApiError):
    status_code = 400
