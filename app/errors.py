"""Application error taxonomy.

Every failure that crosses a store or service boundary is one of these kinds.
A single exception handler in ``app.main`` turns them into the JSON envelope
``{"success": false, "message": ..., "errors": [...]}``.
"""
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError


class AppError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, str]]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 422
    default_message = "Validation failed"

    @classmethod
    def for_field(cls, field: str, message: str) -> "ValidationError":
        return cls(f"Invalid value for '{field}'", errors=[{"field": field, "message": message}])


class InvalidOperation(ValidationError):
    status_code = 400
    default_message = "Invalid operation"


class Unauthenticated(AppError):
    status_code = 401
    default_message = "Please log in to access this resource"


class AccessDenied(AppError):
    status_code = 403
    default_message = "Access denied"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class Conflict(AppError):
    status_code = 409
    default_message = "Already exists"


class ExternalServiceError(AppError):
    status_code = 502
    default_message = "An upstream service failed"


@asynccontextmanager
async def driver_errors(conflict_message: str = "Already exists"):
    """Translate raw driver errors into the application taxonomy."""
    try:
        yield
    except DuplicateKeyError as e:
        raise Conflict(conflict_message) from e
    except PyMongoError as e:
        raise ExternalServiceError("Database operation failed") from e
