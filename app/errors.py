"""Domain errors raised by the service layer.

Each error carries the HTTP status it maps to so the route layer can render
it with a single exception handler. Extra payload keys (``field``,
``reviewId`` ...) are merged into the JSON body next to ``message``.
"""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for failures the API reports to clients."""

    status_code: int = 500
    default_message: str = "Something went wrong!"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        self.message = message or self.default_message
        self.extra = {key: value for key, value in extra.items() if value is not None}
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message, **self.extra}


class ValidationFailed(ServiceError):
    """Malformed or out-of-range input."""

    status_code = 400
    default_message = "Invalid data"

    def __init__(self, field: str, message: str | None = None, **extra: Any) -> None:
        self.field = field
        super().__init__(message, field=field, **extra)


class DuplicateError(ServiceError):
    """A uniqueness rule rejected the write."""

    status_code = 400
    default_message = "Already exists"


class AuthenticationRequired(ServiceError):
    status_code = 401
    default_message = "Not authenticated"


class InvalidCredentials(ServiceError):
    status_code = 401
    default_message = "Invalid username or password"


class ForbiddenError(ServiceError):
    """The resource exists but belongs to somebody else."""

    status_code = 403
    default_message = "Access denied"


class NotFoundError(ServiceError):
    status_code = 404
    default_message = "Not found"


class NoActiveProfile(NotFoundError):
    default_message = "No active profile"


class MetadataNotFoundError(NotFoundError):
    """The metadata provider does not know the requested item."""

    default_message = "Content not found"


class UpstreamError(ServiceError):
    """The metadata provider failed or is not configured."""

    status_code = 500
    default_message = "Failed to fetch content details"
