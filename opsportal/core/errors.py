from __future__ import annotations

from typing import Any


class PortalError(Exception):
    """Base error for caller-facing governance failures."""

    status_code = 500
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = {key: value for key, value in details.items() if value is not None}

    def to_detail(self) -> dict[str, Any]:
        # Render the stable error payload shared by the API envelope and logs.
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class UnauthenticatedError(PortalError):
    """No valid session, or the team in the request does not exist."""

    status_code = 401
    default_code = "AUTH_UNAUTHENTICATED"


class ForbiddenError(PortalError):
    """Authenticated but not a member, not permitted, or not the seat owner's team."""

    status_code = 403
    default_code = "AUTH_FORBIDDEN"


class NotFoundError(PortalError):
    """Referenced team, license, status or record is absent."""

    status_code = 404
    default_code = "NOT_FOUND"


class ValidationError(PortalError):
    """Malformed input."""

    status_code = 400
    default_code = "VALIDATION_ERROR"


class ConflictError(PortalError):
    """Uniqueness or capacity violation."""

    status_code = 409
    default_code = "CONFLICT"


class UnavailableError(PortalError):
    """Directory store transport failure; surfaced as-is and never retried here."""

    status_code = 503
    default_code = "STORE_UNAVAILABLE"
