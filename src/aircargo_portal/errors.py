"""Request-scoped error taxonomy shared by services, clients and the API layer."""
from __future__ import annotations

__all__ = [
    "PortalError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientError",
]


class PortalError(Exception):
    """Base class; ``code`` and ``status_code`` drive the JSON error envelope."""

    code = "PORTAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_payload(self) -> dict:
        return {"error": {"code": self.code, "message": self.message}}


class ValidationError(PortalError, ValueError):
    """Malformed or out-of-range input."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(PortalError, LookupError):
    """Referenced record is missing or inactive."""

    code = "NOT_FOUND"
    status_code = 404


class ConflictError(PortalError):
    """Booking window no longer available; re-query availability before retrying."""

    code = "CONFLICT"
    status_code = 409


class TransientError(PortalError):
    """Network/upstream failure; the user may re-submit manually."""

    code = "TEMPORARILY_UNAVAILABLE"
    status_code = 503
