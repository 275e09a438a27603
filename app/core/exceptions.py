"""Domain errors raised by the hierarchy services.

Every rejected operation surfaces exactly one of these kinds together with a
human-readable message. The API layer maps them onto HTTP status codes.
"""

from typing import Any


class HierarchyError(Exception):
    """Base class for all domain errors."""

    kind = "error"
    status_code = 400

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "message": self.message,
            "data": None,
            "errors": {"kind": self.kind, **self.details},
        }


class NotFoundError(HierarchyError):
    kind = "not_found"
    status_code = 404


class ForbiddenError(HierarchyError):
    kind = "forbidden"
    status_code = 403


class NotAnAdminError(ForbiddenError):
    kind = "not_an_admin"


class InvalidStateError(HierarchyError):
    kind = "invalid_state"
    status_code = 400


class InvalidArgumentError(HierarchyError):
    kind = "invalid_argument"
    status_code = 400


class ConflictError(HierarchyError):
    kind = "conflict"
    status_code = 409


class UnavailableError(HierarchyError):
    """A dependency timed out or dropped the connection. Safe to retry."""

    kind = "unavailable"
    status_code = 503
