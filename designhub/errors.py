"""
DesignHub error vocabulary.

Every failure the service reports carries one of a fixed set of kinds so that
clients see the same ``{"error": {"code", "message"}}`` shape regardless of
which layer raised it.  Services raise these exceptions; the single handler in
``designhub.main`` turns them into HTTP responses.
"""
from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Wire-level error codes."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    EXPIRED = "EXPIRED"
    IO = "IO"
    INTERNAL = "INTERNAL"


HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.IO: 503,
    ErrorKind.INTERNAL: 500,
}


class DesignHubError(Exception):
    """Base class for every error the service surfaces to clients."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]


class InvalidInputError(DesignHubError):
    """Malformed input, size violation, or a missing required field."""

    kind = ErrorKind.VALIDATION_ERROR


class UnauthorizedError(DesignHubError):
    """Missing, invalid, or expired credentials."""

    kind = ErrorKind.UNAUTHORIZED


class ForbiddenError(DesignHubError):
    """Authenticated, but the role, ownership, or self-action rules refuse."""

    kind = ErrorKind.FORBIDDEN


class NotFoundError(DesignHubError):
    """An entity or blob does not exist."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(DesignHubError):
    """Uniqueness violation, or a transition blocked by open dependencies."""

    kind = ErrorKind.CONFLICT


class ExpiredError(DesignHubError):
    """An invitation outlived its validity window."""

    kind = ErrorKind.EXPIRED


class StoreIOError(DesignHubError):
    """Object-store I/O failure or timeout."""

    kind = ErrorKind.IO
