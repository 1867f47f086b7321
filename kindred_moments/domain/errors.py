"""Error taxonomy shared by the store, the presence hub and the API layer.

Every error carries a stable ``kind`` and a human-readable message.  The
HTTP layer maps kinds to status codes; the socket layer sends them as an
``error`` event to the triggering connection only.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_PARTICIPANT = "not_participant"
    VALIDATION_FAILED = "validation_failed"
    UNAUTHENTICATED = "unauthenticated"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"


class MomentError(Exception):
    """Base class for every domain failure surfaced to callers."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class NotFoundError(MomentError):
    """Unknown moment, post or vote."""

    kind = ErrorKind.NOT_FOUND


class InactiveError(MomentError):
    """A write was attempted on an expired or archived moment."""

    kind = ErrorKind.INACTIVE


class NotParticipantError(MomentError):
    """A write was attempted by someone who is not a member (or not the author)."""

    kind = ErrorKind.NOT_PARTICIPANT


class ValidationFailedError(MomentError):
    kind = ErrorKind.VALIDATION_FAILED


class UnauthenticatedError(MomentError):
    kind = ErrorKind.UNAUTHENTICATED


class ConflictError(MomentError):
    """Another moment already claims this location."""

    kind = ErrorKind.CONFLICT


class UnavailableError(MomentError):
    """The store did not answer within its timeout."""

    kind = ErrorKind.UNAVAILABLE
