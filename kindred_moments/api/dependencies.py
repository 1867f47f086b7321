"""FastAPI dependency for the caller's anonymous identity."""

from __future__ import annotations

from fastapi import Request

from kindred_moments.domain.errors import UnauthenticatedError
from kindred_moments.foundation.identifiers import is_valid_anonymous_id

USER_ID_HEADER = "X-User-ID"
USER_ID_COOKIE = "kindred-user-id"


def resolve_user_id(value: str | None) -> str:
    if not value:
        raise UnauthenticatedError("Anonymous identity required")
    if not is_valid_anonymous_id(value):
        raise UnauthenticatedError("Invalid anonymous identity")
    return value


def current_user_id(request: Request) -> str:
    """Header first, then cookie."""
    return resolve_user_id(request.headers.get(USER_ID_HEADER) or request.cookies.get(USER_ID_COOKIE))
