"""ID generation for domain objects and anonymous identities."""

from __future__ import annotations

import re
from uuid import uuid4, UUID

_ANONYMOUS_ID = re.compile(
    r"^anon_[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)


def new_id() -> UUID:
    """Generate a new random UUID v4 for domain objects."""
    return uuid4()


def new_anonymous_id() -> str:
    """Mint an anonymous user id (``anon_<uuid4>``)."""
    return f"anon_{uuid4()}"


def is_valid_anonymous_id(value: object) -> bool:
    return isinstance(value, str) and bool(_ANONYMOUS_ID.match(value))
