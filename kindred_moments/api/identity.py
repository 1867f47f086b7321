"""Anonymous identity endpoint.

Path: POST /api/identity

Mints an ``anon_<uuid4>`` id and also sets it as a cookie so browser
clients need no header handling.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Response, status

from kindred_moments.api.dependencies import USER_ID_COOKIE
from kindred_moments.foundation.identifiers import new_anonymous_id

logger = logging.getLogger(__name__)

COOKIE_MAX_AGE = timedelta(days=365)


def create_identity_router() -> APIRouter:
    router = APIRouter(prefix="/api", tags=["identity"])

    @router.post("/identity", status_code=status.HTTP_201_CREATED)
    async def mint_identity(response: Response) -> dict:
        user_id = new_anonymous_id()
        response.set_cookie(
            USER_ID_COOKIE,
            user_id,
            max_age=int(COOKIE_MAX_AGE.total_seconds()),
            httponly=True,
            samesite="lax",
        )
        logger.debug("Minted anonymous identity %s", user_id)
        return {"user_id": user_id}

    return router
