"""REST endpoints for mood votes.

Paths:
    POST   /api/moods/vote               cast or replace the caller's vote
    DELETE /api/moods/vote/{moment_id}   withdraw the caller's vote
    GET    /api/moods/moment/{moment_id} mood summary of a moment
    GET    /api/moods/user/{moment_id}   the caller's own vote
    GET    /api/moods/trending           popular moods across moments
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from kindred_moments.api.dependencies import current_user_id
from kindred_moments.api.schemas import MoodVoteRequest
from kindred_moments.core.moment_service import MomentService


def create_moods_router(service: MomentService) -> APIRouter:
    router = APIRouter(prefix="/api/moods", tags=["moods"])

    @router.post("/vote")
    async def vote(body: MoodVoteRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        summary = await service.vote_mood(body.moment_id, user_id, body.mood, body.intensity)
        return {"mood_summary": summary.model_dump(mode="json")}

    @router.delete("/vote/{moment_id}")
    async def remove_vote(moment_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        summary = await service.remove_mood_vote(moment_id, user_id)
        return {"mood_summary": summary.model_dump(mode="json")}

    @router.get("/moment/{moment_id}")
    async def moment_moods(moment_id: UUID) -> dict[str, Any]:
        summary = await service.mood_summary(moment_id)
        return summary.model_dump(mode="json")

    @router.get("/user/{moment_id}")
    async def my_vote(moment_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        vote = service.user_vote(moment_id, user_id)
        return {"has_voted": vote is not None, "vote": vote.model_dump(mode="json") if vote else None}

    @router.get("/trending")
    async def trending(
        hours: int = Query(24, ge=1, le=168),
        limit: int = Query(10, ge=1, le=10),
    ) -> dict[str, Any]:
        moods = service.trending_moods(hours=hours, limit=limit)
        return {"moods": moods, "hours": hours}

    return router
