"""REST endpoints for moments.

Paths:
    POST /api/moments                    create or join at a location
    GET  /api/moments                    open moments near a point
    GET  /api/moments/archived           expired and archived moments
    GET  /api/moments/{id}               one moment
    PUT  /api/moments/{id}/join          become a participant
    PUT  /api/moments/{id}/leave         stop being a participant
    GET  /api/moments/{id}/posts         visible posts, newest first
    GET  /api/moments/{id}/mood-summary  current mood distribution
"""

from __future__ import annotations

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from kindred_moments.api.dependencies import current_user_id
from kindred_moments.api.schemas import CreateMomentRequest
from kindred_moments.core.moment_service import MomentService


def create_moments_router(service: MomentService, max_radius_km: float = 50.0) -> APIRouter:
    """Factory that wires the moment endpoints to a MomentService."""

    router = APIRouter(prefix="/api/moments", tags=["moments"])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_or_join(
        body: CreateMomentRequest,
        response: Response,
        user_id: str = Depends(current_user_id),
    ) -> dict[str, Any]:
        summary, created = await service.create_or_join_moment(
            body.latitude, body.longitude, user_id, name=body.name, address=body.address
        )
        if not created:
            response.status_code = status.HTTP_200_OK
        return {"moment": summary.model_dump(mode="json"), "created": created}

    @router.get("")
    async def nearby(
        lat: float,
        lon: float,
        radius_km: Optional[float] = Query(None, gt=0),
        limit: int = Query(20, ge=1, le=100),
    ) -> dict[str, Any]:
        radius_m = min(radius_km, max_radius_km) * 1000 if radius_km is not None else None
        moments = service.nearby_moments(lat, lon, radius_m=radius_m, limit=limit)
        return {"moments": moments, "count": len(moments)}

    @router.get("/archived")
    async def archived(
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        radius_km: float = Query(1.0, gt=0),
        limit: int = Query(20, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ) -> dict[str, Any]:
        moments = service.archived_moments(
            lat, lon, radius_m=min(radius_km, max_radius_km) * 1000, limit=limit, offset=offset
        )
        return {"moments": [m.model_dump(mode="json") for m in moments], "count": len(moments)}

    @router.get("/{moment_id}")
    async def get_moment(moment_id: UUID) -> dict[str, Any]:
        summary = await service.get_moment(moment_id)
        return summary.model_dump(mode="json")

    @router.put("/{moment_id}/join")
    async def join(moment_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        summary = await service.join_moment(moment_id, user_id)
        return summary.model_dump(mode="json")

    @router.put("/{moment_id}/leave")
    async def leave(moment_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        summary = await service.leave_moment(moment_id, user_id)
        return summary.model_dump(mode="json")

    @router.get("/{moment_id}/posts")
    async def list_posts(
        moment_id: UUID,
        limit: int = Query(50, ge=1, le=100),
        offset: int = Query(0, ge=0),
    ) -> dict[str, Any]:
        posts = service.list_posts(moment_id, limit=limit, offset=offset)
        return {"posts": [p.to_dict() for p in posts], "count": len(posts)}

    @router.get("/{moment_id}/mood-summary")
    async def mood_summary(moment_id: UUID) -> dict[str, Any]:
        summary = await service.mood_summary(moment_id)
        return summary.model_dump(mode="json")

    return router
