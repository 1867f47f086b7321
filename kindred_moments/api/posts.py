"""REST endpoints for posts and reactions.

Paths:
    POST   /api/posts               share a post in a moment
    GET    /api/posts/{id}          one visible post
    PUT    /api/posts/{id}/react    set the caller's reaction
    DELETE /api/posts/{id}/react    remove the caller's reaction
    DELETE /api/posts/{id}          hide a post (author only)
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, status

from kindred_moments.api.dependencies import current_user_id
from kindred_moments.api.schemas import CreatePostRequest, ReactRequest
from kindred_moments.core.moment_service import MomentService


def create_posts_router(service: MomentService) -> APIRouter:
    router = APIRouter(prefix="/api/posts", tags=["posts"])

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_post(body: CreatePostRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        post = await service.add_post(
            body.moment_id,
            user_id,
            body.text,
            mood=body.mood,
            media=body.media.model_dump() if body.media else None,
        )
        return post.to_dict()

    @router.get("/{post_id}")
    async def get_post(post_id: UUID) -> dict[str, Any]:
        return service.get_post(post_id).to_dict()

    @router.put("/{post_id}/react")
    async def react(post_id: UUID, body: ReactRequest, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        post = await service.react_to_post(post_id, user_id, body.reaction)
        return {"post_id": str(post.post_id), "reaction": body.reaction, "reactions": post.reaction_counts()}

    @router.delete("/{post_id}/react")
    async def unreact(post_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        post = await service.remove_reaction(post_id, user_id)
        return {"post_id": str(post.post_id), "reactions": post.reaction_counts()}

    @router.delete("/{post_id}")
    async def delete_post(post_id: UUID, user_id: str = Depends(current_user_id)) -> dict[str, Any]:
        post = await service.delete_post(post_id, user_id)
        return {"post_id": str(post.post_id), "deleted": True}

    return router
