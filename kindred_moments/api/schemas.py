"""Request bodies for the REST surface.

Only shapes are checked here.  Ranges and lengths are enforced by the
store so that REST and socket callers get identical errors.
"""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class CreateMomentRequest(BaseModel):
    latitude: float
    longitude: float
    name: Optional[str] = None
    address: Optional[str] = None


class MediaPayload(BaseModel):
    url: str
    media_type: str = "photo"


class CreatePostRequest(BaseModel):
    moment_id: UUID
    text: str
    mood: Optional[str] = None
    media: Optional[MediaPayload] = None


class ReactRequest(BaseModel):
    reaction: str


class MoodVoteRequest(BaseModel):
    moment_id: UUID
    mood: str
    intensity: int = 3
