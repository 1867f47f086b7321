"""Geographic primitives: points, distance and geocells.

A single distance function is used for both "is this the same moment?"
matching and "what is near me?" discovery, so the two can never drift.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, Field

EARTH_RADIUS_M = 6_371_000.0

# A geocell is a coarse (lat, lon) bucket expressed in whole cell units.
GeoCell = tuple[int, int]


class GeoPoint(BaseModel):
    """A validated WGS84 coordinate."""

    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)

    model_config = {"frozen": True}


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two lat/lon points in meters."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def geocell(lat: float, lon: float, cell_size: float) -> GeoCell:
    """Bucket a coordinate into a cell of *cell_size* degrees."""
    return (math.floor(lat / cell_size), math.floor(lon / cell_size))


def neighbourhood(cell: GeoCell) -> list[GeoCell]:
    """The cell and its eight neighbours, in a stable sorted order.

    Locks are always taken in this order so overlapping neighbourhoods
    cannot deadlock each other.
    """
    row, col = cell
    return sorted((row + dr, col + dc) for dr in (-1, 0, 1) for dc in (-1, 0, 1))
