"""GeoIndex — resolves coordinates to nearby moments.

Moments are bucketed into geocells of ``cell_size`` degrees.  Small-radius
lookups (the join radius) only visit the cells the radius can reach;
large discovery radii fall back to a full scan.  Both paths share the
same haversine distance, so "same moment" and "nearby" never disagree.

The index holds references to Moment objects owned by the MomentStore.
It never mutates them.
"""

from __future__ import annotations

import logging
import math
from uuid import UUID

from kindred_moments.domain.errors import ConflictError
from kindred_moments.domain.geo import GeoCell, geocell, haversine_m
from kindred_moments.domain.moment import Moment

logger = logging.getLogger(__name__)

_METERS_PER_DEGREE = 111_320.0


class GeoIndex:
    """In-memory spatial index over moments.

    Args:
        cell_size: Geocell edge in degrees (0.001° ≈ 111 m of latitude).
    """

    def __init__(self, cell_size: float = 0.001) -> None:
        if cell_size <= 0:
            raise ValueError("cell_size must be positive")
        self._cell_size = cell_size
        self._moments: dict[UUID, Moment] = {}
        self._cells: dict[GeoCell, set[UUID]] = {}

    # ── Maintenance ──────────────────────────────────────────────────────

    def add(self, moment: Moment, exclusive_radius_m: float | None = None) -> None:
        """Index *moment*.

        With *exclusive_radius_m*, refuse (ConflictError) if another open
        moment already lies within that radius.
        """
        if exclusive_radius_m is not None:
            clash = self.find_nearby(
                moment.point.latitude, moment.point.longitude, exclusive_radius_m
            )
            if clash is not None and clash.moment_id != moment.moment_id:
                raise ConflictError(f"Moment {clash.moment_id} already covers this location")

        self._moments[moment.moment_id] = moment
        self._cells.setdefault(self.geocell(moment.point.latitude, moment.point.longitude), set()).add(
            moment.moment_id
        )

    def remove(self, moment_id: UUID) -> bool:
        moment = self._moments.pop(moment_id, None)
        if moment is None:
            return False
        cell = self.geocell(moment.point.latitude, moment.point.longitude)
        bucket = self._cells.get(cell)
        if bucket is not None:
            bucket.discard(moment_id)
            if not bucket:
                del self._cells[cell]
        return True

    def geocell(self, lat: float, lon: float) -> GeoCell:
        return geocell(lat, lon, self._cell_size)

    # ── Queries ──────────────────────────────────────────────────────────

    def find_nearby(self, lat: float, lon: float, radius_m: float) -> Moment | None:
        """Closest open moment within *radius_m*, or None.

        Exact distance ties go to the most recently created moment.
        """
        best: Moment | None = None
        best_key: tuple[float, float] | None = None
        for moment, distance in self._within(lat, lon, radius_m, include_closed=False):
            key = (distance, -moment.created_at.timestamp())
            if best_key is None or key < best_key:
                best, best_key = moment, key
        return best

    def nearby(
        self,
        lat: float,
        lon: float,
        radius_m: float,
        include_closed: bool = False,
        limit: int | None = None,
    ) -> list[tuple[Moment, float]]:
        """Moments within *radius_m*, closest first, with their distances.

        By default only open moments are listed; with *include_closed* only
        expired/archived ones are (archive browsing).
        """
        found = sorted(
            self._within(lat, lon, radius_m, include_closed=include_closed),
            key=lambda pair: (pair[1], -pair[0].created_at.timestamp()),
        )
        return found[:limit] if limit is not None else found

    def __len__(self) -> int:
        return len(self._moments)

    def __contains__(self, moment_id: object) -> bool:
        return moment_id in self._moments

    # ── Internals ────────────────────────────────────────────────────────

    def _within(
        self, lat: float, lon: float, radius_m: float, include_closed: bool
    ) -> list[tuple[Moment, float]]:
        hits: list[tuple[Moment, float]] = []
        for moment in self._candidates(lat, lon, radius_m):
            if moment.is_closed != include_closed:
                continue
            distance = haversine_m(lat, lon, moment.point.latitude, moment.point.longitude)
            if distance <= radius_m:
                hits.append((moment, distance))
        return hits

    def _candidates(self, lat: float, lon: float, radius_m: float) -> list[Moment]:
        lat_span = radius_m / _METERS_PER_DEGREE
        cos_lat = math.cos(math.radians(lat))
        lon_span = radius_m / (_METERS_PER_DEGREE * cos_lat) if cos_lat > 1e-6 else 360.0
        rows = math.ceil(lat_span / self._cell_size)
        cols = math.ceil(lon_span / self._cell_size)

        # Wide searches touch more cells than there are moments; scan instead.
        if (2 * rows + 1) * (2 * cols + 1) >= len(self._moments):
            return list(self._moments.values())

        row, col = self.geocell(lat, lon)
        ids: list[UUID] = []
        for r in range(row - rows, row + rows + 1):
            for c in range(col - cols, col + cols + 1):
                ids.extend(self._cells.get((r, c), ()))
        return [self._moments[mid] for mid in ids]
