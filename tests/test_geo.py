"""Tests for geographic primitives and the GeoIndex."""

import pytest

from kindred_moments.domain.enums import MomentState
from kindred_moments.domain.errors import ConflictError
from kindred_moments.domain.geo import GeoPoint, geocell, haversine_m, neighbourhood
from kindred_moments.domain.moment import Moment
from kindred_moments.store.geo_index import GeoIndex

LAT, LON = 40.7128, -74.0060
# 0.0001 degrees of latitude is roughly 11 m.
STEP = 0.0001


def _moment(lat: float = LAT, lon: float = LON) -> Moment:
    return Moment(GeoPoint(latitude=lat, longitude=lon))


class TestHaversine:
    def test_zero_distance(self) -> None:
        assert haversine_m(LAT, LON, LAT, LON) == 0.0

    def test_eleven_meters_north(self) -> None:
        assert haversine_m(LAT, LON, LAT + STEP, LON) == pytest.approx(11.1, abs=0.1)

    def test_symmetric(self) -> None:
        a = haversine_m(LAT, LON, 51.5074, -0.1278)
        b = haversine_m(51.5074, -0.1278, LAT, LON)
        assert a == pytest.approx(b)

    def test_new_york_to_london(self) -> None:
        assert haversine_m(LAT, LON, 51.5074, -0.1278) / 1000 == pytest.approx(5570, rel=0.01)


class TestGeoPoint:
    @pytest.mark.parametrize("lat,lon", [(91, 0), (-91, 0), (0, 181), (0, -181)])
    def test_out_of_range_rejected(self, lat: float, lon: float) -> None:
        with pytest.raises(ValueError):
            GeoPoint(latitude=lat, longitude=lon)

    def test_edges_accepted(self) -> None:
        point = GeoPoint(latitude=-90, longitude=180)
        assert point.latitude == -90


class TestGeocell:
    def test_floor_bucketing(self) -> None:
        assert geocell(0.0015, 0.0025, 0.001) == (1, 2)
        assert geocell(-0.0005, -0.0015, 0.001) == (-1, -2)

    def test_neighbourhood_is_sorted_3x3(self) -> None:
        cells = neighbourhood((5, 7))
        assert len(cells) == 9
        assert cells == sorted(cells)
        assert (5, 7) in cells and (4, 6) in cells and (6, 8) in cells


class TestGeoIndexFindNearby:
    def test_empty_index_finds_nothing(self) -> None:
        assert GeoIndex().find_nearby(LAT, LON, 50) is None

    def test_finds_moment_within_radius(self) -> None:
        index = GeoIndex()
        moment = _moment()
        index.add(moment)
        assert index.find_nearby(LAT + STEP, LON, 50) is moment

    def test_ignores_moment_outside_radius(self) -> None:
        index = GeoIndex()
        index.add(_moment())
        assert index.find_nearby(LAT + 10 * STEP, LON, 50) is None

    def test_across_cell_boundary(self) -> None:
        index = GeoIndex(cell_size=0.001)
        # Enough far-away moments that the lookup walks cells instead of scanning.
        for i in range(12):
            index.add(_moment(10.0 + i, 10.0))
        edge = _moment(0.0009999, 0.0)
        index.add(edge)
        assert index.find_nearby(0.0010001, 0.0, 50) is edge

    def test_returns_closest(self) -> None:
        index = GeoIndex()
        far = _moment(LAT + 4 * STEP, LON)
        near = _moment(LAT + STEP, LON)
        index.add(far)
        index.add(near)
        assert index.find_nearby(LAT, LON, 50) is near

    def test_equal_distance_prefers_newest(self, clock) -> None:
        index = GeoIndex()
        older = _moment(LAT + STEP, LON)
        clock.advance(minutes=1)
        newer = _moment(LAT + STEP, LON)
        index.add(older)
        index.add(newer)
        assert index.find_nearby(LAT, LON, 50) is newer

    def test_closed_moments_are_skipped(self) -> None:
        index = GeoIndex()
        moment = _moment()
        moment.advance(MomentState.EXPIRED)
        index.add(moment)
        assert index.find_nearby(LAT, LON, 50) is None

    def test_removed_moment_not_found(self) -> None:
        index = GeoIndex()
        moment = _moment()
        index.add(moment)
        assert index.remove(moment.moment_id) is True
        assert index.remove(moment.moment_id) is False
        assert index.find_nearby(LAT, LON, 50) is None
        assert moment.moment_id not in index


class TestGeoIndexExclusiveAdd:
    def test_second_open_moment_in_radius_conflicts(self) -> None:
        index = GeoIndex()
        index.add(_moment(), exclusive_radius_m=50)
        with pytest.raises(ConflictError):
            index.add(_moment(LAT + STEP, LON), exclusive_radius_m=50)
        assert len(index) == 1

    def test_outside_radius_is_allowed(self) -> None:
        index = GeoIndex()
        index.add(_moment(), exclusive_radius_m=50)
        index.add(_moment(LAT + 10 * STEP, LON), exclusive_radius_m=50)
        assert len(index) == 2

    def test_expired_neighbour_does_not_block(self) -> None:
        index = GeoIndex()
        old = _moment()
        old.advance(MomentState.EXPIRED)
        index.add(old)
        index.add(_moment(), exclusive_radius_m=50)
        assert len(index) == 2


class TestGeoIndexNearby:
    def test_sorted_by_distance_with_distances(self) -> None:
        index = GeoIndex()
        far = _moment(LAT + 30 * STEP, LON)
        near = _moment(LAT + 5 * STEP, LON)
        index.add(far)
        index.add(near)
        found = index.nearby(LAT, LON, 1000)
        assert [m for m, _ in found] == [near, far]
        assert found[0][1] < found[1][1]

    def test_large_radius_scans_everything(self) -> None:
        index = GeoIndex()
        distant = _moment(LAT + 0.04, LON)
        index.add(distant)
        found = index.nearby(LAT, LON, 5000)
        assert [m for m, _ in found] == [distant]

    def test_limit(self) -> None:
        index = GeoIndex()
        for i in range(5):
            index.add(_moment(LAT + i * 10 * STEP, LON))
        assert len(index.nearby(LAT, LON, 5000, limit=3)) == 3

    def test_include_closed_lists_only_closed(self) -> None:
        index = GeoIndex()
        open_moment = _moment()
        closed = _moment(LAT + 10 * STEP, LON)
        closed.advance(MomentState.ARCHIVED)
        index.add(open_moment)
        index.add(closed)
        assert [m for m, _ in index.nearby(LAT, LON, 1000)] == [open_moment]
        assert [m for m, _ in index.nearby(LAT, LON, 1000, include_closed=True)] == [closed]

    def test_invalid_cell_size(self) -> None:
        with pytest.raises(ValueError):
            GeoIndex(cell_size=0)
