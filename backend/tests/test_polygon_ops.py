"""
Tests for polygon ring helpers.
"""
import numpy as np
import pytest
from shapely.geometry import Polygon

from facet_planner.core.errors import DegenerateGeometryError
from facet_planner.core.polygon_ops import (
    close_ring,
    intersect_rings,
    open_ring,
    point_in_polygon,
    points_in_polygon,
    ring_bounds,
    validate_ring,
)

UNIT_SQUARE = [(0, 0), (1, 0), (1, 1), (0, 1)]


def test_point_in_unit_square():
    """Inside, outside and vertex cases."""
    assert point_in_polygon(0.5, 0.5, UNIT_SQUARE)
    assert not point_in_polygon(2.0, 2.0, UNIT_SQUARE)

    first = point_in_polygon(1.0, 1.0, UNIT_SQUARE)
    for _ in range(5):
        assert point_in_polygon(1.0, 1.0, UNIT_SQUARE) == first


def test_closed_and_open_rings_agree():
    """A repeated closing vertex does not change membership."""
    closed = close_ring(UNIT_SQUARE)
    for pt in [(0.5, 0.5), (0.99, 0.01), (1.5, 0.5), (-0.1, 0.5)]:
        assert point_in_polygon(*pt, closed) == point_in_polygon(*pt, UNIT_SQUARE)


def test_vectorized_matches_scalar():
    """points_in_polygon uses the same crossing rule as point_in_polygon."""
    ring = [(0, 0), (4, 0), (4, 4), (2, 1), (0, 4)]
    rng = np.random.default_rng(7)
    lngs = rng.uniform(-1, 5, 200)
    lats = rng.uniform(-1, 5, 200)

    expected = np.array([point_in_polygon(x, y, ring) for x, y in zip(lngs, lats)])
    assert np.array_equal(points_in_polygon(lngs, lats, ring), expected)


def test_ring_helpers():
    """Opening, closing and bounds."""
    closed = close_ring(UNIT_SQUARE)
    assert closed[0] == closed[-1]
    assert len(closed) == 5
    assert open_ring(closed) == [(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)]
    assert ring_bounds(UNIT_SQUARE) == (0, 0, 1, 1)


def test_validate_ring_rejects_degenerate():
    """Fewer than three distinct vertices is a hard failure."""
    with pytest.raises(DegenerateGeometryError):
        validate_ring([(0, 0), (1, 1)])
    with pytest.raises(DegenerateGeometryError):
        validate_ring([(0, 0), (1, 1), (0, 0), (1, 1)])
    assert len(validate_ring(close_ring(UNIT_SQUARE))) == 4


def test_intersect_overlapping_rings():
    """Overlap of two offset squares is a quarter square."""
    other = [(0.5, 0.5), (1.5, 0.5), (1.5, 1.5), (0.5, 1.5)]
    pieces = intersect_rings(UNIT_SQUARE, other)
    assert len(pieces) == 1
    assert pieces[0][0] == pieces[0][-1]
    assert Polygon(pieces[0]).area == pytest.approx(0.25)


def test_intersect_disjoint_rings_is_empty():
    """No overlap gives an empty list."""
    far = [(5, 5), (6, 5), (6, 6), (5, 6)]
    assert intersect_rings(UNIT_SQUARE, far) == []


def test_intersect_touching_rings_is_empty():
    """Sharing only an edge carries no area."""
    neighbour = [(1, 0), (2, 0), (2, 1), (1, 1)]
    assert intersect_rings(UNIT_SQUARE, neighbour) == []


def test_intersect_splits_into_pieces():
    """A U-shaped subject clipped by a bar yields two disjoint pieces."""
    u_shape = [(0, 0), (3, 0), (3, 3), (2, 3), (2, 1), (1, 1), (1, 3), (0, 3)]
    bar = [(-1, 2), (4, 2), (4, 2.5), (-1, 2.5)]
    pieces = intersect_rings(u_shape, bar)
    assert len(pieces) == 2
    assert sum(Polygon(p).area for p in pieces) == pytest.approx(1.0)


def test_intersect_repairs_self_touching_subject():
    """A bow-tie subject is repaired before clipping."""
    bow_tie = [(0, 0), (2, 2), (2, 0), (0, 2)]
    pieces = intersect_rings(bow_tie, [(-1, -1), (3, -1), (3, 3), (-1, 3)])
    assert sum(Polygon(p).area for p in pieces) == pytest.approx(2.0)
