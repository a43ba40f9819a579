"""
Polygon ring helpers.

Handles:
- Ring normalization (open/closed form, bounds, validation)
- Even-odd point-in-polygon membership, scalar and vectorized
- Boolean intersection of two rings via shapely
"""
from typing import List, Sequence, Tuple

import numpy as np
from shapely.geometry import Polygon, MultiPolygon, GeometryCollection
from shapely.geometry.base import BaseGeometry
from shapely.validation import make_valid
import logging

from .errors import DegenerateGeometryError

logger = logging.getLogger(__name__)

# Keeps the crossing test finite for horizontal edges
EDGE_EPS = 1e-12

Ring = List[Tuple[float, float]]


def open_ring(ring: Sequence[Sequence[float]]) -> Ring:
    """Return the ring as (lng, lat) tuples without a repeated closing vertex."""
    pts = [(float(p[0]), float(p[1])) for p in ring]
    if len(pts) > 1 and pts[0] == pts[-1]:
        pts = pts[:-1]
    return pts


def close_ring(ring: Sequence[Sequence[float]]) -> Ring:
    """Return the ring with the first vertex repeated at the end."""
    pts = open_ring(ring)
    if pts:
        pts.append(pts[0])
    return pts


def ring_bounds(ring: Sequence[Sequence[float]]) -> Tuple[float, float, float, float]:
    """
    Bounding box of a ring.

    Returns:
        Tuple of (min_lng, min_lat, max_lng, max_lat)
    """
    lngs = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    return min(lngs), min(lats), max(lngs), max(lats)


def validate_ring(ring: Sequence[Sequence[float]]) -> Ring:
    """
    Check that a ring describes a polygon.

    Args:
        ring: Sequence of (lng, lat)

    Returns:
        Open ring as a list of tuples

    Raises:
        DegenerateGeometryError: Fewer than 3 distinct vertices
    """
    pts = open_ring(ring)
    if len(set(pts)) < 3:
        raise DegenerateGeometryError(
            f"Polygon needs at least 3 distinct vertices, got {len(set(pts))}"
        )
    return pts


def point_in_polygon(lng: float, lat: float, ring: Sequence[Sequence[float]]) -> bool:
    """
    Even-odd ray casting membership test.

    Points exactly on an edge or vertex get a fixed, repeatable answer.

    Args:
        lng: Point longitude
        lat: Point latitude
        ring: Polygon ring, closed or open

    Returns:
        True if the point is inside
    """
    inside = False
    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = ring[i][0], ring[i][1]
        xj, yj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            if lng < (xj - xi) * (lat - yi) / (yj - yi + EDGE_EPS) + xi:
                inside = not inside
        j = i
    return inside


def points_in_polygon(lngs: np.ndarray, lats: np.ndarray, ring: Sequence[Sequence[float]]) -> np.ndarray:
    """
    Vectorized even-odd test, same crossing rule as point_in_polygon.

    Args:
        lngs: Array of longitudes
        lats: Array of latitudes, same shape
        ring: Polygon ring

    Returns:
        Boolean array shaped like lngs
    """
    lngs = np.asarray(lngs, dtype=np.float64)
    lats = np.asarray(lats, dtype=np.float64)
    inside = np.zeros(lngs.shape, dtype=bool)

    n = len(ring)
    j = n - 1
    for i in range(n):
        xi, yi = float(ring[i][0]), float(ring[i][1])
        xj, yj = float(ring[j][0]), float(ring[j][1])
        straddles = (yi > lats) != (yj > lats)
        x_cross = (xj - xi) * (lats - yi) / (yj - yi + EDGE_EPS) + xi
        inside ^= straddles & (lngs < x_cross)
        j = i
    return inside


def _polygon_parts(geom: BaseGeometry) -> List[Polygon]:
    """Flatten a geometry into its polygonal parts."""
    if geom.is_empty:
        return []
    if isinstance(geom, Polygon):
        return [geom]
    if isinstance(geom, (MultiPolygon, GeometryCollection)):
        parts = []
        for part in geom.geoms:
            parts.extend(_polygon_parts(part))
        return parts
    # Lines and points from touching boundaries carry no area
    return []


def _repair(poly: Polygon) -> BaseGeometry:
    """Make a polygon valid, keeping only its areal parts."""
    parts = _polygon_parts(make_valid(poly))
    if len(parts) == 1:
        return parts[0]
    return MultiPolygon(parts)


def intersect_rings(subject: Sequence[Sequence[float]], clip: Sequence[Sequence[float]]) -> List[Ring]:
    """
    Boolean intersection of two simple rings.

    Args:
        subject: Ring to clip
        clip: Clipping ring

    Returns:
        List of closed exterior rings, one per disjoint piece; empty if no overlap
    """
    subject_poly = Polygon(open_ring(subject))
    clip_poly = Polygon(open_ring(clip))

    # Repair self-touching or crossing rings before clipping
    if not subject_poly.is_valid:
        logger.debug("Subject ring is invalid, repairing")
        subject_poly = _repair(subject_poly)
    if not clip_poly.is_valid:
        logger.debug("Clip ring is invalid, repairing")
        clip_poly = _repair(clip_poly)

    result = subject_poly.intersection(clip_poly)

    rings = []
    for part in _polygon_parts(result):
        if part.area <= 0:
            continue
        rings.append([(x, y) for x, y in part.exterior.coords])
    return rings
