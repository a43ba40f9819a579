"""
Web Mercator tile projector.

Handles:
- Tile pixel <-> geographic coordinate conversion at a zoom level
- Ground resolution (meters per pixel) at a latitude
- Tile cover and terrain zoom selection for a drawn polygon

Pixel methods accept scalars or numpy arrays.
"""
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
from pyproj import Geod

from ..config import ProjectionConfig, ZoomConfig
from .polygon_ops import ring_bounds, open_ring
import logging

logger = logging.getLogger(__name__)

MAX_MERCATOR_LAT = 85.05112878

_GEOD = Geod(ellps="WGS84")


class WebMercatorProjector:
    """Spherical Web Mercator math for one zoom level."""

    def __init__(self, zoom: int):
        """
        Initialize projector.

        Args:
            zoom: Slippy-map zoom level
        """
        self.zoom = zoom
        self.scale = 2 ** zoom

    def global_pixel_to_geo(self, gx, gy, tile_size: int):
        """
        Convert a global pixel position to (lng, lat).

        Args:
            gx: Global pixel x (tile_x * tile_size + px), fractional allowed
            gy: Global pixel y
            tile_size: Tile width in pixels

        Returns:
            Tuple of (lng, lat) in degrees
        """
        world = self.scale * tile_size
        lng = np.asarray(gx, dtype=np.float64) / world * 360.0 - 180.0
        n = math.pi - 2.0 * math.pi * np.asarray(gy, dtype=np.float64) / world
        lat = np.degrees(np.arctan(np.sinh(n)))
        if np.ndim(lng) == 0:
            return float(lng), float(lat)
        return lng, lat

    def pixel_to_geo(self, tile_x: int, tile_y: int, px, py, tile_size: int):
        """
        Convert a pixel position inside a tile to (lng, lat).

        Args:
            tile_x: Tile column
            tile_y: Tile row
            px: Pixel x inside the tile (0..tile_size), use +0.5 for centers
            py: Pixel y inside the tile
            tile_size: Tile width in pixels

        Returns:
            Tuple of (lng, lat) in degrees
        """
        return self.global_pixel_to_geo(
            tile_x * tile_size + np.asarray(px, dtype=np.float64),
            tile_y * tile_size + np.asarray(py, dtype=np.float64),
            tile_size
        )

    def geo_to_pixel(self, lng, lat, tile_size: int):
        """
        Convert (lng, lat) to a fractional global pixel position.

        Args:
            lng: Longitude in degrees
            lat: Latitude in degrees, clamped to the Mercator limit
            tile_size: Tile width in pixels

        Returns:
            Tuple of (gx, gy)
        """
        world = self.scale * tile_size
        phi = np.radians(np.clip(np.asarray(lat, dtype=np.float64), -MAX_MERCATOR_LAT, MAX_MERCATOR_LAT))
        gx = (np.asarray(lng, dtype=np.float64) + 180.0) / 360.0 * world
        gy = (1.0 - np.log(np.tan(math.pi / 4 + phi / 2)) / math.pi) / 2.0 * world
        if np.ndim(gx) == 0:
            return float(gx), float(gy)
        return gx, gy

    def geo_to_tile_pixel(
        self,
        lng: float,
        lat: float,
        tile_x: int,
        tile_y: int,
        tile_size: int
    ) -> Optional[Tuple[float, float]]:
        """
        Convert (lng, lat) to a pixel position inside one tile.

        Returns:
            (px, py) inside the tile, or None if the point falls outside it
        """
        gx, gy = self.geo_to_pixel(lng, lat, tile_size)
        px = gx - tile_x * tile_size
        py = gy - tile_y * tile_size
        if 0 <= px < tile_size and 0 <= py < tile_size:
            return px, py
        return None

    def ground_resolution(self, lat, tile_size: int):
        """
        Horizontal ground resolution at a latitude.

        Args:
            lat: Latitude in degrees
            tile_size: Tile width in pixels

        Returns:
            Meters per pixel
        """
        res = (np.cos(np.radians(lat)) * ProjectionConfig.EARTH_CIRCUMFERENCE_M
               / (self.scale * tile_size))
        if np.ndim(res) == 0:
            return float(res)
        return res


def lnglat_to_tile(lng: float, lat: float, zoom: int) -> Tuple[int, int]:
    """
    Tile index containing a point.

    Args:
        lng: Longitude in degrees
        lat: Latitude in degrees
        zoom: Zoom level

    Returns:
        Tuple of (tile_x, tile_y)
    """
    gx, gy = WebMercatorProjector(zoom).geo_to_pixel(lng, lat, 1)
    limit = 2 ** zoom - 1
    return min(max(int(math.floor(gx)), 0), limit), min(max(int(math.floor(gy)), 0), limit)


def tiles_covering_polygon(ring: Sequence[Sequence[float]], zoom: int) -> List[Tuple[int, int]]:
    """
    Tile indices intersecting the bounding box of a polygon.

    Args:
        ring: Polygon ring of (lng, lat)
        zoom: Zoom level

    Returns:
        List of (tile_x, tile_y), row-major from the north-west
    """
    min_lng, min_lat, max_lng, max_lat = ring_bounds(ring)
    min_x, min_y = lnglat_to_tile(min_lng, max_lat, zoom)
    max_x, max_y = lnglat_to_tile(max_lng, min_lat, zoom)

    tiles = [
        (x, y)
        for y in range(min_y, max_y + 1)
        for x in range(min_x, max_x + 1)
    ]
    logger.debug(f"{len(tiles)} tiles cover polygon at zoom {zoom}")
    return tiles


def geodesic_area_m2(ring: Sequence[Sequence[float]]) -> float:
    """Absolute geodesic area of a ring on the WGS84 ellipsoid."""
    pts = open_ring(ring)
    if len(pts) < 3:
        return 0.0
    lngs = [p[0] for p in pts]
    lats = [p[1] for p in pts]
    area, _ = _GEOD.polygon_area_perimeter(lngs, lats)
    return abs(area)


def optimal_terrain_zoom(ring: Sequence[Sequence[float]]) -> int:
    """
    Pick a terrain tile zoom level that keeps the pixel count reasonable.

    Args:
        ring: Polygon ring of (lng, lat)

    Returns:
        Zoom level between 12 and 15
    """
    if len(open_ring(ring)) < 3:
        return ZoomConfig.DEFAULT_ZOOM

    area = geodesic_area_m2(ring)

    if area < ZoomConfig.ZOOM_15_MAX_AREA_M2:
        zoom = 15
    elif area < ZoomConfig.ZOOM_14_MAX_AREA_M2:
        zoom = 14
    elif area < ZoomConfig.ZOOM_13_MAX_AREA_M2:
        zoom = 13
    else:
        zoom = ZoomConfig.COARSEST_ZOOM

    logger.info(f"Polygon area {area:.0f} m² -> terrain zoom {zoom}")
    return zoom
