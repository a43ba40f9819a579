"""
Shared fixtures: synthetic elevation tiles near a fixed alpine location.
"""
import numpy as np
import pytest

from facet_planner.core.tile_projector import WebMercatorProjector, lnglat_to_tile
from facet_planner.models.terrain import DEM, TERRAIN_RGB, ElevationTile

TILE_SIZE = 64
ZOOM = 15
CENTER = (8.55, 46.5)


def encode_terrain_rgb(elevations: np.ndarray, channels: int = 4) -> np.ndarray:
    """Pack meters into interleaved Terrain-RGB bytes."""
    packed = np.round((np.asarray(elevations, dtype=np.float64) + 10000.0) / 0.1).astype(np.int64)
    r = packed // 65536
    g = (packed // 256) % 256
    b = packed % 256
    bands = [r, g, b] if channels == 3 else [r, g, b, np.full_like(r, 255)]
    return np.stack(bands, axis=-1).astype(np.uint8).reshape(-1)


def tile_bounds(tile: ElevationTile):
    """(west, south, east, north) of a tile."""
    proj = WebMercatorProjector(tile.z)
    west, north = proj.pixel_to_geo(tile.x, tile.y, 0, 0, tile.width)
    east, south = proj.pixel_to_geo(tile.x, tile.y, tile.width, tile.height, tile.width)
    return west, south, east, north


@pytest.fixture
def tile_index():
    """Tile (x, y) containing CENTER at ZOOM."""
    return lnglat_to_tile(CENTER[0], CENTER[1], ZOOM)


@pytest.fixture
def make_tile(tile_index):
    """Factory building an ElevationTile from a (size, size) elevation grid."""
    def _make(elevations, fmt=TERRAIN_RGB, dx=0, dy=0, z=ZOOM, channels=4):
        elevations = np.asarray(elevations, dtype=np.float64)
        size = elevations.shape[0]
        data = elevations.astype(np.float32) if fmt == DEM else encode_terrain_rgb(elevations, channels)
        return ElevationTile(
            x=tile_index[0] + dx,
            y=tile_index[1] + dy,
            z=z,
            width=size,
            height=size,
            data=data,
            format=fmt
        )
    return _make


@pytest.fixture
def tile_ring():
    """Factory for a rectangular ring covering a fraction of a tile."""
    def _ring(tile, lo=0.25, hi=0.75, closed=False):
        west, south, east, north = tile_bounds(tile)
        x0, x1 = west + (east - west) * lo, west + (east - west) * hi
        y0, y1 = south + (north - south) * lo, south + (north - south) * hi
        ring = [(x0, y0), (x1, y0), (x1, y1), (x0, y1)]
        return ring + [ring[0]] if closed else ring
    return _ring


@pytest.fixture
def columns():
    """Column index grid of one tile."""
    return np.tile(np.arange(TILE_SIZE, dtype=np.float64), (TILE_SIZE, 1))


@pytest.fixture
def east_slope(columns):
    """Uniform slope, elevation falling 2 m per pixel eastward."""
    return 1000.0 - 2.0 * columns


@pytest.fixture
def flat():
    return np.full((TILE_SIZE, TILE_SIZE), 500.0)
