"""
Elevation decoding for terrain tiles.

Supports Terrain-RGB packed tiles (elevation = -10000 + (R*65536 + G*256 + B) * 0.1,
3 or 4 interleaved channels, alpha ignored) and single-band float DEM tiles.
"""
import math
from typing import List, Optional, Sequence

import numpy as np

from ..config import TerrainRGBConfig
from ..models.terrain import DEM, ElevationTile
from .errors import InvalidTileSetError
from .tile_projector import WebMercatorProjector


class ElevationDecoder:
    """Read elevations in meters from ElevationTile payloads."""

    @staticmethod
    def decode(tile: ElevationTile, px: int, py: int) -> float:
        """
        Elevation of a single pixel.

        Args:
            tile: Source tile
            px: Pixel column, must be inside the tile
            py: Pixel row, must be inside the tile

        Returns:
            Elevation in meters (NaN for invalid DEM cells)
        """
        idx = py * tile.width + px
        if tile.format == DEM:
            return float(tile.data[idx])

        base = idx * tile.channels
        r = int(tile.data[base])
        g = int(tile.data[base + 1])
        b = int(tile.data[base + 2])
        return TerrainRGBConfig.BASE_M + (r * 65536 + g * 256 + b) * TerrainRGBConfig.SCALE_M

    @staticmethod
    def check_tile(tile: ElevationTile) -> None:
        """
        Reject tiles whose shape or payload cannot be decoded.

        Raises:
            InvalidTileSetError: Tile is not square or its payload length
                does not match width x height x channels
        """
        if tile.width != tile.height:
            raise InvalidTileSetError(
                f"Tile {tile.key} is {tile.width}x{tile.height}, tiles must be square"
            )
        if tile.data.size not in tile.expected_sizes:
            raise InvalidTileSetError(
                f"Tile {tile.key} carries {tile.data.size} values, expected one of {tile.expected_sizes}"
            )

    @staticmethod
    def decode_array(tile: ElevationTile) -> np.ndarray:
        """
        Decode a whole tile.

        Args:
            tile: Source tile

        Returns:
            Float64 array shaped (height, width)
        """
        if tile.format == DEM:
            return tile.data.astype(np.float64).reshape(tile.height, tile.width)

        pixels = tile.data.reshape(tile.height, tile.width, tile.channels).astype(np.float64)
        packed = pixels[..., 0] * 65536 + pixels[..., 1] * 256 + pixels[..., 2]
        return TerrainRGBConfig.BASE_M + packed * TerrainRGBConfig.SCALE_M

    @staticmethod
    def neighbourhood(tile: ElevationTile, px: int, py: int) -> Optional[List[float]]:
        """
        3x3 Horn kernel window centred on (px, py).

        Returns:
            Nine elevations Z1..Z9 in row-major order (north row first),
            or None when the window would leave the tile
        """
        if px < 1 or py < 1 or px >= tile.width - 1 or py >= tile.height - 1:
            return None

        return [
            ElevationDecoder.decode(tile, px + dx, py + dy)
            for dy in (-1, 0, 1)
            for dx in (-1, 0, 1)
        ]


def query_elevation_at_point(lng: float, lat: float, tiles: Sequence[ElevationTile]) -> float:
    """
    Elevation under a point from the first tile that covers it.

    Args:
        lng: Longitude
        lat: Latitude
        tiles: Candidate tiles

    Returns:
        Elevation in meters, NaN if no tile has a finite value there
    """
    for tile in tiles:
        proj = WebMercatorProjector(tile.z)
        pixel = proj.geo_to_tile_pixel(lng, lat, tile.x, tile.y, tile.width)
        if pixel is None:
            continue
        px, py = int(math.floor(pixel[0])), int(math.floor(pixel[1]))
        if py >= tile.height:
            continue
        elevation = ElevationDecoder.decode(tile, px, py)
        if math.isfinite(elevation):
            return elevation
    return float('nan')


def query_max_elevation_along_line(
    start: Sequence[float],
    end: Sequence[float],
    tiles: Sequence[ElevationTile],
    sample_count: int = 10
) -> float:
    """
    Highest elevation at evenly spaced samples along a segment.

    Args:
        start: (lng, lat) of the first endpoint
        end: (lng, lat) of the second endpoint
        tiles: Candidate tiles
        sample_count: Number of intervals (sample_count + 1 samples)

    Returns:
        Maximum elevation in meters, NaN if no sample is finite

    Raises:
        ValueError: sample_count is below 1
    """
    if sample_count < 1:
        raise ValueError(f"sample_count must be >= 1, got {sample_count}")

    max_elevation = float('-inf')
    for i in range(sample_count + 1):
        t = i / sample_count
        lng = start[0] + t * (end[0] - start[0])
        lat = start[1] + t * (end[1] - start[1])
        elevation = query_elevation_at_point(lng, lat, tiles)
        if math.isfinite(elevation):
            max_elevation = max(max_elevation, elevation)

    return max_elevation if math.isfinite(max_elevation) else float('nan')
