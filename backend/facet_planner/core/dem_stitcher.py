"""
DEM Tile Stitcher.

Handles:
- Merging same-zoom elevation tiles into one dense raster over a polygon's bounding box
- Exterior masking (NaN outside the polygon)
- Mean fill of invalid interior cells, computed before any cell is written
"""
import math
from typing import Iterator, Sequence, Tuple

import numpy as np
import logging

from ..models.terrain import ElevationTile, StitchedRaster
from .elevation_decoder import ElevationDecoder
from .errors import InvalidTileSetError
from .polygon_ops import points_in_polygon, ring_bounds, validate_ring
from .tile_projector import WebMercatorProjector

logger = logging.getLogger(__name__)

PixelBounds = Tuple[int, int, int, int]


class DEMStitcher:
    """Build a StitchedRaster from a polygon and its covering tiles."""

    @staticmethod
    def check_tiles(tiles: Sequence[ElevationTile]) -> Tuple[int, int, int]:
        """
        Validate that tiles can be used together.

        Returns:
            Tuple of (zoom, width, height) shared by every tile

        Raises:
            InvalidTileSetError: No tiles, a malformed tile, or tiles disagree on zoom/size
        """
        if not tiles:
            raise InvalidTileSetError("No elevation tiles supplied")

        for tile in tiles:
            ElevationDecoder.check_tile(tile)

        first = tiles[0]
        for tile in tiles[1:]:
            if (tile.z, tile.width, tile.height) != (first.z, first.width, first.height):
                raise InvalidTileSetError(
                    f"Tile {tile.key} ({tile.width}x{tile.height}) does not match "
                    f"tile {first.key} ({first.width}x{first.height})"
                )
        return first.z, first.width, first.height

    @staticmethod
    def pixel_bounds(ring: Sequence[Sequence[float]], zoom: int, tile_size: int) -> PixelBounds:
        """
        Global pixel bounds of a polygon's bounding box.

        Returns:
            Tuple of (min_px, min_py, max_px, max_py), max exclusive
        """
        min_lng, min_lat, max_lng, max_lat = ring_bounds(ring)
        proj = WebMercatorProjector(zoom)
        x0, y0 = proj.geo_to_pixel(min_lng, max_lat, tile_size)
        x1, y1 = proj.geo_to_pixel(max_lng, min_lat, tile_size)

        min_px, min_py = int(math.floor(x0)), int(math.floor(y0))
        max_px, max_py = int(math.ceil(x1)), int(math.ceil(y1))
        # A sliver polygon still covers the pixel it sits in
        return min_px, min_py, max(max_px, min_px + 1), max(max_py, min_py + 1)

    @staticmethod
    def stitch(polygon: Sequence[Sequence[float]], tiles: Sequence[ElevationTile]) -> StitchedRaster:
        """
        Stitch tiles into a dense raster masked by the polygon.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Same-zoom, same-size elevation tiles

        Returns:
            StitchedRaster with NaN outside the polygon and the interior
            mean in place of invalid interior samples

        Raises:
            InvalidTileSetError: No tiles, or tiles disagree on zoom/size
            DegenerateGeometryError: Fewer than 3 distinct polygon vertices
        """
        zoom, tile_size, _ = DEMStitcher.check_tiles(tiles)
        ring = validate_ring(polygon)

        bounds = DEMStitcher.pixel_bounds(ring, zoom, tile_size)
        min_px, min_py, max_px, max_py = bounds
        width, height = max_px - min_px, max_py - min_py
        logger.info(f"Stitching {len(tiles)} tiles at zoom {zoom} into {width}x{height} raster")

        proj = WebMercatorProjector(zoom)

        # Pass 1: interior statistics
        total = 0.0
        count = 0
        for _, _, values, inside in DEMStitcher._interior_windows(tiles, ring, proj, bounds):
            valid = inside & np.isfinite(values)
            total += float(values[valid].sum())
            count += int(valid.sum())

        fill_value = total / count if count else 0.0
        logger.info(f"Interior mean from {count} valid samples: {fill_value:.2f} m")

        # Pass 2: write cells
        elevations = np.full((height, width), np.nan, dtype=np.float32)
        filled = 0
        for rows, cols, values, inside in DEMStitcher._interior_windows(tiles, ring, proj, bounds):
            invalid = inside & ~np.isfinite(values)
            filled += int(invalid.sum())
            out = np.where(inside, np.where(invalid, fill_value, values), np.nan)
            target = elevations[rows, cols]
            # Overlapping tiles must not erase cells an earlier tile wrote
            elevations[rows, cols] = np.where(inside, out, target)

        if filled:
            logger.warning(f"{filled} invalid interior cells filled with {fill_value:.2f} m")

        lon0, lat0 = proj.global_pixel_to_geo(min_px, max_py, tile_size)
        lon1, _ = proj.global_pixel_to_geo(min_px + 1, max_py, tile_size)
        _, lat1 = proj.global_pixel_to_geo(min_px, max_py - 1, tile_size)

        return StitchedRaster(
            elevations=elevations,
            lon0=lon0,
            lat0=lat0,
            d_lon=lon1 - lon0,
            d_lat=lat1 - lat0,
            fill_value=fill_value,
            zoom=zoom,
            pixel_bounds=bounds
        )

    @staticmethod
    def _interior_windows(
        tiles: Sequence[ElevationTile],
        ring: Sequence[Sequence[float]],
        proj: WebMercatorProjector,
        bounds: PixelBounds
    ) -> Iterator[Tuple[slice, slice, np.ndarray, np.ndarray]]:
        """
        Walk the part of every tile that falls inside the global bounds.

        Yields:
            (row slice, column slice) into the output raster, decoded values
            and the polygon membership mask of that window
        """
        min_px, min_py, max_px, max_py = bounds
        for tile in tiles:
            gx0, gy0 = tile.x * tile.width, tile.y * tile.height
            x_lo, x_hi = max(gx0, min_px), min(gx0 + tile.width, max_px)
            y_lo, y_hi = max(gy0, min_py), min(gy0 + tile.height, max_py)
            if x_lo >= x_hi or y_lo >= y_hi:
                logger.debug(f"Tile {tile.key} does not overlap the polygon bounds")
                continue

            values = ElevationDecoder.decode_array(tile)[y_lo - gy0:y_hi - gy0, x_lo - gx0:x_hi - gx0]
            gx, gy = np.meshgrid(np.arange(x_lo, x_hi) + 0.5, np.arange(y_lo, y_hi) + 0.5)
            lngs, lats = proj.global_pixel_to_geo(gx, gy, tile.width)
            inside = points_in_polygon(lngs, lats, ring)

            yield (
                slice(y_lo - min_py, y_hi - min_py),
                slice(x_lo - min_px, x_hi - min_px),
                values,
                inside
            )
