"""
Tests for the DEM Tile Stitcher.
"""
import numpy as np
import pytest

from facet_planner.core.dem_stitcher import DEMStitcher
from facet_planner.core.errors import DegenerateGeometryError, InvalidTileSetError
from facet_planner.core.polygon_ops import points_in_polygon
from facet_planner.core.tile_projector import WebMercatorProjector
from facet_planner.models.terrain import DEM, ElevationTile


def raster_index(raster, tile, px, py):
    """Raster (row, col) of a tile pixel."""
    min_px, min_py, _, _ = raster.pixel_bounds
    return tile.y * tile.height + py - min_py, tile.x * tile.width + px - min_px


def test_valid_interior_keeps_decoded_values(make_tile, tile_ring, east_slope):
    """With no invalid source pixels every interior cell is its decoded value."""
    tile = make_tile(east_slope)
    raster = DEMStitcher.stitch(tile_ring(tile), [tile])

    assert raster.elevations.dtype == np.float32
    assert raster.zoom == tile.z

    interior = 0
    for py in range(tile.height):
        for px in range(tile.width):
            row, col = raster_index(raster, tile, px, py)
            if 0 <= row < raster.height and 0 <= col < raster.width and np.isfinite(raster.elevations[row, col]):
                assert raster.elevations[row, col] == pytest.approx(east_slope[py, px], abs=1e-3)
                interior += 1
    assert interior > 500


def test_polygon_covering_whole_tile(make_tile, tile_ring, flat):
    """A tile entirely inside the polygon is copied cell for cell."""
    tile = make_tile(flat, fmt=DEM)
    raster = DEMStitcher.stitch(tile_ring(tile, -0.2, 1.2), [tile])

    row, col = raster_index(raster, tile, 0, 0)
    block = raster.elevations[row:row + tile.height, col:col + tile.width]
    assert block.shape == (tile.height, tile.width)
    assert np.all(block == 500.0)
    assert raster.fill_value == pytest.approx(500.0)


def test_exterior_cells_are_nan(make_tile, east_slope):
    """Cells outside a triangular polygon are NaN, cells inside are finite."""
    tile = make_tile(east_slope)
    proj = WebMercatorProjector(tile.z)
    a = proj.pixel_to_geo(tile.x, tile.y, 8, 56, tile.width)
    b = proj.pixel_to_geo(tile.x, tile.y, 56, 56, tile.width)
    c = proj.pixel_to_geo(tile.x, tile.y, 8, 8, tile.width)
    ring = [a, b, c]
    raster = DEMStitcher.stitch(ring, [tile])

    lngs, lats = raster.cell_centers()
    inside = points_in_polygon(lngs, lats, ring)
    finite = np.isfinite(raster.elevations)
    # Allow disagreement only on cells whose centre sits on the boundary
    assert np.mean(inside == finite) > 0.97
    assert finite.sum() > 0 and (~finite).sum() > 0


def test_invalid_interior_cells_get_region_mean(make_tile, tile_ring, columns):
    """NaN source pixels inside the polygon take the mean of the other valid interior cells."""
    values = 100.0 + columns
    values[32, 32] = np.nan
    values[33, 30] = np.nan
    tile = make_tile(values, fmt=DEM)
    raster = DEMStitcher.stitch(tile_ring(tile), [tile])

    holes = [raster_index(raster, tile, 32, 32), raster_index(raster, tile, 30, 33)]
    mask = np.isfinite(raster.elevations)
    for row, col in holes:
        mask[row, col] = False
    expected = float(raster.elevations[mask].astype(np.float64).mean())

    assert raster.fill_value == pytest.approx(expected, rel=1e-6)
    assert raster.fill_value > 100.0
    for row, col in holes:
        assert raster.elevations[row, col] == pytest.approx(raster.fill_value, rel=1e-6)


def test_all_invalid_interior_fills_zero(make_tile, tile_ring):
    """No valid samples at all gives a fill value of 0."""
    tile = make_tile(np.full((64, 64), np.nan), fmt=DEM)
    raster = DEMStitcher.stitch(tile_ring(tile), [tile])
    assert raster.fill_value == 0.0
    finite = raster.elevations[np.isfinite(raster.elevations)]
    assert finite.size > 0 and np.all(finite == 0.0)


def test_adjacent_tiles_stitch_seamlessly(make_tile, tile_ring, east_slope):
    """A polygon across a tile seam gets one continuous raster."""
    west = make_tile(east_slope)
    east = make_tile(east_slope - 128.0, dx=1)
    ring_west = tile_ring(west, 0.5, 0.75)
    ring_east = tile_ring(east, 0.25, 0.5)
    ring = [ring_west[0], ring_east[1], ring_east[2], ring_west[3]]

    raster = DEMStitcher.stitch(ring, [west, east])
    assert raster.width >= 47

    middle = raster.elevations[raster.height // 2]
    steps = np.diff(middle[np.isfinite(middle)])
    assert np.allclose(steps, -2.0, atol=1e-3)


def test_georeferencing(make_tile, tile_ring, east_slope):
    """Origin is the south-west corner and steps are positive."""
    tile = make_tile(east_slope)
    ring = tile_ring(tile, 0.23, 0.77)
    raster = DEMStitcher.stitch(ring, [tile])

    lngs = [p[0] for p in ring]
    lats = [p[1] for p in ring]
    assert raster.d_lon > 0 and raster.d_lat > 0
    assert raster.lon0 <= min(lngs) < raster.lon0 + raster.d_lon
    assert raster.lat0 <= min(lats) < raster.lat0 + raster.d_lat

    north = raster.lat0 + raster.height * raster.d_lat
    assert north == pytest.approx(max(lats), abs=2 * raster.d_lat)
    assert raster.geo_transform * (0, 0) == pytest.approx((raster.lon0, north))
    assert raster.meta()['lon0'] == raster.lon0


def test_empty_tile_set_rejected(tile_ring, make_tile, flat):
    """No tiles is an invalid tile set."""
    ring = tile_ring(make_tile(flat))
    with pytest.raises(InvalidTileSetError):
        DEMStitcher.stitch(ring, [])


def test_mixed_tiles_rejected(make_tile, tile_ring, flat):
    """Tiles must share zoom and size."""
    tile = make_tile(flat)
    with pytest.raises(InvalidTileSetError):
        DEMStitcher.stitch(tile_ring(tile), [tile, make_tile(flat, dx=1, z=14)])
    with pytest.raises(InvalidTileSetError):
        DEMStitcher.stitch(tile_ring(tile), [tile, make_tile(flat[:32, :32], dx=1)])


def test_degenerate_polygon_rejected(make_tile, flat):
    """A two-vertex polygon cannot be stitched."""
    with pytest.raises(DegenerateGeometryError):
        DEMStitcher.stitch([(8.5, 46.5), (8.6, 46.6)], [make_tile(flat)])


def test_non_square_tile_rejected(tile_index, make_tile, tile_ring, flat):
    """A 64x32 tile cannot be placed on the square tile grid."""
    tile = ElevationTile(
        x=tile_index[0], y=tile_index[1], z=15, width=64, height=32,
        data=np.zeros(64 * 32, dtype=np.float32), format=DEM
    )
    with pytest.raises(InvalidTileSetError, match="square"):
        DEMStitcher.stitch(tile_ring(make_tile(flat)), [tile])


@pytest.mark.parametrize("fmt, size", [(DEM, 100), ('terrain-rgb', 64 * 64 * 2)])
def test_short_payload_rejected(tile_index, make_tile, tile_ring, flat, fmt, size):
    """A payload shorter than width x height x channels is an invalid tile."""
    tile = ElevationTile(
        x=tile_index[0], y=tile_index[1], z=15, width=64, height=64,
        data=np.zeros(size), format=fmt
    )
    with pytest.raises(InvalidTileSetError, match=str(size)):
        DEMStitcher.stitch(tile_ring(make_tile(flat)), [tile])
