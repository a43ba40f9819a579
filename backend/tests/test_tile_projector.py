"""
Tests for the Web Mercator tile projector.
"""
import numpy as np
import pytest

from facet_planner.core.tile_projector import (
    WebMercatorProjector,
    lnglat_to_tile,
    optimal_terrain_zoom,
    tiles_covering_polygon,
)


def test_pixel_to_geo_world_corners():
    """The zoom-0 tile spans the whole Mercator world."""
    proj = WebMercatorProjector(0)
    lng, lat = proj.pixel_to_geo(0, 0, 0, 0, 256)
    assert lng == pytest.approx(-180.0)
    assert lat == pytest.approx(85.0511287798, abs=1e-6)

    lng, lat = proj.pixel_to_geo(0, 0, 128, 128, 256)
    assert lng == pytest.approx(0.0)
    assert lat == pytest.approx(0.0, abs=1e-9)


def test_geo_to_pixel_inverts_pixel_to_geo():
    """Forward and inverse projection agree."""
    proj = WebMercatorProjector(15)
    gx, gy = proj.geo_to_pixel(8.55, 46.5, 256)
    lng, lat = proj.global_pixel_to_geo(gx, gy, 256)
    assert lng == pytest.approx(8.55, abs=1e-9)
    assert lat == pytest.approx(46.5, abs=1e-9)


def test_array_inputs_give_array_outputs():
    """Vectorized calls keep the input shape."""
    proj = WebMercatorProjector(10)
    px = np.array([[0.5, 1.5], [2.5, 3.5]])
    lngs, lats = proj.pixel_to_geo(3, 4, px, px, 256)
    assert lngs.shape == (2, 2)
    assert lats.shape == (2, 2)
    assert np.all(np.diff(lngs, axis=1) > 0)


def test_ground_resolution():
    """Equator resolution at zoom 0 and cos(latitude) scaling."""
    proj = WebMercatorProjector(0)
    equator = proj.ground_resolution(0.0, 256)
    assert equator == pytest.approx(156543.0339, rel=1e-6)
    assert proj.ground_resolution(60.0, 256) == pytest.approx(equator / 2, rel=1e-9)
    assert WebMercatorProjector(1).ground_resolution(0.0, 256) == pytest.approx(equator / 2)


def test_geo_to_tile_pixel_outside_tile():
    """A point outside the tile gives None."""
    proj = WebMercatorProjector(1)
    assert proj.geo_to_tile_pixel(90.0, 45.0, 0, 0, 256) is None
    px, py = proj.geo_to_tile_pixel(-90.0, 45.0, 0, 0, 256)
    assert 0 <= px < 256 and 0 <= py < 256


def test_lnglat_to_tile():
    """Quadrants at zoom 1."""
    assert lnglat_to_tile(10.0, 10.0, 1) == (1, 0)
    assert lnglat_to_tile(-10.0, -10.0, 1) == (0, 1)
    assert lnglat_to_tile(180.0, -89.0, 1) == (1, 1)


def test_tiles_covering_polygon():
    """A polygon straddling a tile corner needs four tiles."""
    ring = [(-1.0, -1.0), (1.0, -1.0), (1.0, 1.0), (-1.0, 1.0)]
    tiles = tiles_covering_polygon(ring, 1)
    assert sorted(tiles) == [(0, 0), (0, 1), (1, 0), (1, 1)]


def test_optimal_terrain_zoom():
    """Zoom drops as the polygon area grows."""
    small = [(8.5, 46.5), (8.501, 46.5), (8.501, 46.501), (8.5, 46.501)]
    medium = [(8.5, 46.5), (8.51, 46.5), (8.51, 46.51), (8.5, 46.51)]
    huge = [(8.0, 46.0), (9.0, 46.0), (9.0, 47.0), (8.0, 47.0)]

    assert optimal_terrain_zoom(small) == 15
    assert optimal_terrain_zoom(medium) == 14
    assert optimal_terrain_zoom(huge) == 12
    assert optimal_terrain_zoom([(0.0, 0.0), (1.0, 1.0)]) == 15
