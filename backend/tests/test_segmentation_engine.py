"""
Tests for the planar segmentation engine.
"""
import multiprocessing

import numpy as np
import pytest

from facet_planner.core.segmentation_engine import (
    LocalFrame,
    auto_lambdas,
    fit_planes,
    gradient_threshold,
    iso_bearing,
    label_facets,
    resolve_lambdas,
    run_segmentation_worker,
    segment_raster,
    trace_seams,
    tv_smooth,
)

META = {'lon0': 8.55, 'lat0': 46.5, 'd_lon': 0.000172, 'd_lat': 0.000118}


def plane_raster(a, b, c, shape=(20, 20)):
    """Exact plane z = a*X + b*Y + c sampled at cell centers."""
    frame = LocalFrame.from_meta(META, shape[0])
    xs, ys = frame.cell_centers(shape[1])
    return a * xs + b * ys + c


def test_local_frame_round_trip():
    """Cell edges map back onto the geographic grid."""
    frame = LocalFrame.from_meta(META, 20)
    dx, dy = frame.pixel_size_m
    assert 10.0 < dx < 15.0 and 10.0 < dy < 15.0

    lon, lat = frame.to_geo(3 * dx, 7 * dy)
    assert lon == pytest.approx(META['lon0'] + 3 * META['d_lon'])
    assert lat == pytest.approx(META['lat0'] + 7 * META['d_lat'])

    # Row 0 is the northern edge
    assert frame.transform * (0, 0) == pytest.approx((0.0, 20 * dy))


def test_tv_smooth_keeps_constants_and_nan():
    """Constant regions are fixed points and NaN cells pass through."""
    z = np.full((12, 12), 250.0)
    z[:, 6] = np.nan
    u = tv_smooth(z, lam=5.0)
    assert np.all(np.isnan(u[:, 6]))
    assert np.allclose(u[np.isfinite(z)], 250.0)


def test_tv_smooth_reduces_noise():
    """Smoothing pulls a noisy flat surface towards its mean."""
    rng = np.random.default_rng(3)
    z = 100.0 + rng.normal(0.0, 0.5, size=(32, 32))
    u = tv_smooth(z, lam=1.0)
    assert np.std(u) < 0.8 * np.std(z)
    assert np.mean(u) == pytest.approx(np.mean(z), abs=0.05)


def test_gradient_threshold_floor():
    """Flat rasters use the 5 cm floor."""
    assert gradient_threshold(np.zeros((5, 5))) == pytest.approx(0.05)
    assert gradient_threshold(np.full((5, 5), np.nan)) == pytest.approx(0.05)


def test_gradient_threshold_scales_with_slope():
    """Three times the median forward-difference gradient."""
    u = np.tile(np.arange(10.0) * 2.0, (10, 1))
    assert gradient_threshold(u) == pytest.approx(6.0)


def test_label_facets_splits_at_steps_and_gaps():
    """Height steps and NaN gaps separate facets; NaN cells get label 0."""
    u = np.zeros((6, 9))
    u[:, 3] = np.nan
    u[:, 6:] = 100.0

    labels, count = label_facets(u, eps=0.05)
    assert count == 3
    assert labels.dtype == np.int32
    assert np.all(labels[:, 3] == 0)
    assert np.all(labels[:, :3] == 1)
    assert np.all(labels[:, 4:6] == 2)
    assert np.all(labels[:, 6:] == 3)


def test_label_facets_all_nan():
    """A raster with no finite cells has no facets."""
    labels, count = label_facets(np.full((4, 4), np.nan), eps=1.0)
    assert count == 0
    assert not labels.any()


def test_fit_planes_recovers_gradient():
    """An exact plane is recovered by the least-squares fit."""
    u = plane_raster(-0.3, 0.1, 500.0)
    labels = np.ones(u.shape, dtype=np.int32)
    frame = LocalFrame.from_meta(META, u.shape[0])

    planes = fit_planes(labels, u, frame)
    assert len(planes) == 1
    plane = planes[0]
    assert plane.a == pytest.approx(-0.3)
    assert plane.b == pytest.approx(0.1)
    assert plane.c == pytest.approx(500.0)
    assert plane.pixel_count == 400


def test_fit_planes_skips_small_and_collinear_facets():
    """Facets under three pixels or on one line cannot define a plane."""
    u = plane_raster(0.2, 0.2, 10.0, shape=(6, 6))
    labels = np.zeros(u.shape, dtype=np.int32)
    labels[0, :2] = 1
    labels[3, :] = 2
    labels[5, :] = 3
    labels[4, :] = 3
    planes = fit_planes(labels, u, LocalFrame.from_meta(META, 6))
    assert [p.id for p in planes] == [3]


def test_iso_bearing_points_along_contour_with_downhill_on_the_right():
    """iso + 90 is the downhill direction."""
    # Elevation falls to the east: contour runs north, downhill is east
    assert iso_bearing(-0.5, 0.0) == pytest.approx(0.0)
    # Elevation falls to the north: contour runs west, downhill is north
    assert iso_bearing(0.0, -0.5) == pytest.approx(270.0)
    assert (iso_bearing(0.0, -0.5) + 90.0) % 360.0 == pytest.approx(0.0)


def test_trace_seams_outlines_block():
    """A labelled block is traced as one ring on its cell edges."""
    u = plane_raster(0.0, 0.0, 42.0)
    labels = np.zeros(u.shape, dtype=np.int32)
    labels[5:15, 4:12] = 1
    frame = LocalFrame.from_meta(META, u.shape[0])
    planes = fit_planes(labels, u + plane_raster(0.01, 0.02, 0.0), frame)

    seams = trace_seams(labels, planes, frame)
    assert len(seams) == 1
    seam = seams[0]
    assert seam.plane_id == 1
    assert seam.vertices[0] == seam.vertices[-1]

    dx, dy = frame.pixel_size_m
    xs = [v[0] for v in seam.vertices]
    ys = [v[1] for v in seam.vertices]
    assert min(xs) == pytest.approx(4 * dx)
    assert max(xs) == pytest.approx(12 * dx)
    assert min(ys) == pytest.approx((20 - 15) * dy)
    assert max(ys) == pytest.approx((20 - 5) * dy)

    plane = planes[0]
    for x, y, z in seam.vertices:
        assert z == pytest.approx(plane.a * x + plane.b * y + plane.c)


def test_auto_lambdas():
    """Four candidates scaled from the noise estimate."""
    rng = np.random.default_rng(0)
    z = rng.normal(100.0, 2.0, size=(16, 16))
    lams = auto_lambdas(z, pixel_m=10.0)
    assert len(lams) == 4
    assert lams[1] == pytest.approx(2 * lams[0])
    assert lams[3] == pytest.approx(8 * lams[0])
    assert lams[2] > 0


def test_resolve_lambdas_variants():
    """Numbers, lists and 'auto' all become candidate lists."""
    z = np.arange(25.0).reshape(5, 5)
    assert resolve_lambdas(2.0, z, 10.0) == [2.0]
    assert resolve_lambdas([1, 3], z, 10.0) == [1.0, 3.0]
    assert len(resolve_lambdas('auto', z, 10.0)) == 4
    with pytest.raises(ValueError):
        resolve_lambdas('manual', z, 10.0)
    with pytest.raises(ValueError):
        resolve_lambdas('auto', np.full((3, 3), np.nan), 10.0)


def test_segment_raster_single_plane():
    """A tilted plane with a light touch of smoothing is one facet."""
    z = plane_raster(-0.3, 0.1, 800.0)
    response = segment_raster(z, META, lam=1e-3)

    assert response.lam == pytest.approx(1e-3)
    assert len(response.planes) == 1
    plane = response.planes[0]
    assert plane.a == pytest.approx(-0.3, abs=1e-2)
    assert plane.b == pytest.approx(0.1, abs=1e-2)
    assert plane.iso_bearing_deg == pytest.approx(18.43, abs=1.0)
    assert len(response.seams) == 1
    assert response.labels.shape == z.shape


def test_segment_raster_skips_unusable_candidates():
    """An all-NaN raster has no usable candidate."""
    with pytest.raises(ValueError):
        segment_raster(np.full((8, 8), np.nan), META, lam=[1.0, 2.0])


def test_segment_raster_without_labels():
    """Labels are only attached on request."""
    response = segment_raster(plane_raster(0.1, 0.0, 5.0, shape=(8, 8)), META, lam=0.01, return_labels=False)
    assert response.labels is None


def test_worker_protocol_round_trip():
    """The process entry point answers one request with one result."""
    z = plane_raster(0.2, -0.1, 300.0, shape=(10, 10)).astype(np.float32)
    parent, child = multiprocessing.Pipe()
    parent.send({'width': 10, 'height': 10, 'meta': META, 'lam': 0.01, 'return_labels': True})
    parent.send_bytes(z.tobytes())

    run_segmentation_worker(child)
    message = parent.recv()

    assert 'result' in message
    assert len(message['result'].planes) == 1


def test_worker_protocol_reports_errors():
    """Failures inside the worker come back as an error message."""
    parent, child = multiprocessing.Pipe()
    parent.send({'width': 4, 'height': 4, 'meta': {}, 'lam': 1.0})
    parent.send_bytes(np.zeros(16, dtype=np.float32).tobytes())

    run_segmentation_worker(child)
    message = parent.recv()

    assert message['error'].startswith('KeyError')
