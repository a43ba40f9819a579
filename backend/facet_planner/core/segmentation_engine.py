"""
Planar Segmentation Engine.

Runs inside the isolated segmentation process. Handles:
- Total-variation smoothing of the masked elevation raster
- Facet labelling by 4-connected height continuity
- Least-squares plane fitting per facet in a local metric frame
- Seam polygon tracing from the label raster
- Noise-driven "auto" lambda candidates

Local frame: X east, Y north, meters from the raster's south-west corner,
X scaled by cos(mean latitude). Row 0 of every raster is the northern edge.
"""
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from rasterio.features import shapes
from rasterio.transform import Affine
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
import logging

from ..config import ProjectionConfig, SegmentationConfig
from ..models.terrain import PlaneDescriptor, SeamPolygon, SegmentationResponse

logger = logging.getLogger(__name__)

LambdaSpec = Union[str, float, Sequence[float]]

DEG = math.pi / 180.0

# Scale factor turning a median absolute deviation into a Gaussian sigma
MAD_TO_SIGMA = 1.4826


@dataclass(frozen=True)
class LocalFrame:
    """
    Equirectangular metric frame anchored at a raster's south-west corner.

    Shared by the engine (forward) and the facet reconciler (inverse) so
    seam vertices map back onto the same ground they were traced from.
    """
    lon0: float
    lat0: float
    d_lon: float
    d_lat: float
    height: int

    @classmethod
    def from_meta(cls, meta: Dict, height: int) -> "LocalFrame":
        return cls(
            lon0=float(meta['lon0']),
            lat0=float(meta['lat0']),
            d_lon=float(meta['d_lon']),
            d_lat=float(meta['d_lat']),
            height=int(height)
        )

    @property
    def mean_latitude(self) -> float:
        return self.lat0 + self.height * self.d_lat * 0.5

    @property
    def meters_per_degree_north(self) -> float:
        return ProjectionConfig.WEB_MERCATOR_RADIUS_M * DEG

    @property
    def meters_per_degree_east(self) -> float:
        return self.meters_per_degree_north * math.cos(self.mean_latitude * DEG)

    @property
    def pixel_size_m(self) -> Tuple[float, float]:
        """Cell size (east, north) in meters."""
        return self.meters_per_degree_east * self.d_lon, self.meters_per_degree_north * self.d_lat

    @property
    def transform(self) -> Affine:
        """Affine mapping (col, row) pixel edges to (X, Y) meters."""
        dx, dy = self.pixel_size_m
        return Affine(dx, 0.0, 0.0, 0.0, -dy, self.height * dy)

    def cell_centers(self, width: int) -> Tuple[np.ndarray, np.ndarray]:
        """X and Y of every cell center, each shaped (height, width)."""
        dx, dy = self.pixel_size_m
        xs = (np.arange(width) + 0.5) * dx
        ys = (self.height - np.arange(self.height) - 0.5) * dy
        return np.meshgrid(xs, ys)

    def to_geo(self, x, y) -> Tuple:
        """Inverse projection from (X, Y) meters to (lon, lat)."""
        lon = self.lon0 + np.asarray(x, dtype=np.float64) / self.meters_per_degree_east
        lat = self.lat0 + np.asarray(y, dtype=np.float64) / self.meters_per_degree_north
        if np.ndim(lon) == 0:
            return float(lon), float(lat)
        return lon, lat


def _shift(arr: np.ndarray, axis: int, step: int) -> np.ndarray:
    """Neighbour values along an axis with edge clamping."""
    idx = np.arange(arr.shape[axis]) + step
    idx = np.clip(idx, 0, arr.shape[axis] - 1)
    return np.take(arr, idx, axis=axis)


def _trailing(p: np.ndarray, axis: int) -> np.ndarray:
    """Previous cell along an axis, zero before the first."""
    out = np.zeros_like(p)
    if axis == 1:
        out[:, 1:] = p[:, :-1]
    else:
        out[1:, :] = p[:-1, :]
    return out


def tv_smooth(
    z: np.ndarray,
    lam: float,
    tau: float = SegmentationConfig.TV_TAU,
    max_iter: int = SegmentationConfig.TV_MAX_ITER,
    tol: float = SegmentationConfig.TV_TOL,
    check_every: int = SegmentationConfig.TV_CHECK_EVERY
) -> np.ndarray:
    """
    Primal-dual total-variation smoother.

    Minimizes 0.5*|u - z|^2 + lam*TV(u) with alternating dual ascent on
    the forward-difference gradient and a proximal primal step. Non-finite
    input cells are passed through unchanged and act as zero-gradient
    boundaries for their neighbours.

    Args:
        z: 2-D elevation raster
        lam: Regularization weight (dual ball radius)
        tau: Step size
        max_iter: Iteration cap
        tol: Relative change below which iteration stops
        check_every: Iterations between convergence checks

    Returns:
        Smoothed raster, same shape, float64
    """
    z = np.asarray(z, dtype=np.float64)
    lam = max(float(lam), SegmentationConfig.MIN_LAMBDA)
    valid = np.isfinite(z)

    u = z.copy()
    px = np.zeros_like(z)
    py = np.zeros_like(z)
    prev = u.copy()

    for iteration in range(1, max_iter + 1):
        right = _shift(u, 1, 1)
        down = _shift(u, 0, 1)
        right = np.where(np.isfinite(right), right, u)
        down = np.where(np.isfinite(down), down, u)

        px = np.where(valid, px + tau * (right - u), 0.0)
        py = np.where(valid, py + tau * (down - u), 0.0)
        s = np.maximum(1.0, (np.abs(px) + np.abs(py)) / lam)
        px /= s
        py /= s

        # Backward differences with zero flux entering the first row/column
        div = px - _trailing(px, 1) + py - _trailing(py, 0)
        u = np.where(valid, (u + tau * div + tau * z) / (1.0 + tau), z)

        if iteration % check_every == 0:
            diff = np.sum((u[valid] - prev[valid]) ** 2)
            norm = np.sum(u[valid] ** 2)
            if norm > 0 and math.sqrt(diff / norm) < tol:
                logger.debug(f"TV smoother converged after {iteration} iterations")
                break
            prev = u.copy()

    return u


def gradient_threshold(u: np.ndarray) -> float:
    """
    Edge threshold: three times the median forward-difference gradient,
    floored at 5 cm.
    """
    a = u[:-1, :-1]
    b = u[:-1, 1:]
    c = u[1:, :-1]
    grads = np.hypot(b - a, c - a)
    grads = grads[np.isfinite(grads)]
    if grads.size == 0:
        return SegmentationConfig.GRAD_THRESHOLD_FLOOR
    median = float(np.median(grads))
    return max(median * SegmentationConfig.GRAD_THRESHOLD_FACTOR, SegmentationConfig.GRAD_THRESHOLD_FLOOR)


def label_facets(u: np.ndarray, eps: float) -> Tuple[np.ndarray, int]:
    """
    Group 4-connected finite cells whose heights differ by at most eps.

    Args:
        u: Smoothed raster
        eps: Height continuity threshold

    Returns:
        Tuple of (int32 label raster, facet count); 0 marks non-finite cells,
        facets are numbered 1..K in row-major order of first appearance
    """
    height, width = u.shape
    n = height * width
    index = np.arange(n).reshape(height, width)
    finite = np.isfinite(u)

    with np.errstate(invalid='ignore'):
        horizontal = finite[:, :-1] & finite[:, 1:] & (np.abs(u[:, 1:] - u[:, :-1]) <= eps)
        vertical = finite[:-1, :] & finite[1:, :] & (np.abs(u[1:, :] - u[:-1, :]) <= eps)

    src = np.concatenate([index[:, :-1][horizontal], index[:-1, :][vertical]])
    dst = np.concatenate([index[:, 1:][horizontal], index[1:, :][vertical]])
    graph = coo_matrix((np.ones(src.size, dtype=np.int8), (src, dst)), shape=(n, n))
    _, components = connected_components(graph, directed=False)

    labels = np.zeros(n, dtype=np.int32)
    flat_finite = finite.ravel()
    if not flat_finite.any():
        return labels.reshape(height, width), 0

    roots, first_seen, inverse = np.unique(
        components[flat_finite], return_index=True, return_inverse=True
    )
    order = np.argsort(first_seen)
    rank = np.empty_like(order)
    rank[order] = np.arange(order.size)
    labels[flat_finite] = rank[inverse] + 1

    logger.debug(f"Labelled {roots.size} facets with eps={eps:.3f}")
    return labels.reshape(height, width), int(roots.size)


def fit_planes(labels: np.ndarray, u: np.ndarray, frame: LocalFrame) -> List[PlaneDescriptor]:
    """
    Least-squares plane z = a*X + b*Y + c for every facet.

    Facets with fewer than MIN_PLANE_PIXELS cells or collinear cells are skipped.

    Args:
        labels: Label raster from label_facets
        u: Smoothed raster
        frame: Local metric frame of the raster

    Returns:
        List of PlaneDescriptor ordered by facet id
    """
    height, width = labels.shape
    xs, ys = frame.cell_centers(width)

    keep = labels.ravel() > 0
    lbl = labels.ravel()[keep]
    x = xs.ravel()[keep]
    y = ys.ravel()[keep]
    z = u.ravel()[keep]

    k = int(labels.max()) + 1
    n = np.bincount(lbl, minlength=k).astype(np.float64)
    safe_n = np.where(n > 0, n, 1.0)
    mx = np.bincount(lbl, weights=x, minlength=k) / safe_n
    my = np.bincount(lbl, weights=y, minlength=k) / safe_n
    mz = np.bincount(lbl, weights=z, minlength=k) / safe_n

    # Centred sums keep collinear facets exactly singular
    cx = x - mx[lbl]
    cy = y - my[lbl]
    cz = z - mz[lbl]
    sxx = np.bincount(lbl, weights=cx * cx, minlength=k)
    sxy = np.bincount(lbl, weights=cx * cy, minlength=k)
    syy = np.bincount(lbl, weights=cy * cy, minlength=k)
    sxz = np.bincount(lbl, weights=cx * cz, minlength=k)
    syz = np.bincount(lbl, weights=cy * cz, minlength=k)

    planes = []
    too_small = 0
    singular = 0
    for facet_id in range(1, k):
        if n[facet_id] < SegmentationConfig.MIN_PLANE_PIXELS:
            too_small += 1
            continue

        det = sxx[facet_id] * syy[facet_id] - sxy[facet_id] ** 2
        scale = max(sxx[facet_id] * syy[facet_id], 1.0)
        if abs(det) < SegmentationConfig.PLANE_DET_EPS * scale:
            singular += 1
            continue

        a = (syy[facet_id] * sxz[facet_id] - sxy[facet_id] * syz[facet_id]) / det
        b = (sxx[facet_id] * syz[facet_id] - sxy[facet_id] * sxz[facet_id]) / det
        c = mz[facet_id] - a * mx[facet_id] - b * my[facet_id]

        planes.append(PlaneDescriptor(
            id=facet_id,
            a=float(a),
            b=float(b),
            c=float(c),
            iso_bearing_deg=iso_bearing(a, b),
            pixel_count=int(n[facet_id])
        ))

    logger.info(
        f"Plane fit: {len(planes)} planes, {too_small} facets too small, "
        f"{singular} singular"
    )
    return planes


def iso_bearing(a: float, b: float) -> float:
    """
    Compass bearing of the level direction (b, -a) of plane gradient (a, b).

    The downhill direction is this bearing + 90 degrees.
    """
    return math.degrees(math.atan2(b, -a)) % 360.0


def trace_seams(labels: np.ndarray, planes: Sequence[PlaneDescriptor], frame: LocalFrame) -> List[SeamPolygon]:
    """
    Outline every fitted facet and lift its vertices onto the facet plane.

    Args:
        labels: Label raster
        planes: Fitted planes
        frame: Local metric frame of the raster

    Returns:
        One SeamPolygon per traced outline, exterior ring only
    """
    by_id = {plane.id: plane for plane in planes}
    seams = []
    for geom, value in shapes(labels.astype(np.int32), mask=labels > 0, connectivity=4, transform=frame.transform):
        plane = by_id.get(int(value))
        if plane is None:
            continue
        exterior = geom['coordinates'][0]
        if len(exterior) < 4:
            continue
        vertices = [
            (float(x), float(y), plane.a * x + plane.b * y + plane.c)
            for x, y in exterior
        ]
        seams.append(SeamPolygon(plane_id=plane.id, vertices=vertices))

    logger.debug(f"Traced {len(seams)} seam polygons")
    return seams


def estimate_noise(z: np.ndarray) -> float:
    """Robust sigma (1.4826 * MAD) of the finite samples, NaN if fewer than 3."""
    finite = z[np.isfinite(z)]
    if finite.size < 3:
        return float('nan')
    median = np.median(finite)
    mad = np.median(np.abs(finite - median))
    return float(MAD_TO_SIGMA * mad)


def auto_lambdas(z: np.ndarray, pixel_m: float) -> List[float]:
    """
    Lambda candidates from the raster noise level.

    lambda0 = sigma^2 * pixel_m^2 * ln(N), scaled by AUTO_LAMBDA_FACTORS.
    """
    sigma = estimate_noise(z)
    if not math.isfinite(sigma):
        raise ValueError("Too few finite elevation samples to estimate noise")
    lam0 = sigma * sigma * pixel_m * pixel_m * math.log(z.size)
    logger.info(f"Auto lambda: sigma={sigma:.3f} m, pixel={pixel_m:.2f} m, lambda0={lam0:.4g}")
    return [lam0 * factor for factor in SegmentationConfig.AUTO_LAMBDA_FACTORS]


def resolve_lambdas(lam: LambdaSpec, z: np.ndarray, pixel_m: float) -> List[float]:
    """Normalize a lambda control (number, list of numbers or 'auto') to a list."""
    if isinstance(lam, str):
        if lam != 'auto':
            raise ValueError(f"Unknown lambda mode '{lam}'")
        return auto_lambdas(z, pixel_m)
    if isinstance(lam, (int, float)):
        return [float(lam)]
    candidates = [float(v) for v in lam]
    if not candidates:
        return auto_lambdas(z, pixel_m)
    return candidates


def segment_raster(
    elevations: np.ndarray,
    meta: Dict,
    lam: LambdaSpec = 'auto',
    return_labels: bool = True
) -> SegmentationResponse:
    """
    Segment a masked elevation raster into planar facets.

    Candidates are tried in order; the first one whose smoothed raster is
    at least MIN_FINITE_RATIO finite produces the response.

    Args:
        elevations: 2-D raster, row 0 north, NaN outside the footprint
        meta: Dict with lon0, lat0 (south-west corner), d_lon, d_lat
        lam: Lambda control
        return_labels: Attach the per-pixel label raster

    Returns:
        SegmentationResponse

    Raises:
        ValueError: No candidate produced a usable raster
    """
    z = np.asarray(elevations, dtype=np.float64)
    height, width = z.shape
    frame = LocalFrame.from_meta(meta, height)
    pixel_m = frame.pixel_size_m[0]

    finite_in = int(np.isfinite(z).sum())
    logger.info(f"Segmenting {width}x{height} raster ({finite_in} finite cells)")

    for lam_value in resolve_lambdas(lam, z, pixel_m):
        u = tv_smooth(z, lam_value)

        finite_ratio = float(np.isfinite(u).mean()) if u.size else 0.0
        if finite_ratio < SegmentationConfig.MIN_FINITE_RATIO:
            logger.warning(f"lambda={lam_value:.4g}: only {finite_ratio:.2%} finite, trying next candidate")
            continue

        eps = gradient_threshold(u)
        labels, count = label_facets(u, eps)
        planes = fit_planes(labels, u, frame)
        seams = trace_seams(labels, planes, frame)

        logger.info(
            f"lambda={lam_value:.4g}: eps={eps:.3f} m, {count} facets, "
            f"{len(planes)} planes, {len(seams)} seams"
        )
        return SegmentationResponse(
            lam=lam_value,
            planes=planes,
            seams=seams,
            labels=labels if return_labels else None
        )

    raise ValueError("No lambda candidate produced a usable raster")


def run_segmentation_worker(conn) -> None:
    """
    Entry point of the isolated segmentation process.

    Protocol: receive a request dict (width, height, meta, lam,
    return_labels), then the float32 raster bytes; answer with exactly one
    message, {'result': SegmentationResponse} or {'error': message}.
    """
    try:
        request = conn.recv()
        buffer = conn.recv_bytes()
        elevations = np.frombuffer(buffer, dtype=np.float32).reshape(request['height'], request['width'])
        response = segment_raster(
            elevations,
            request['meta'],
            lam=request.get('lam', 'auto'),
            return_labels=request.get('return_labels', True)
        )
        conn.send({'result': response})
    except Exception as e:
        conn.send({'error': f"{type(e).__name__}: {e}"})
    finally:
        conn.close()
