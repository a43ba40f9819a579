"""
Aspect Estimator.

Handles:
- Horn-kernel gradients over tile pixels inside the drawn polygon
- Contour (iso-altitude) bearing per sample
- Aggregation into one bearing with circular mean or median
- Reliability diagnostics (too few samples, flat terrain, high dispersion)
- Whole-polygon robust plane fit used when segmentation fails
"""
import math
from typing import List, Optional, Sequence, Tuple

import numpy as np
import logging

from ..config import AspectConfig, PlaneFitConfig, ProjectionConfig
from ..models.diagnostics import (
    Diagnostic,
    FlatTerrainWarning,
    HighDispersionWarning,
    InsufficientSamplesWarning,
)
from ..models.terrain import AspectResult, ElevationTile, PlaneFitResult
from .circular_stats import TWO_PI, circular_dispersion, circular_mean, circular_median
from .elevation_decoder import ElevationDecoder
from .geodesy import normalize_bearing
from .polygon_ops import points_in_polygon, ring_bounds
from .tile_projector import WebMercatorProjector

logger = logging.getLogger(__name__)

STATISTICS = ('mean', 'median')


class AspectEstimator:
    """Estimate the dominant contour direction of the terrain inside a polygon."""

    @staticmethod
    def horn_gradient(window: np.ndarray, res) -> Tuple[np.ndarray, np.ndarray]:
        """
        Horn finite-difference gradient.

        Args:
            window: Array (..., 9) holding Z1..Z9 row-major, north row first
            res: Ground resolution in meters per pixel, broadcastable

        Returns:
            Tuple of (dzdx, dzdy), east and north components
        """
        z = np.moveaxis(np.asarray(window, dtype=np.float64), -1, 0)
        dzdx = ((z[2] + 2 * z[5] + z[8]) - (z[0] + 2 * z[3] + z[6])) / (8 * res)
        dzdy = ((z[0] + 2 * z[1] + z[2]) - (z[6] + 2 * z[7] + z[8])) / (8 * res)
        return dzdx, dzdy

    @staticmethod
    def contour_bearings(dzdx: np.ndarray, dzdy: np.ndarray) -> np.ndarray:
        """Gradient rotated -90 degrees, radians in [0, 2*pi)."""
        return np.arctan2(-dzdy, dzdx) % TWO_PI

    @staticmethod
    def tile_samples(
        tile: ElevationTile,
        ring: Sequence[Sequence[float]],
        sample_step: int = 1
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Contour bearings and gradient magnitudes for one tile.

        Only pixels with a full 3x3 neighbourhood, a centre inside the
        polygon, a finite gradient and a magnitude above the flat
        threshold contribute.

        Args:
            tile: Source tile
            ring: Polygon ring of (lng, lat)
            sample_step: Pixel stride in both directions

        Returns:
            Tuple of (bearings in radians, gradient magnitudes)
        """
        empty = np.empty(0), np.empty(0)
        if tile.width < 3 or tile.height < 3:
            return empty

        proj = WebMercatorProjector(tile.z)
        cols = np.arange(1, tile.width - 1, sample_step)
        rows = np.arange(1, tile.height - 1, sample_step)
        px, py = np.meshgrid(cols, rows)

        lngs, lats = proj.pixel_to_geo(tile.x, tile.y, px + 0.5, py + 0.5, tile.width)
        inside = points_in_polygon(lngs, lats, ring)
        if not inside.any():
            return empty

        px, py, lats = px[inside], py[inside], lats[inside]

        grid = ElevationDecoder.decode_array(tile)
        window = np.stack(
            [grid[py + dy, px + dx] for dy in (-1, 0, 1) for dx in (-1, 0, 1)],
            axis=-1
        )
        res = proj.ground_resolution(lats, tile.width)
        dzdx, dzdy = AspectEstimator.horn_gradient(window, res)

        magnitude = np.hypot(dzdx, dzdy)
        keep = np.isfinite(dzdx) & np.isfinite(dzdy) & (magnitude >= AspectConfig.FLAT_GRADIENT_THRESHOLD)

        bearings = AspectEstimator.contour_bearings(dzdx[keep], dzdy[keep])
        return bearings, magnitude[keep]

    @staticmethod
    def estimate(
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        statistic: str = AspectConfig.DEFAULT_STATISTIC,
        sample_step: int = AspectConfig.DEFAULT_SAMPLE_STEP,
        min_samples: int = AspectConfig.MIN_SAMPLES
    ) -> AspectResult:
        """
        Representative contour bearing of the terrain inside a polygon.

        Args:
            polygon: Ring of (lng, lat), closed or open
            tiles: Elevation tiles covering the polygon
            statistic: 'mean' or 'median'
            sample_step: Pixel stride (1 = every pixel)
            min_samples: Fewest samples that give a defined bearing

        Returns:
            AspectResult; contour_dir_deg is NaN when too few samples were found

        Raises:
            ValueError: Unknown statistic or sample_step below 1
            InvalidTileSetError: A tile is not square or has a malformed payload
        """
        if statistic not in STATISTICS:
            raise ValueError(f"Unknown statistic '{statistic}', expected one of {STATISTICS}")
        if sample_step < 1:
            raise ValueError(f"sample_step must be >= 1, got {sample_step}")

        logger.info(f"Estimating aspect over {len(tiles)} tiles (statistic={statistic}, step={sample_step})")

        bounds = ring_bounds(polygon) if len(polygon) else None
        bearing_parts: List[np.ndarray] = []
        magnitude_parts: List[np.ndarray] = []

        for tile in tiles:
            ElevationDecoder.check_tile(tile)
            if bounds is not None and not AspectEstimator._tile_overlaps(tile, bounds):
                logger.debug(f"Tile {tile.key} outside polygon bounds, skipped")
                continue
            bearings, magnitudes = AspectEstimator.tile_samples(tile, polygon, sample_step)
            logger.debug(f"Tile {tile.key}: {bearings.size} samples")
            bearing_parts.append(bearings)
            magnitude_parts.append(magnitudes)

        bearings = np.concatenate(bearing_parts) if bearing_parts else np.empty(0)
        magnitudes = np.concatenate(magnitude_parts) if magnitude_parts else np.empty(0)
        count = int(bearings.size)

        if count < min_samples:
            warning = InsufficientSamplesWarning(sample_count=count, min_samples=min_samples)
            logger.warning(str(warning))
            return AspectResult(
                contour_dir_deg=float('nan'),
                sample_count=count,
                statistic=statistic,
                warnings=[warning]
            )

        if statistic == 'median':
            bearing_rad = circular_median(bearings)
        else:
            bearing_rad = circular_mean(bearings)

        dispersion = circular_dispersion(bearings)
        warnings = AspectEstimator._diagnose(float(magnitudes.mean()), dispersion)
        for warning in warnings:
            logger.warning(str(warning))

        contour_dir_deg = math.degrees(bearing_rad) % 360.0
        logger.info(f"Contour direction {contour_dir_deg:.1f}° from {count} samples (dispersion {dispersion:.3f})")

        return AspectResult(
            contour_dir_deg=contour_dir_deg,
            sample_count=count,
            statistic=statistic,
            dispersion=dispersion,
            warnings=warnings
        )

    @staticmethod
    def polygon_elevations(
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        sample_step: int = 1
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Finite elevations at pixel centres inside a polygon.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Elevation tiles covering the polygon
            sample_step: Pixel stride in both directions

        Returns:
            Tuple of (lngs, lats, elevations), one entry per sample
        """
        lng_parts, lat_parts, z_parts = [], [], []
        for tile in tiles:
            ElevationDecoder.check_tile(tile)
            proj = WebMercatorProjector(tile.z)
            px, py = np.meshgrid(
                np.arange(0, tile.width, sample_step),
                np.arange(0, tile.height, sample_step)
            )
            lngs, lats = proj.pixel_to_geo(tile.x, tile.y, px + 0.5, py + 0.5, tile.width)
            z = ElevationDecoder.decode_array(tile)[py, px]
            keep = points_in_polygon(lngs, lats, polygon) & np.isfinite(z)
            lng_parts.append(lngs[keep])
            lat_parts.append(lats[keep])
            z_parts.append(z[keep].astype(np.float64))

        if not z_parts:
            return np.empty(0), np.empty(0), np.empty(0)
        return np.concatenate(lng_parts), np.concatenate(lat_parts), np.concatenate(z_parts)

    @staticmethod
    def plane_fit(
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        sample_step: int = AspectConfig.DEFAULT_SAMPLE_STEP
    ) -> PlaneFitResult:
        """
        Contour direction of one robust plane fitted over the whole polygon.

        Samples are placed in a local metric frame (spherical Mercator
        meters scaled to ground distance at the mean latitude) and
        z = a*x + b*y + c is solved by iteratively reweighted least squares
        with Huber weights, so a few spikes or holes do not tilt the plane.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Elevation tiles covering the polygon
            sample_step: Pixel stride (1 = every pixel)

        Returns:
            PlaneFitResult; bearings are NaN when no plane could be determined

        Raises:
            ValueError: sample_step below 1
            InvalidTileSetError: A tile is not square or has a malformed payload
        """
        if sample_step < 1:
            raise ValueError(f"sample_step must be >= 1, got {sample_step}")

        lngs, lats, z = AspectEstimator.polygon_elevations(polygon, tiles, sample_step)
        n = int(z.size)
        max_elevation = float(z.max()) if n else float('nan')
        undefined = PlaneFitResult(
            contour_dir_deg=float('nan'),
            aspect_deg=float('nan'),
            sample_count=n,
            max_elevation=max_elevation
        )

        if n < PlaneFitConfig.MIN_SAMPLES:
            logger.warning(f"Plane fit needs {PlaneFitConfig.MIN_SAMPLES} samples, found {n}")
            return undefined

        R = ProjectionConfig.WEB_MERCATOR_RADIUS_M
        ground = math.cos(math.radians(float(lats.mean())))
        x = R * np.radians(lngs) * ground
        y = R * np.log(np.tan(np.pi / 4 + np.radians(lats) / 2)) * ground
        design = np.column_stack([x - x.mean(), y - y.mean()])
        zc = z - z.mean()

        coef = np.zeros(2)
        weights = np.ones(n)
        for _ in range(PlaneFitConfig.IRLS_ITERATIONS):
            sw = np.sqrt(weights)
            coef, _, rank, _ = np.linalg.lstsq(design * sw[:, None], zc * sw, rcond=None)
            if rank < 2:
                logger.warning("Plane fit samples are collinear")
                return undefined
            residual = np.abs(zc - design @ coef)
            threshold = PlaneFitConfig.HUBER_THRESHOLD_M
            weights = threshold / np.maximum(residual, threshold)

        a, b = float(coef[0]), float(coef[1])
        ss_res = float(((zc - design @ coef) ** 2).sum())
        ss_tot = float((zc ** 2).sum())
        r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0
        rmse = math.sqrt(ss_res / n)
        slope_magnitude = math.hypot(a, b)

        if slope_magnitude < PlaneFitConfig.FLAT_SLOPE:
            logger.warning(f"Plane fit is flat over {n} samples")
            undefined.r_squared = r_squared
            undefined.rmse = rmse
            undefined.slope_magnitude = slope_magnitude
            return undefined

        uphill_deg = math.degrees(math.atan2(a, b))
        fit_quality = AspectEstimator._fit_label(n, r_squared, rmse)
        result = PlaneFitResult(
            contour_dir_deg=normalize_bearing(uphill_deg + 90.0),
            aspect_deg=normalize_bearing(uphill_deg + 180.0),
            sample_count=n,
            r_squared=r_squared,
            rmse=rmse,
            slope_magnitude=slope_magnitude,
            fit_quality=fit_quality,
            max_elevation=max_elevation
        )
        logger.info(
            f"Plane fit: contour {result.contour_dir_deg:.1f}°, R² {r_squared:.3f}, "
            f"RMSE {rmse:.2f} m over {n} samples ({fit_quality})"
        )
        return result

    @staticmethod
    def _fit_label(sample_count: int, r_squared: float, rmse: float) -> str:
        if sample_count < PlaneFitConfig.QUALITY_MIN_SAMPLES:
            return 'poor'
        for label, min_r_squared, max_rmse in PlaneFitConfig.QUALITY_BANDS:
            if r_squared > min_r_squared and rmse < max_rmse:
                return label
        return 'poor'

    @staticmethod
    def _diagnose(mean_gradient: float, dispersion: float) -> List[Diagnostic]:
        warnings: List[Diagnostic] = []
        if mean_gradient < AspectConfig.FLAT_TERRAIN_WARNING:
            warnings.append(FlatTerrainWarning(
                mean_gradient=mean_gradient,
                threshold=AspectConfig.FLAT_TERRAIN_WARNING
            ))
        if dispersion > AspectConfig.HIGH_DISPERSION_WARNING:
            warnings.append(HighDispersionWarning(
                dispersion=dispersion,
                threshold=AspectConfig.HIGH_DISPERSION_WARNING
            ))
        return warnings

    @staticmethod
    def _tile_overlaps(tile: ElevationTile, bounds: Optional[Tuple[float, float, float, float]]) -> bool:
        """Cheap bounding-box rejection before the per-pixel test."""
        proj = WebMercatorProjector(tile.z)
        west, north = proj.pixel_to_geo(tile.x, tile.y, 0, 0, tile.width)
        east, south = proj.pixel_to_geo(tile.x, tile.y, tile.width, tile.height, tile.width)
        min_lng, min_lat, max_lng, max_lat = bounds
        return not (east < min_lng or west > max_lng or north < min_lat or south > max_lat)
