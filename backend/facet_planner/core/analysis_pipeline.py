"""
Main Analysis Pipeline.

Orchestrates both terrain workflows for one drawn polygon:
- Aspect: single contour bearing from Horn gradients
- Facets: planar segmentation, clipping and a dominant flight direction
- Fallback: one robust plane over the polygon when segmentation fails
"""
import asyncio
import logging
import math
from typing import List, Optional, Sequence

from ..config import AspectConfig
from ..models.diagnostics import Diagnostic, PlaneFitFallbackWarning
from ..models.terrain import AspectResult, ElevationTile, FacetAnalysis, FacetResult, PlaneFitResult
from .aspect_estimator import AspectEstimator
from .circular_stats import classify_facet_fit, weighted_mean_bearing
from .errors import SegmentationFailureError, TerrainAnalysisError
from .polygon_ops import close_ring, validate_ring
from .segmentation_coordinator import SegmentationCoordinator
from .segmentation_engine import LambdaSpec
from .tile_projector import geodesic_area_m2

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """Analysis pipeline for flight-direction planning."""

    def __init__(self, coordinator: Optional[SegmentationCoordinator] = None):
        """
        Initialize analysis pipeline.

        Args:
            coordinator: Segmentation coordinator (a default one is created if omitted)
        """
        self.coordinator = coordinator or SegmentationCoordinator()

    def analyze_aspect(
        self,
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        statistic: str = AspectConfig.DEFAULT_STATISTIC,
        sample_step: int = AspectConfig.DEFAULT_SAMPLE_STEP
    ) -> AspectResult:
        """
        Contour direction of the terrain inside a polygon.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Elevation tiles covering the polygon
            statistic: 'mean' or 'median'
            sample_step: Pixel stride

        Returns:
            AspectResult with diagnostics
        """
        logger.info("Starting aspect analysis")

        # Step 1: Validate input polygon
        ring = validate_ring(polygon)

        # Step 2: Estimate
        result = AspectEstimator.estimate(ring, tiles, statistic=statistic, sample_step=sample_step)

        logger.info(f"Aspect analysis complete: {result.sample_count} samples, reliable={result.is_reliable}")
        return result

    async def analyze_facets(
        self,
        polygon: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        lam: LambdaSpec = 'auto'
    ) -> FacetAnalysis:
        """
        Planar facets of the terrain inside a polygon plus one dominant direction.

        A failed segmentation falls back to one plane over the whole
        polygon; a timeout does not.

        Args:
            polygon: Ring of (lng, lat)
            tiles: Same-zoom elevation tiles covering the polygon
            lam: Lambda control for the segmentation

        Returns:
            FacetAnalysis
        """
        logger.info("Starting facet analysis")
        warnings: List[Diagnostic] = []
        plane_fit: Optional[PlaneFitResult] = None

        try:
            # Step 1: Segment, clip and measure
            facets = await self.coordinator.segment(polygon, tiles, lam=lam, warnings=warnings)
        except SegmentationFailureError as e:
            # Step 1b: One plane over the whole polygon
            logger.warning(f"Segmentation failed ({e.message}), falling back to a single plane fit")
            ring = validate_ring(polygon)
            plane_fit = await self._fallback_plane_fit(ring, tiles, e)
            facets = [self.plane_fit_facet(ring, plane_fit)]
            warnings.append(PlaneFitFallbackWarning(
                reason=e.message,
                r_squared=plane_fit.r_squared,
                rmse=plane_fit.rmse,
                fit_quality=plane_fit.fit_quality
            ))
        except TerrainAnalysisError as e:
            logger.error(f"Facet analysis failed ({e.kind}): {e.message}", exc_info=True)
            raise

        # Step 2: Summarize
        dominant = self.dominant_direction(facets)
        if plane_fit is not None:
            fit_quality = plane_fit.fit_quality
        else:
            fit_quality = classify_facet_fit([f.sample_count for f in facets])

        logger.info(
            f"Facet analysis complete: {len(facets)} facets, dominant "
            f"{dominant:.1f}°, fit {fit_quality}"
        )
        return FacetAnalysis(
            facets=facets,
            dominant_contour_dir_deg=dominant,
            fit_quality=fit_quality,
            warnings=warnings
        )

    @staticmethod
    def dominant_direction(facets: Sequence[FacetResult]) -> float:
        """Sample-weighted circular mean of facet contour directions (NaN if none)."""
        sampled = [f for f in facets if f.sample_count > 0]
        return weighted_mean_bearing(
            [f.contour_dir_deg for f in sampled],
            [f.sample_count for f in sampled]
        )

    @staticmethod
    async def _fallback_plane_fit(
        ring: Sequence[Sequence[float]],
        tiles: Sequence[ElevationTile],
        error: SegmentationFailureError
    ) -> PlaneFitResult:
        """Whole-polygon plane fit, re-raising the segmentation failure if no plane is found."""
        loop = asyncio.get_running_loop()
        fit = await loop.run_in_executor(None, AspectEstimator.plane_fit, ring, tiles)
        if not math.isfinite(fit.contour_dir_deg):
            logger.error(
                f"Facet analysis failed ({error.kind}): {error.message}; "
                f"plane fit undefined over {fit.sample_count} samples"
            )
            raise error
        return fit

    @staticmethod
    def plane_fit_facet(ring: Sequence[Sequence[float]], fit: PlaneFitResult) -> FacetResult:
        """The whole polygon as a single facet described by a plane fit."""
        return FacetResult(
            plane_id=0,
            polygon=close_ring(ring),
            contour_dir_deg=fit.contour_dir_deg,
            aspect_deg=fit.aspect_deg,
            slope_deg=fit.slope_deg,
            sample_count=fit.sample_count,
            max_elevation=fit.max_elevation,
            area_m2=geodesic_area_m2(ring)
        )
