"""
Facet Geometry Reconciler.

Handles:
- Inverse projection of seam vertices from the local metric frame
- Clipping each facet outline against the drawn polygon
- Per-piece metrics (contour, aspect, slope, samples, max elevation, area)

A facet that fails to reconcile is dropped with a diagnostic; its
siblings are unaffected.
"""
from typing import Dict, List, Optional, Sequence

import numpy as np
from shapely.errors import GEOSException
import logging

from ..models.diagnostics import Diagnostic, FacetDiscardedWarning
from ..models.terrain import FacetResult, PlaneDescriptor, SeamPolygon, SegmentationResponse, StitchedRaster
from .geodesy import normalize_bearing
from .polygon_ops import close_ring, intersect_rings, points_in_polygon
from .segmentation_engine import LocalFrame
from .tile_projector import geodesic_area_m2

logger = logging.getLogger(__name__)


class FacetReconciler:
    """Turn segmentation output into clipped, measured facets."""

    @staticmethod
    def seam_to_ring(seam: SeamPolygon, frame: LocalFrame) -> List:
        """
        Inverse-project seam vertices to a closed (lng, lat) ring.

        Args:
            seam: Seam polygon in the local metric frame
            frame: Frame of the raster the seam was traced from

        Returns:
            Closed ring of (lng, lat)
        """
        xs = np.array([v[0] for v in seam.vertices], dtype=np.float64)
        ys = np.array([v[1] for v in seam.vertices], dtype=np.float64)
        lngs, lats = frame.to_geo(xs, ys)
        return close_ring(list(zip(lngs.tolist(), lats.tolist())))

    @staticmethod
    def facet_metrics(plane: PlaneDescriptor) -> Dict[str, float]:
        """Contour, aspect (downhill) and slope of a plane in degrees."""
        contour = normalize_bearing(plane.iso_bearing_deg)
        return {
            'contour_dir_deg': contour,
            'aspect_deg': (contour + 90.0) % 360.0,
            'slope_deg': plane.slope_deg,
        }

    @staticmethod
    def reconcile(
        response: SegmentationResponse,
        raster: StitchedRaster,
        polygon: Sequence[Sequence[float]],
        warnings: Optional[List[Diagnostic]] = None
    ) -> List[FacetResult]:
        """
        Clip facets to the drawn polygon and measure every clipped piece.

        Args:
            response: Planes, seams and labels from the segmentation process
            raster: Raster the segmentation ran on (row 0 north)
            polygon: Drawn polygon ring
            warnings: Optional list that receives FacetDiscardedWarning entries

        Returns:
            List of FacetResult, one per clipped piece
        """
        if warnings is None:
            warnings = []

        frame = LocalFrame.from_meta(raster.meta(), raster.height)
        lngs, lats = raster.cell_centers()
        elevations = raster.elevations
        finite = np.isfinite(elevations)
        labels = response.labels

        seams_by_plane: Dict[int, List[SeamPolygon]] = {}
        for seam in response.seams:
            seams_by_plane.setdefault(seam.plane_id, []).append(seam)

        logger.info(f"Reconciling {len(response.planes)} planes against the drawn polygon")

        facets = []
        for plane in response.planes:
            seams = seams_by_plane.get(plane.id)
            if not seams:
                logger.debug(f"Plane {plane.id} has no seam polygon, skipped")
                continue

            try:
                metrics = FacetReconciler.facet_metrics(plane)
                pieces = []
                for seam in seams:
                    ring = FacetReconciler.seam_to_ring(seam, frame)
                    pieces.extend(intersect_rings(ring, polygon))

                if not pieces:
                    warning = FacetDiscardedWarning(plane_id=plane.id, reason="outside the drawn polygon")
                    logger.debug(str(warning))
                    warnings.append(warning)
                    continue

                if labels is not None:
                    plane_mask = (labels == plane.id) & finite
                else:
                    plane_mask = finite

                for piece in pieces:
                    mask = plane_mask & points_in_polygon(lngs, lats, piece)
                    samples = int(mask.sum())
                    max_elevation = float(elevations[mask].max()) if samples else float('nan')

                    facets.append(FacetResult(
                        plane_id=plane.id,
                        polygon=piece,
                        sample_count=samples,
                        max_elevation=max_elevation,
                        area_m2=geodesic_area_m2(piece),
                        **metrics
                    ))

            except (GEOSException, ValueError) as e:
                logger.warning(f"Facet {plane.id} could not be reconciled: {e}")
                warnings.append(FacetDiscardedWarning(plane_id=plane.id, reason=str(e)))

        logger.info(f"Reconciled {len(facets)} facet pieces ({len(warnings)} diagnostics)")
        return facets
