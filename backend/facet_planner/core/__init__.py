"""
Core analysis modules for the terrain facet planner.
"""

from .errors import (
    TerrainAnalysisError,
    InvalidTileSetError,
    DegenerateGeometryError,
    SegmentationTimeoutError,
    SegmentationFailureError,
)
from .geodesy import Geodesy
from .tile_projector import WebMercatorProjector
from .elevation_decoder import ElevationDecoder
from .aspect_estimator import AspectEstimator
from .dem_stitcher import DEMStitcher
from .facet_reconciler import FacetReconciler
from .segmentation_coordinator import SegmentationCoordinator
from .analysis_pipeline import AnalysisPipeline

__all__ = [
    'TerrainAnalysisError',
    'InvalidTileSetError',
    'DegenerateGeometryError',
    'SegmentationTimeoutError',
    'SegmentationFailureError',
    'Geodesy',
    'WebMercatorProjector',
    'ElevationDecoder',
    'AspectEstimator',
    'DEMStitcher',
    'FacetReconciler',
    'SegmentationCoordinator',
    'AnalysisPipeline',
]
