"""
Data models for the terrain facet planner.
"""

from .terrain import (
    ElevationTile,
    StitchedRaster,
    AspectResult,
    PlaneFitResult,
    PlaneDescriptor,
    SeamPolygon,
    SegmentationResponse,
    FacetResult,
    FacetAnalysis,
)
from .diagnostics import (
    Diagnostic,
    InsufficientSamplesWarning,
    FlatTerrainWarning,
    HighDispersionWarning,
    FacetDiscardedWarning,
    PlaneFitFallbackWarning,
)

__all__ = [
    'ElevationTile',
    'StitchedRaster',
    'AspectResult',
    'PlaneFitResult',
    'PlaneDescriptor',
    'SeamPolygon',
    'SegmentationResponse',
    'FacetResult',
    'FacetAnalysis',
    'Diagnostic',
    'InsufficientSamplesWarning',
    'FlatTerrainWarning',
    'HighDispersionWarning',
    'FacetDiscardedWarning',
    'PlaneFitFallbackWarning',
]
