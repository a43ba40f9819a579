"""
FastAPI routes for terrain analysis.
"""
import asyncio
from concurrent.futures import ThreadPoolExecutor
from fastapi import APIRouter
import logging

from ..core.analysis_pipeline import AnalysisPipeline
from ..core.polygon_ops import validate_ring
from ..core.tile_projector import optimal_terrain_zoom, tiles_covering_polygon
from ..models.requests import (
    AspectRequest,
    AspectResponse,
    FacetAnalysisResponse,
    FacetRequest,
    TileCoverRequest,
    TileCoverResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()

pipeline = AnalysisPipeline()

# Aspect estimation is CPU bound; keep it off the event loop
executor = ThreadPoolExecutor(max_workers=4)


@router.post("/analysis/aspect", response_model=AspectResponse)
async def analyze_aspect(request: AspectRequest):
    """
    Single contour direction for a drawn polygon.

    Args:
        request: Polygon ring, tiles and aggregation options

    Returns:
        Contour bearing, sample count and diagnostics
    """
    tiles = [t.to_tile() for t in request.tiles]
    logger.info(f"Aspect request: {len(request.polygon)} vertices, {len(tiles)} tiles")

    loop = asyncio.get_running_loop()
    result = await loop.run_in_executor(
        executor,
        pipeline.analyze_aspect,
        request.polygon,
        tiles,
        request.statistic,
        request.sample_step
    )
    return AspectResponse.from_result(result)


@router.post("/analysis/facets", response_model=FacetAnalysisResponse)
async def analyze_facets(request: FacetRequest):
    """
    Planar facets and dominant flight direction for a drawn polygon.

    Args:
        request: Polygon ring, tiles and lambda control

    Returns:
        Clipped facets with metrics
    """
    tiles = [t.to_tile() for t in request.tiles]
    logger.info(f"Facet request: {len(request.polygon)} vertices, {len(tiles)} tiles, lam={request.lam}")

    analysis = await pipeline.analyze_facets(request.polygon, tiles, lam=request.lam)
    return FacetAnalysisResponse.from_result(analysis)


@router.post("/tiles/cover", response_model=TileCoverResponse)
async def tile_cover(request: TileCoverRequest):
    """Tile indices a client must fetch to analyze a polygon."""
    ring = validate_ring(request.polygon)
    zoom = request.zoom if request.zoom is not None else optimal_terrain_zoom(ring)
    return TileCoverResponse(zoom=zoom, tiles=tiles_covering_polygon(ring, zoom))
