"""
Request and response models for the HTTP surface.

Non-finite numbers in results are reported as null.
"""
import math
from typing import List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from .terrain import DEM, TERRAIN_RGB, AspectResult, ElevationTile, FacetAnalysis, FacetResult


def finite_or_none(value: float) -> Optional[float]:
    """Map NaN/inf to None for JSON output."""
    if value is None or not math.isfinite(value):
        return None
    return float(value)


class TileModel(BaseModel):
    """One elevation tile posted as JSON."""
    x: int = Field(..., ge=0)
    y: int = Field(..., ge=0)
    z: int = Field(..., ge=0, le=24)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    format: Literal['terrain-rgb', 'dem'] = TERRAIN_RGB
    data: List[Optional[float]] = Field(..., description="Interleaved RGB(A) bytes or float meters (null = no data)")

    @model_validator(mode="after")
    def check_payload_length(self) -> "TileModel":
        pixels = self.width * self.height
        expected = (pixels,) if self.format == DEM else (pixels * 3, pixels * 4)
        if len(self.data) not in expected:
            raise ValueError(f"data has {len(self.data)} values, expected one of {expected}")
        return self

    def to_tile(self) -> ElevationTile:
        data = [float('nan') if v is None else v for v in self.data]
        return ElevationTile(
            x=self.x, y=self.y, z=self.z,
            width=self.width, height=self.height,
            data=data, format=self.format
        )


class AspectRequest(BaseModel):
    """Request model for single-bearing aspect analysis."""
    polygon: List[Tuple[float, float]] = Field(..., description="Ring of (lng, lat) pairs")
    tiles: List[TileModel]
    statistic: Literal['mean', 'median'] = 'mean'
    sample_step: int = Field(default=1, ge=1, description="Pixel stride")


class FacetRequest(BaseModel):
    """Request model for planar facet analysis."""
    polygon: List[Tuple[float, float]] = Field(..., description="Ring of (lng, lat) pairs")
    tiles: List[TileModel]
    lam: Union[Literal['auto'], float, List[float]] = Field(default='auto', description="Segmentation lambda control")


class TileCoverRequest(BaseModel):
    """Request model for the tile index set of a polygon."""
    polygon: List[Tuple[float, float]]
    zoom: Optional[int] = Field(default=None, ge=0, le=24, description="Omit to pick a zoom from the polygon area")


class DiagnosticModel(BaseModel):
    warning_type: str
    message: str


class AspectResponse(BaseModel):
    """Response model for aspect analysis."""
    contour_dir_deg: Optional[float]
    sample_count: int
    statistic: str
    dispersion: Optional[float]
    reliable: bool
    warnings: List[DiagnosticModel]

    @classmethod
    def from_result(cls, result: AspectResult) -> "AspectResponse":
        return cls(
            contour_dir_deg=finite_or_none(result.contour_dir_deg),
            sample_count=result.sample_count,
            statistic=result.statistic,
            dispersion=finite_or_none(result.dispersion),
            reliable=result.is_reliable,
            warnings=[DiagnosticModel(warning_type=w.warning_type, message=w.message) for w in result.warnings]
        )


class FacetModel(BaseModel):
    plane_id: int
    polygon: List[Tuple[float, float]]
    contour_dir_deg: float
    aspect_deg: float
    slope_deg: float
    sample_count: int
    max_elevation: Optional[float]
    area_m2: float

    @classmethod
    def from_result(cls, facet: FacetResult) -> "FacetModel":
        return cls(
            plane_id=facet.plane_id,
            polygon=facet.polygon,
            contour_dir_deg=facet.contour_dir_deg,
            aspect_deg=facet.aspect_deg,
            slope_deg=facet.slope_deg,
            sample_count=facet.sample_count,
            max_elevation=finite_or_none(facet.max_elevation),
            area_m2=facet.area_m2
        )


class FacetAnalysisResponse(BaseModel):
    """Response model for facet analysis."""
    facets: List[FacetModel]
    dominant_contour_dir_deg: Optional[float]
    fit_quality: str
    warnings: List[DiagnosticModel]

    @classmethod
    def from_result(cls, analysis: FacetAnalysis) -> "FacetAnalysisResponse":
        return cls(
            facets=[FacetModel.from_result(f) for f in analysis.facets],
            dominant_contour_dir_deg=finite_or_none(analysis.dominant_contour_dir_deg),
            fit_quality=analysis.fit_quality,
            warnings=[DiagnosticModel(warning_type=w.warning_type, message=w.message) for w in analysis.warnings]
        )


class TileCoverResponse(BaseModel):
    zoom: int
    tiles: List[Tuple[int, int]]
