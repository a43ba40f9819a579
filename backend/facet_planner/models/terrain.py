"""
Core terrain data models.

Plain dataclasses passed between pipeline stages. Geographic coordinates
are (longitude, latitude) in WGS84 degrees, bearings are degrees clockwise
from north in [0, 360), elevations are meters.
"""
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np
from rasterio.transform import Affine

from .diagnostics import Diagnostic

LngLat = Tuple[float, float]

TERRAIN_RGB = 'terrain-rgb'
DEM = 'dem'
TILE_FORMATS = (TERRAIN_RGB, DEM)


@dataclass
class ElevationTile:
    """
    One slippy-map tile of elevation data.

    Attributes:
        x: Tile column index
        y: Tile row index
        z: Zoom level
        width: Raster width in pixels
        height: Raster height in pixels
        data: Interleaved RGB/RGBA bytes for 'terrain-rgb', float meters for 'dem'
        format: 'terrain-rgb' or 'dem'
    """
    x: int
    y: int
    z: int
    width: int
    height: int
    data: np.ndarray
    format: str = TERRAIN_RGB

    def __post_init__(self):
        if self.format not in TILE_FORMATS:
            raise ValueError(f"Unknown tile format '{self.format}', expected one of {TILE_FORMATS}")
        dtype = np.float32 if self.format == DEM else np.uint8
        self.data = np.ascontiguousarray(self.data, dtype=dtype).reshape(-1)

    @property
    def channels(self) -> int:
        """Interleaved channels per pixel (1 for single-band DEM)."""
        if self.format == DEM:
            return 1
        return 4 if self.data.size == self.width * self.height * 4 else 3

    @property
    def key(self) -> Tuple[int, int, int]:
        return self.z, self.x, self.y

    @property
    def expected_sizes(self) -> Tuple[int, ...]:
        """Payload lengths consistent with width, height and format."""
        pixels = self.width * self.height
        if self.format == DEM:
            return (pixels,)
        return pixels * 3, pixels * 4


@dataclass
class StitchedRaster:
    """
    Dense elevation grid covering a polygon's bounding box.

    Row 0 is the northern edge. Exterior cells hold NaN, interior cells the
    decoded elevation or the region mean where the source was invalid.

    Attributes:
        elevations: 2-D float32 array (height, width)
        lon0: Longitude of the south-west corner
        lat0: Latitude of the south-west corner
        d_lon: Longitude step per column (degrees)
        d_lat: Latitude step per row (degrees, positive northward)
        fill_value: Mean used for invalid interior cells
        zoom: Source tile zoom level
        pixel_bounds: Global pixel bounds (min_px, min_py, max_px, max_py)
    """
    elevations: np.ndarray
    lon0: float
    lat0: float
    d_lon: float
    d_lat: float
    fill_value: float
    zoom: int
    pixel_bounds: Tuple[int, int, int, int]

    @property
    def width(self) -> int:
        return self.elevations.shape[1]

    @property
    def height(self) -> int:
        return self.elevations.shape[0]

    @property
    def geo_transform(self) -> Affine:
        """Affine mapping (col, row) to (lon, lat), origin at the north-west corner."""
        return Affine(
            self.d_lon, 0.0, self.lon0,
            0.0, -self.d_lat, self.lat0 + self.height * self.d_lat
        )

    def cell_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Geographic centers of every cell via the affine transform.

        Returns:
            Tuple of (lons, lats) arrays shaped like the raster
        """
        cols = np.arange(self.width) + 0.5
        rows = np.arange(self.height) + 0.5
        lons = self.lon0 + cols * self.d_lon
        lats = self.lat0 + (self.height - rows) * self.d_lat
        return np.meshgrid(lons, lats)

    def meta(self) -> Dict[str, float]:
        return {
            'lon0': self.lon0,
            'lat0': self.lat0,
            'd_lon': self.d_lon,
            'd_lat': self.d_lat,
        }


@dataclass
class AspectResult:
    """
    Representative contour bearing for a polygon.

    contour_dir_deg is NaN when sample_count is below the minimum.
    """
    contour_dir_deg: float
    sample_count: int
    statistic: str = 'mean'
    dispersion: float = float('nan')
    warnings: List[Diagnostic] = field(default_factory=list)

    @property
    def is_reliable(self) -> bool:
        return math.isfinite(self.contour_dir_deg) and not self.warnings

    def to_dict(self) -> Dict:
        return {
            'contour_dir_deg': self.contour_dir_deg,
            'sample_count': self.sample_count,
            'statistic': self.statistic,
            'dispersion': self.dispersion,
            'warnings': [w.to_dict() for w in self.warnings],
        }


@dataclass
class PlaneFitResult:
    """
    One robust plane fitted over every sample inside a polygon.

    Bearings are NaN when there were too few samples, the samples were
    collinear or the plane is flat.

    Attributes:
        contour_dir_deg: Bearing along which the plane is level
        aspect_deg: Downhill bearing, (contour_dir_deg + 90) mod 360
        sample_count: Finite samples inside the polygon
        r_squared: Coefficient of determination of the final fit
        rmse: Root mean square residual in meters
        slope_magnitude: Rise over run of the plane
        fit_quality: 'excellent', 'good', 'fair' or 'poor'
        max_elevation: Highest sampled elevation
    """
    contour_dir_deg: float
    aspect_deg: float
    sample_count: int
    r_squared: float = float('nan')
    rmse: float = float('nan')
    slope_magnitude: float = float('nan')
    fit_quality: str = 'poor'
    max_elevation: float = float('nan')

    @property
    def slope_deg(self) -> float:
        return math.degrees(math.atan(self.slope_magnitude))


@dataclass(frozen=True)
class PlaneDescriptor:
    """
    A fitted plane z = a*X + b*Y + c in the local metric frame.

    Attributes:
        id: Facet label
        a: dz/dX (east gradient)
        b: dz/dY (north gradient)
        c: Intercept at the frame origin
        iso_bearing_deg: Compass bearing along which the plane is level
        pixel_count: Pixels used for the fit
    """
    id: int
    a: float
    b: float
    c: float
    iso_bearing_deg: float
    pixel_count: int = 0

    @property
    def slope_deg(self) -> float:
        return math.degrees(math.atan(math.hypot(self.a, self.b)))


@dataclass(frozen=True)
class SeamPolygon:
    """Facet outline in the local metric frame, vertices as (X, Y, Z) meters."""
    plane_id: int
    vertices: List[Tuple[float, float, float]]


@dataclass
class SegmentationResponse:
    """Planes, seams and optional per-pixel labels from one segmentation run."""
    lam: float
    planes: List[PlaneDescriptor]
    seams: List[SeamPolygon]
    labels: Optional[np.ndarray] = None


@dataclass
class FacetResult:
    """
    One planar facet clipped to the drawn polygon.

    aspect_deg is always (contour_dir_deg + 90) mod 360.
    """
    plane_id: int
    polygon: List[LngLat]
    contour_dir_deg: float
    aspect_deg: float
    slope_deg: float
    sample_count: int
    max_elevation: float
    area_m2: float = 0.0

    def to_dict(self) -> Dict:
        return {
            'plane_id': self.plane_id,
            'polygon': [list(p) for p in self.polygon],
            'contour_dir_deg': self.contour_dir_deg,
            'aspect_deg': self.aspect_deg,
            'slope_deg': self.slope_deg,
            'sample_count': self.sample_count,
            'max_elevation': self.max_elevation,
            'area_m2': self.area_m2,
        }


@dataclass
class FacetAnalysis:
    """Facet list plus a single dominant flight direction."""
    facets: List[FacetResult]
    dominant_contour_dir_deg: float
    fit_quality: str
    warnings: List[Diagnostic] = field(default_factory=list)
