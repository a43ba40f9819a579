"""
Tunable constants for terrain analysis.

Values are grouped by the pipeline stage that consumes them. The
segmentation timeout can be overridden with the
FACET_SEGMENTATION_TIMEOUT_S environment variable.
"""
import os


class ProjectionConfig:
    """Earth model constants."""

    # Equatorial circumference used by Web Mercator ground resolution
    EARTH_CIRCUMFERENCE_M = 40075016.68557849
    # Spherical Mercator radius (EPSG:3857)
    WEB_MERCATOR_RADIUS_M = 6378137.0
    # Mean radius for great-circle math
    GEODESY_RADIUS_M = 6371000.0


class TerrainRGBConfig:
    """Terrain-RGB packed elevation encoding."""

    BASE_M = -10000.0
    SCALE_M = 0.1


class AspectConfig:
    """Aspect estimator thresholds."""

    MIN_SAMPLES = 10
    FLAT_GRADIENT_THRESHOLD = 1e-6
    FLAT_TERRAIN_WARNING = 0.001
    HIGH_DISPERSION_WARNING = 0.8
    DEFAULT_STATISTIC = "mean"
    DEFAULT_SAMPLE_STEP = 1


class PlaneFitConfig:
    """Whole-polygon plane fit used when segmentation fails."""

    MIN_SAMPLES = 6
    # Residuals beyond this many meters are down-weighted (Huber)
    HUBER_THRESHOLD_M = 5.0
    IRLS_ITERATIONS = 3
    FLAT_SLOPE = 1e-8

    # Fit label breakpoints: (label, min R², max RMSE in meters)
    QUALITY_MIN_SAMPLES = 10
    QUALITY_BANDS = (
        ("excellent", 0.95, 2.0),
        ("good", 0.85, 5.0),
        ("fair", 0.7, 10.0),
    )


class SegmentationConfig:
    """Planar segmentation solver and coordinator parameters."""

    TIMEOUT_S = float(os.getenv("FACET_SEGMENTATION_TIMEOUT_S", "30"))

    # Total-variation primal/dual smoother
    TV_TAU = 0.25
    TV_MAX_ITER = 500
    TV_TOL = 1e-4
    TV_CHECK_EVERY = 32
    MIN_LAMBDA = 1e-6

    # Skip a lambda candidate when fewer outputs than this are finite
    MIN_FINITE_RATIO = 0.05

    # Edge threshold = max(factor * median gradient, floor)
    GRAD_THRESHOLD_FACTOR = 3.0
    GRAD_THRESHOLD_FLOOR = 0.05

    MIN_PLANE_PIXELS = 3
    PLANE_DET_EPS = 1e-10

    # Multipliers applied to the noise-derived base lambda in "auto" mode
    AUTO_LAMBDA_FACTORS = (0.25, 0.5, 1.0, 2.0)


class FacetQualityConfig:
    """Sample-count breakpoints for the dominant facet fit label."""

    EXCELLENT_SAMPLES = 500
    GOOD_SAMPLES = 200
    FAIR_SAMPLES = 50


class ZoomConfig:
    """Polygon area (m²) breakpoints for terrain tile zoom selection."""

    ZOOM_15_MAX_AREA_M2 = 1e5
    ZOOM_14_MAX_AREA_M2 = 1e6
    ZOOM_13_MAX_AREA_M2 = 1e7
    DEFAULT_ZOOM = 15
    COARSEST_ZOOM = 12
