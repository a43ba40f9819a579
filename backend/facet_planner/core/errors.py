"""
Error kinds raised by the terrain analysis pipelines.

Each exception carries a `kind` tag so callers can report exactly one
clearly named failure per request.
"""


class TerrainAnalysisError(Exception):
    """Base class for analysis failures."""

    kind = "TerrainAnalysisError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'kind': self.kind, 'detail': self.message}


class InvalidTileSetError(TerrainAnalysisError):
    """Tile list is empty or tiles disagree on zoom/size."""

    kind = "InvalidTileSet"


class DegenerateGeometryError(TerrainAnalysisError):
    """Input polygon has fewer than 3 distinct vertices."""

    kind = "DegenerateGeometry"


class SegmentationTimeoutError(TerrainAnalysisError):
    """The isolated segmentation unit did not answer in time."""

    kind = "SegmentationTimeout"


class SegmentationFailureError(TerrainAnalysisError):
    """The isolated segmentation unit reported an internal error."""

    kind = "SegmentationFailure"
