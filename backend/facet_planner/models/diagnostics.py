"""
Structured diagnostics attached to analysis results.

Conditions that make a result less trustworthy (too few samples, flat
terrain, conflicting slope directions, dropped facets) are reported here
instead of failing the request, so callers can decide how to present them.
"""
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Dict


@dataclass(frozen=True)
class Diagnostic(ABC):
    """Base class for result diagnostics.

    Subclasses carry the measured values and render a message on demand.
    Each subclass has a warning_type field for serialization.
    """

    @property
    @abstractmethod
    def message(self) -> str:
        """Human-readable description."""

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['message'] = self.message
        return data

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class InsufficientSamplesWarning(Diagnostic):
    """Fewer valid gradient samples than required for a bearing."""

    sample_count: int
    min_samples: int
    warning_type: str = "InsufficientSamples"

    @property
    def message(self) -> str:
        return (
            f"Only {self.sample_count} samples found (need {self.min_samples}) - "
            f"direction is undefined"
        )


@dataclass(frozen=True)
class FlatTerrainWarning(Diagnostic):
    """Mean gradient magnitude below the flat-terrain threshold."""

    mean_gradient: float
    threshold: float
    warning_type: str = "FlatTerrain"

    @property
    def message(self) -> str:
        return (
            f"Terrain is very flat (avg gradient: {self.mean_gradient:.6f}) - "
            f"direction may be unreliable"
        )


@dataclass(frozen=True)
class HighDispersionWarning(Diagnostic):
    """Sample bearings disagree strongly."""

    dispersion: float
    threshold: float
    warning_type: str = "HighDispersion"

    @property
    def message(self) -> str:
        return (
            f"High directional dispersion ({self.dispersion:.3f}) - "
            f"terrain may have conflicting slope directions"
        )


@dataclass(frozen=True)
class FacetDiscardedWarning(Diagnostic):
    """A facet was dropped while reconciling it with the drawn polygon."""

    plane_id: int
    reason: str
    warning_type: str = "FacetDiscarded"

    @property
    def message(self) -> str:
        return f"Facet {self.plane_id} discarded: {self.reason}"


@dataclass(frozen=True)
class PlaneFitFallbackWarning(Diagnostic):
    """Segmentation failed and one plane over the whole polygon was used instead."""

    reason: str
    r_squared: float
    rmse: float
    fit_quality: str
    warning_type: str = "PlaneFitFallback"

    @property
    def message(self) -> str:
        return (
            f"Segmentation failed ({self.reason}) - using a single plane fit "
            f"(R² {self.r_squared:.3f}, RMSE {self.rmse:.2f} m, {self.fit_quality})"
        )
