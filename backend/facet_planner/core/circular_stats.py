"""
Circular statistics for angular samples.

Angles are radians unless a name says otherwise. Results are wrapped
into [0, 2*pi) so that samples either side of north average correctly.
"""
import math
from typing import Sequence

import numpy as np

from ..config import FacetQualityConfig

TWO_PI = 2.0 * math.pi


def _wrap(rad: float) -> float:
    """Reduce an angle into [0, 2*pi)."""
    wrapped = rad % TWO_PI
    # A tiny negative angle rounds up to exactly 2*pi
    return 0.0 if wrapped >= TWO_PI else wrapped


def circular_mean(angles: Sequence[float]) -> float:
    """
    Direction of the summed unit vectors.

    Args:
        angles: Angles in radians

    Returns:
        Mean angle in [0, 2*pi), NaN for no samples
    """
    a = np.asarray(angles, dtype=np.float64)
    if a.size == 0:
        return float('nan')
    return _wrap(math.atan2(float(np.sin(a).sum()), float(np.cos(a).sum())))


def circular_median(angles: Sequence[float]) -> float:
    """
    Circular median via the tightest arc holding every sample.

    The sorted angles are duplicated with a +2*pi shift; the window of n
    consecutive samples with the smallest span marks where the data does
    not wrap, and the middle element of that window is the median.

    Args:
        angles: Angles in radians

    Returns:
        Median angle in [0, 2*pi), NaN for no samples
    """
    a = np.sort(np.asarray(angles, dtype=np.float64) % TWO_PI)
    n = a.size
    if n == 0:
        return float('nan')

    doubled = np.concatenate([a, a + TWO_PI])
    spans = doubled[n - 1:2 * n - 1] - doubled[:n]
    best_start = int(np.argmin(spans))

    return _wrap(float(doubled[best_start + n // 2]))


def mean_resultant_length(angles: Sequence[float]) -> float:
    """Length of the mean unit vector, 1 when all samples agree."""
    a = np.asarray(angles, dtype=np.float64)
    if a.size == 0:
        return 0.0
    return math.hypot(float(np.cos(a).sum()), float(np.sin(a).sum())) / a.size


def circular_dispersion(angles: Sequence[float]) -> float:
    """
    Spread score: 0 = perfect agreement, 1 = no preferred direction.

    Args:
        angles: Angles in radians

    Returns:
        1 - mean resultant length
    """
    return 1.0 - mean_resultant_length(angles)


def weighted_mean_bearing(bearings_deg: Sequence[float], weights: Sequence[float]) -> float:
    """
    Weighted circular mean of compass bearings.

    Entries with non-positive weight or non-finite bearing are ignored.

    Args:
        bearings_deg: Bearings in degrees clockwise from north
        weights: Non-negative weight per bearing

    Returns:
        Bearing in [0, 360), NaN if the total weight is zero
    """
    b = np.asarray(bearings_deg, dtype=np.float64)
    w = np.asarray(weights, dtype=np.float64)
    keep = (w > 0) & np.isfinite(b)
    if not keep.any():
        return float('nan')

    rad = np.radians(b[keep])
    sx = float((w[keep] * np.sin(rad)).sum())
    sy = float((w[keep] * np.cos(rad)).sum())
    return math.degrees(math.atan2(sx, sy)) % 360.0


def classify_facet_fit(sample_counts: Sequence[int]) -> str:
    """
    Rough fit label from the best-sampled facet.

    Args:
        sample_counts: Sample count per facet

    Returns:
        'excellent', 'good', 'fair' or 'poor'
    """
    if not len(sample_counts):
        return 'poor'

    best = max(sample_counts)
    if best > FacetQualityConfig.EXCELLENT_SAMPLES:
        return 'excellent'
    if best > FacetQualityConfig.GOOD_SAMPLES:
        return 'good'
    if best > FacetQualityConfig.FAIR_SAMPLES:
        return 'fair'
    return 'poor'
