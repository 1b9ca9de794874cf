"""
Descriptive statistics shared by every threshold type.

Median, population standard deviation and interpolated percentile all live
here so baselines and thresholds never disagree about the math.
"""

from __future__ import annotations

import statistics
from math import ceil, floor
from typing import Optional, Sequence


def median(values: Sequence[float]) -> Optional[float]:
    """
    Middle value of the sample; mean of the two middles for even counts.

    Returns None for an empty sample.
    """
    if not values:
        return None
    return float(statistics.median(values))


def population_stddev(values: Sequence[float]) -> Optional[float]:
    """
    Population (not sample-corrected) standard deviation.

    A single value has zero spread. Returns None for an empty sample.
    """
    if not values:
        return None
    return float(statistics.pstdev(values))


def percentile(sorted_values: Sequence[float], pct: float) -> Optional[float]:
    """
    Percentile with linear interpolation between adjacent ranks.

    Args:
        sorted_values: Sample sorted ascending
        pct: Percentile in [0, 100]

    Returns:
        Interpolated value, or None for an empty sample
    """
    if not sorted_values:
        return None
    if len(sorted_values) == 1:
        return float(sorted_values[0])

    pct = min(max(pct, 0.0), 100.0)
    idx = (pct / 100.0) * (len(sorted_values) - 1)
    lower = floor(idx)
    upper = ceil(idx)

    if lower == upper:
        return float(sorted_values[lower])
    weight = idx - lower
    return sorted_values[lower] * (1.0 - weight) + sorted_values[upper] * weight


def safe_rate(numerator: float, denominator: float) -> float:
    """Percentage numerator / denominator, 0 when the denominator is 0."""
    if denominator <= 0:
        return 0.0
    return numerator / denominator * 100.0
