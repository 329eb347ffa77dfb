"""Descriptive statistics over severity series.

Every function returns ``None`` for an empty series. Callers must treat
``None`` as "undefined", never as zero.
"""

import math
from collections.abc import Sequence


def mean(values: Sequence[int]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def maximum(values: Sequence[int]) -> int | None:
    if not values:
        return None
    return max(values)


def minimum(values: Sequence[int]) -> int | None:
    if not values:
        return None
    return min(values)


def median(values: Sequence[int]) -> float | None:
    """Middle value; the average of the two middle values for an even count."""
    if not values:
        return None
    ordered = sorted(values)
    size = len(ordered)
    mid = size // 2
    if size % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2.0
    return float(ordered[mid])


def stddev(values: Sequence[int]) -> float | None:
    """Population standard deviation."""
    avg = mean(values)
    if avg is None:
        return None
    return math.sqrt(sum((v - avg) ** 2 for v in values) / len(values))
