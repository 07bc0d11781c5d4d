"""Statistical helpers for latency percentiles and rounding."""

from __future__ import annotations

import math
from collections.abc import Iterable


def nearest_rank(sorted_values: list[float], fraction: float) -> float:
    """Nearest-rank percentile over an ascending list, no interpolation.

    The index is ``ceil(n * fraction) - 1`` clamped to ``[0, n - 1]``.
    An empty list yields 0.
    """
    n = len(sorted_values)
    if n == 0:
        return 0
    idx = math.ceil(n * fraction) - 1
    return sorted_values[min(max(idx, 0), n - 1)]


def latency_percentiles(latencies: Iterable[float]) -> tuple[float, float]:
    """Return ``(p95, p99)`` for an unordered collection of latencies."""
    ordered = sorted(latencies)
    return nearest_rank(ordered, 0.95), nearest_rank(ordered, 0.99)


def mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0
