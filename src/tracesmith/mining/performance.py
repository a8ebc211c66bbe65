"""Expected performance of a pattern, from its source traces."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from tracesmith.contracts.patterns import PerformanceProfile
from tracesmith.contracts.traces import ExecutionTrace


def nearest_rank(values: Sequence[float], percentile: float) -> float:
    """Nearest-rank percentile: the value at index ceil(p/100 * n) - 1."""
    if not values:
        return 0.0
    # inverted_cdf is numpy's name for the nearest-rank definition
    return float(np.percentile(np.asarray(values, dtype=float), percentile, method="inverted_cdf"))


def profile_traces(traces: Sequence[ExecutionTrace]) -> PerformanceProfile:
    if not traces:
        return PerformanceProfile(
            avg_duration_ms=0.0, p50_duration_ms=0.0, p95_duration_ms=0.0, success_rate=0.0, avg_cost=0.0
        )
    durations = np.asarray([t.total_duration_ms for t in traces], dtype=float)
    costs = np.asarray([t.cost for t in traces], dtype=float)
    return PerformanceProfile(
        avg_duration_ms=float(durations.mean()),
        p50_duration_ms=nearest_rank(durations.tolist(), 50),
        p95_duration_ms=nearest_rank(durations.tolist(), 95),
        success_rate=sum(1 for t in traces if t.success) / len(traces),
        avg_cost=float(costs.mean()),
    )
