"""Metrics collector: summary statistics and regression deltas for performance samples.

Percentiles use linear interpolation between closest ranks: for ``n`` sorted
values the q-th percentile sits at rank ``q / 100 * (n - 1)`` and is
interpolated between its floor and ceiling neighbours. This is the "linear"
rule (type 7 in Hyndman and Fan), so results match numpy and R defaults.
"""

from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from matrixqa.models.metrics import MetricsSummary, PerformanceSample

logger = logging.getLogger(__name__)


def percentile(values: list[float], q: float) -> float:
    """Linear-interpolated percentile of ``values`` (need not be sorted)."""
    if not values:
        raise ValueError("percentile of an empty sequence")
    if not 0 <= q <= 100:
        raise ValueError(f"percentile must be within [0, 100], got {q}")
    ordered = sorted(values)
    rank = q / 100 * (len(ordered) - 1)
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return ordered[lower]
    weight = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * weight


def regression_delta(current_mean: float, previous: Optional[MetricsSummary]) -> Optional[float]:
    """Percent change of the mean against the previous summary, None without usable history."""
    if previous is None or previous.mean == 0:
        return None
    return (current_mean - previous.mean) / previous.mean * 100


def summarize_metric(
    metric_name: str,
    values: list[float],
    unit: str = "ms",
    previous: Optional[MetricsSummary] = None,
) -> MetricsSummary:
    mean = math.fsum(values) / len(values)
    return MetricsSummary(
        metric_name=metric_name,
        unit=unit,
        count=len(values),
        mean=mean,
        p50=percentile(values, 50),
        p95=percentile(values, 95),
        max=max(values),
        regression_delta_percent=regression_delta(mean, previous),
    )


def summarize(
    samples: Iterable[PerformanceSample],
    previous: Optional[dict[str, MetricsSummary]] = None,
) -> dict[str, MetricsSummary]:
    """Group samples by metric name and summarize each group.

    Groups keep the order in which metric names first appear. ``previous``
    maps metric name to the last stored summary for the same screen and
    device profile.
    """
    grouped: dict[str, list[float]] = {}
    units: dict[str, str] = {}
    for sample in samples:
        grouped.setdefault(sample.metric_name, []).append(sample.value)
        units.setdefault(sample.metric_name, sample.unit)

    previous = previous or {}
    summaries = {}
    for name, values in grouped.items():
        prev = previous.get(name)
        if prev is not None and prev.unit != units[name]:
            logger.warning("Unit changed for %s (%s -> %s); skipping regression delta",
                           name, prev.unit, units[name])
            prev = None
        summaries[name] = summarize_metric(name, values, units[name], prev)
    return summaries
