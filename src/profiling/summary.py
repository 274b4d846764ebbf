"""Performance samples and their statistical summaries.

Statistics use the *nearest-rank* rule with zero-based indexing: the
samples are sorted ascending and ``percentile(p)`` is
``sorted[floor(count * p)]``.  No interpolation is performed, so the
reported percentile is always a value that was actually observed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Sequence

import numpy as np

METRIC_NAMES: tuple[str, ...] = (
    "frame_time",
    "game_thread_time",
    "render_thread_time",
    "gpu_time",
)


class PerformanceSample(NamedTuple):
    """One parsed CSV row, all values in milliseconds."""

    frame_time: float
    game_thread_time: float
    render_thread_time: float
    gpu_time: float


@dataclass(frozen=True)
class MetricSummary:
    """Summary statistics for one metric.

    Attributes
    ----------
    average : float
        Arithmetic mean.
    percentile_95 : float
        Nearest-rank 95th percentile.
    percentile_99 : float
        Nearest-rank 99th percentile.
    maximum : float
        Largest observed value.
    """

    average: float
    percentile_95: float
    percentile_99: float
    maximum: float

    def as_fps(self) -> dict[str, float]:
        """Convert each millisecond value to frames per second."""
        return {
            "average": _fps(self.average),
            "percentile_95": _fps(self.percentile_95),
            "percentile_99": _fps(self.percentile_99),
            "maximum": _fps(self.maximum),
        }


@dataclass(frozen=True)
class PerformanceSummary:
    """Per-metric summaries derived from one CSV sample set.

    Attributes
    ----------
    frame_time, game_thread_time, render_thread_time, gpu_time : MetricSummary
        Summary of each metric.
    sample_count : int
        Number of samples after warm-up rows were discarded.
    skipped_rows : int
        Rows that could not be parsed and were left out.
    """

    frame_time: MetricSummary
    game_thread_time: MetricSummary
    render_thread_time: MetricSummary
    gpu_time: MetricSummary
    sample_count: int
    skipped_rows: int = 0


def _fps(frame_ms: float) -> float:
    return 1000.0 / frame_ms if frame_ms > 0 else 0.0


def percentile(values: Sequence[float], p: float) -> float:
    """Return the nearest-rank percentile of ``values``.

    Parameters
    ----------
    values : Sequence[float]
        Samples, in any order.
    p : float
        Fraction in ``[0, 1)``, e.g. ``0.95``.

    Returns
    -------
    float
        ``sorted(values)[floor(len(values) * p)]``.

    Raises
    ------
    ValueError
        If ``values`` is empty or ``p`` is outside ``[0, 1]``.
    """
    if not len(values):
        raise ValueError("percentile of an empty sample set")
    if not 0.0 <= p <= 1.0:
        raise ValueError(f"p must be within [0, 1], got {p}")

    ordered = np.sort(np.asarray(values, dtype=float))
    index = min(math.floor(len(ordered) * p), len(ordered) - 1)
    return float(ordered[index])


def summarize_metric(values: Sequence[float]) -> MetricSummary:
    """Compute a :class:`MetricSummary` for one metric."""
    if not len(values):
        raise ValueError("cannot summarize an empty sample set")
    arr = np.asarray(values, dtype=float)
    return MetricSummary(
        average=float(np.mean(arr)),
        percentile_95=percentile(arr, 0.95),
        percentile_99=percentile(arr, 0.99),
        maximum=float(np.max(arr)),
    )


def summarize(
    samples: Iterable[PerformanceSample],
    skipped_rows: int = 0,
) -> PerformanceSummary:
    """Reduce samples to a :class:`PerformanceSummary`.

    Raises
    ------
    ValueError
        If there are no samples.
    """
    rows = list(samples)
    if not rows:
        raise ValueError("no performance samples to summarize")

    columns = np.asarray(rows, dtype=float)
    per_metric = {
        name: summarize_metric(columns[:, i]) for i, name in enumerate(METRIC_NAMES)
    }
    return PerformanceSummary(
        **per_metric,
        sample_count=len(rows),
        skipped_rows=skipped_rows,
    )
