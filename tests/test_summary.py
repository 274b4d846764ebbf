"""Tests for nearest-rank statistics and performance summaries.

Tests cover:

- percentile(): nearest-rank indexing, no interpolation, bounds
- summarize_metric() / summarize(): averages, maxima, sample counts
- MetricSummary.as_fps()
- Warm-up discarding feeding into a summary (end-to-end)
"""

from __future__ import annotations

import pytest

from src.profiling.performance import parse_samples
from src.profiling.summary import (
    MetricSummary,
    PerformanceSample,
    percentile,
    summarize,
    summarize_metric,
)


def _row(frame: float, game: float = 1.0, render: float = 2.0, gpu: float = 3.0) -> list[str]:
    return ["0.0", str(frame), str(game), str(render), str(gpu)]


# ── percentile ──────────────────────────────────────────────────────


class TestPercentile:
    """Tests for the nearest-rank percentile."""

    def test_hundred_values_p95(self):
        """floor(100 * 0.95) = 95 -> the 96th smallest value."""
        values = [10 * i for i in range(1, 101)]
        assert percentile(values, 0.95) == 960

    def test_hundred_values_p99(self):
        values = [10 * i for i in range(1, 101)]
        assert percentile(values, 0.99) == 1000

    def test_unsorted_input(self):
        """Input order does not matter."""
        assert percentile([22, 16, 18, 17], 0.95) == 22

    def test_no_interpolation(self):
        """The result is always an observed value."""
        values = [1.0, 2.0, 4.0, 8.0, 16.0]
        result = percentile(values, 0.5)
        assert result in values
        assert result == 4.0

    def test_p_one_clamps_to_maximum(self):
        assert percentile([3, 1, 2], 1.0) == 3

    def test_single_value(self):
        assert percentile([7.5], 0.95) == 7.5

    def test_empty_raises(self):
        with pytest.raises(ValueError, match="empty"):
            percentile([], 0.95)

    def test_out_of_range_p_raises(self):
        with pytest.raises(ValueError):
            percentile([1, 2, 3], 1.5)


# ── summarize ───────────────────────────────────────────────────────


class TestSummarize:
    """Tests for MetricSummary and PerformanceSummary construction."""

    def test_metric_summary_fields(self):
        summary = summarize_metric([18, 22, 17, 16])
        assert summary.average == pytest.approx(18.25)
        assert summary.maximum == 22
        assert summary.percentile_95 == 22
        assert summary.percentile_99 == 22

    def test_summary_per_metric(self):
        samples = [
            PerformanceSample(10.0, 5.0, 6.0, 7.0),
            PerformanceSample(20.0, 6.0, 8.0, 9.0),
        ]
        summary = summarize(samples, skipped_rows=2)
        assert summary.sample_count == 2
        assert summary.skipped_rows == 2
        assert summary.frame_time.average == pytest.approx(15.0)
        assert summary.game_thread_time.maximum == 6.0
        assert summary.render_thread_time.average == pytest.approx(7.0)
        assert summary.gpu_time.maximum == 9.0

    def test_summary_is_immutable(self):
        summary = summarize([PerformanceSample(1.0, 1.0, 1.0, 1.0)])
        with pytest.raises(AttributeError):
            summary.sample_count = 5  # type: ignore[misc]

    def test_empty_samples_raise(self):
        with pytest.raises(ValueError):
            summarize([])

    def test_as_fps(self):
        metric = MetricSummary(average=16.0, percentile_95=20.0, percentile_99=25.0, maximum=50.0)
        fps = metric.as_fps()
        assert fps["average"] == pytest.approx(62.5)
        assert fps["percentile_95"] == pytest.approx(50.0)
        assert fps["maximum"] == pytest.approx(20.0)


# ── End-to-end ──────────────────────────────────────────────────────


class TestWarmupToSummary:
    """Warm-up rows are discarded before statistics."""

    def test_warmup_three(self):
        rows = [_row(v) for v in (20, 21, 19, 18, 22, 17, 16)]
        samples, skipped = parse_samples(rows, warmup_samples=3)

        assert [s.frame_time for s in samples] == [18, 22, 17, 16]
        assert skipped == 0

        summary = summarize(samples)
        assert summary.frame_time.average == pytest.approx(18.25)
        assert summary.frame_time.maximum == 22
        assert summary.frame_time.percentile_95 == 22
