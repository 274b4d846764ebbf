"""Tests for the PerformanceExtractor and CSV processing helpers.

Tests cover:

- process_rows(): metadata stripping and dropping rows 1-10
- parse_samples(): column mapping, malformed rows, warm-up
- PerformanceExtractor: snapshot / new_directories scoping
- PerformanceExtractor.extract(): uploads, processed CSV, persisted summary
- Visualization tool: not configured, missing, failing, succeeding
"""

from __future__ import annotations

import csv
import sys
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import pytest

from src.profiling.performance import (
    PerformanceExtractor,
    parse_samples,
    process_rows,
)

_HEADER = ["Time", "FrameTime", "GameThreadTime", "RenderThreadTime", "GPUTime"]


# ── Helpers ─────────────────────────────────────────────────────────


def _write_csv(path: Path, frame_times: list[float], metadata: int = 0) -> Path:
    """Write a CSV with ``metadata`` junk rows, a header, 10 dropped rows, then data."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        for i in range(metadata):
            writer.writerow([f"[meta{i}]", "value"])
        writer.writerow(_HEADER)
        for _ in range(10):
            writer.writerow(["0", "999", "999", "999", "999"])
        for i, ft in enumerate(frame_times):
            writer.writerow([str(i), str(ft), "5.0", "6.0", "7.0"])
    return path


def _session(status_id: str = "run") -> SimpleNamespace:
    return SimpleNamespace(status_id=status_id, start_time=None)


def _extractor(tmp_path: Path, sink, **kwargs) -> PerformanceExtractor:
    defaults = dict(warmup_samples=0, game_name="test-game")
    defaults.update(kwargs)
    return PerformanceExtractor(tmp_path / "logs", sink, **defaults)


# ── process_rows ────────────────────────────────────────────────────


class TestProcessRows:
    """Tests for the fixed row removal."""

    def test_keeps_header_and_rows_after_ten(self):
        rows = [[str(i)] for i in range(15)]
        kept = process_rows(rows)
        assert [r[0] for r in kept] == ["0", "11", "12", "13", "14"]

    def test_strips_metadata_first(self):
        rows = [["meta"], ["meta"]] + [[str(i)] for i in range(13)]
        kept = process_rows(rows, metadata_rows=2)
        assert [r[0] for r in kept] == ["0", "11", "12"]

    def test_short_file(self):
        """Files shorter than the dropped range keep only the header."""
        rows = [["h"], ["1"], ["2"]]
        assert process_rows(rows) == [["h"]]


# ── parse_samples ───────────────────────────────────────────────────


class TestParseSamples:
    """Tests for CSV row parsing."""

    def test_column_mapping(self):
        samples, skipped = parse_samples([["9", "16.5", "8.0", "9.0", "10.0"]], warmup_samples=0)
        assert skipped == 0
        assert samples[0].frame_time == 16.5
        assert samples[0].game_thread_time == 8.0
        assert samples[0].render_thread_time == 9.0
        assert samples[0].gpu_time == 10.0

    def test_malformed_rows_skipped(self):
        rows = [
            ["0", "16", "1", "1", "1"],
            ["[HasHeaderRowAtEnd]", "1"],
            ["0", "abc", "1", "1", "1"],
            ["0", "-1", "1", "1", "1"],
            ["0", "17", "1", "1", "1"],
        ]
        samples, skipped = parse_samples(rows, warmup_samples=0)
        assert [s.frame_time for s in samples] == [16, 17]
        assert skipped == 3

    def test_default_warmup_is_twenty(self):
        rows = [["0", str(i), "1", "1", "1"] for i in range(25)]
        samples, _ = parse_samples(rows)
        assert [s.frame_time for s in samples] == [20, 21, 22, 23, 24]

    def test_warmup_larger_than_data(self):
        rows = [["0", "1", "1", "1", "1"]] * 3
        samples, _ = parse_samples(rows, warmup_samples=20)
        assert samples == []


# ── Run scoping ─────────────────────────────────────────────────────


class TestRunScoping:
    """Tests for snapshot / new_directories."""

    def test_only_new_directories(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(tmp_path, sink)
        (tmp_path / "logs" / "old").mkdir(parents=True)

        extractor.snapshot()
        (tmp_path / "logs" / "new").mkdir()

        assert extractor.new_directories() == [tmp_path / "logs" / "new"]

    def test_log_dir_created_on_demand(self, tmp_path):
        extractor = _extractor(tmp_path, mock.MagicMock())
        assert extractor.snapshot() == set()
        assert (tmp_path / "logs").is_dir()

    def test_without_snapshot_everything_is_new(self, tmp_path):
        extractor = _extractor(tmp_path, mock.MagicMock())
        (tmp_path / "logs" / "a").mkdir(parents=True)
        assert extractor.new_directories() == [tmp_path / "logs" / "a"]


# ── extract ─────────────────────────────────────────────────────────


class TestExtract:
    """Tests for the full extraction pipeline."""

    def test_extract_persists_summary(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(tmp_path, sink, warmup_samples=3)
        extractor.snapshot()
        csv_path = _write_csv(
            tmp_path / "logs" / "run1" / "Profile.csv",
            [20, 21, 19, 18, 22, 17, 16],
        )

        summaries = extractor.extract(_session())

        assert len(summaries) == 1
        summary = summaries[0]
        assert summary.sample_count == 4
        assert summary.frame_time.average == pytest.approx(18.25)
        assert summary.frame_time.maximum == 22

        processed = csv_path.with_name("Profile_processed.csv")
        assert processed.exists()

        sink.upload_file.assert_any_call(csv_path, "Raw log Profile.csv")
        persisted, metadata = sink.persist_summary.call_args.args
        assert persisted is summary
        assert metadata["csv_name"] == "Profile.csv"
        assert metadata["files"] == ["Profile.csv", "Profile_processed.csv"]
        assert metadata["image_path"] is None
        assert metadata["game"] == "test-game"

    def test_metadata_rows_are_stripped(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(tmp_path, sink, metadata_rows=2)
        extractor.snapshot()
        _write_csv(tmp_path / "logs" / "run1" / "p.csv", [10, 30], metadata=2)

        summary = extractor.extract(_session())[0]
        assert summary.frame_time.average == pytest.approx(20.0)
        assert summary.skipped_rows == 0

    def test_stale_directories_ignored(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(tmp_path, sink)
        _write_csv(tmp_path / "logs" / "old" / "p.csv", [10])
        extractor.snapshot()

        assert extractor.extract(_session()) == []
        sink.persist_summary.assert_not_called()
        sink.update_status.assert_called_with("run", "No performance logs found.")

    def test_no_samples_reports_status(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(tmp_path, sink, warmup_samples=20)
        extractor.snapshot()
        _write_csv(tmp_path / "logs" / "run1" / "p.csv", [10, 11])

        assert extractor.extract(_session()) == []
        sink.persist_summary.assert_not_called()


# ── Visualization ───────────────────────────────────────────────────


class TestVisualization:
    """Tests for the optional chart rendering step."""

    def test_not_configured(self, tmp_path):
        extractor = _extractor(tmp_path, mock.MagicMock())
        assert extractor.render_chart(tmp_path / "x.csv", "run") is None

    def test_missing_tool_is_skipped(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(
            tmp_path, sink, visualization_tool=str(tmp_path / "no-such-tool")
        )
        assert extractor.render_chart(tmp_path / "x.csv", "run") is None
        sink.update_status.assert_not_called()

    def test_failing_tool_is_reported(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(
            tmp_path,
            sink,
            visualization_tool=sys.executable,
            visualization_args=["-c", "import sys; sys.exit(3)", "{csv}", "{image}"],
        )
        assert extractor.render_chart(tmp_path / "x.csv", "run") is None
        text = sink.update_status.call_args.args[1]
        assert "Chart generation failed" in text

    def test_successful_tool_uploads_chart(self, tmp_path):
        sink = mock.MagicMock()
        extractor = _extractor(
            tmp_path,
            sink,
            visualization_tool=sys.executable,
            visualization_args=[
                "-c",
                "import sys; open(sys.argv[2], 'wb').write(b'png')",
                "{csv}",
                "{image}",
            ],
        )
        extractor.snapshot()
        _write_csv(tmp_path / "logs" / "run1" / "p.csv", [10, 12])

        extractor.extract(_session())

        image = tmp_path / "logs" / "run1" / "p_processed.png"
        assert image.exists()
        _, metadata = sink.persist_summary.call_args.args
        assert metadata["image_path"] == str(image)
        sink.upload_file.assert_any_call(image, "Chart for p.csv")
