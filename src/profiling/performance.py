"""Performance extraction — turn per-run CSV profiles into summaries.

The game writes one sub-directory of CSV profiles per run into the log
directory.  Taking a snapshot of the existing sub-directories before
the run and diffing afterwards scopes extraction to the current run.

For every raw CSV in a new directory:

1. the raw files are uploaded,
2. a ``<name>_processed.csv`` is written next to it: fixed metadata rows
   are stripped from the head, then rows 1-10 after the header are
   dropped,
3. rows are parsed (column 1 frame time, 2 game thread, 3 render
   thread, 4 GPU) and the first ``warmup_samples`` are discarded,
4. a nearest-rank :class:`~src.profiling.summary.PerformanceSummary`
   is computed,
5. an external CSV-to-image tool renders a chart when available,
6. the summary is persisted through the sink.
"""

from __future__ import annotations

import csv
import logging
import shutil
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from src.profiling.summary import PerformanceSample, PerformanceSummary, summarize

if TYPE_CHECKING:
    from src.reporting.sink import ArtifactSink

logger = logging.getLogger(__name__)

PROCESSED_SUFFIX = "_processed"

# Rows after the header that are dropped from every CSV.
DROPPED_ROWS = range(1, 11)

_METRIC_COLUMNS = (1, 2, 3, 4)


def process_rows(rows: Sequence[list[str]], metadata_rows: int = 0) -> list[list[str]]:
    """Strip head metadata, then drop :data:`DROPPED_ROWS`.

    Row 0 (the header) and every row after index 10 are kept.
    """
    body = list(rows[metadata_rows:])
    return [row for i, row in enumerate(body) if i not in DROPPED_ROWS]


def parse_samples(
    rows: Iterable[list[str]],
    warmup_samples: int = 20,
) -> tuple[list[PerformanceSample], int]:
    """Parse data rows (no header) into samples.

    Rows with fewer than five columns, non-numeric or negative values
    are skipped and counted.  The first ``warmup_samples`` successfully
    parsed rows are discarded.

    Returns
    -------
    tuple[list[PerformanceSample], int]
        The working sample set and the number of skipped rows.
    """
    parsed: list[PerformanceSample] = []
    skipped = 0
    for row in rows:
        try:
            values = [float(row[i]) for i in _METRIC_COLUMNS]
        except (IndexError, ValueError):
            skipped += 1
            continue
        if any(v < 0 for v in values):
            skipped += 1
            continue
        parsed.append(PerformanceSample(*values))
    return parsed[warmup_samples:], skipped


class PerformanceExtractor:
    """Summarises the CSV profiles written during a game session.

    Parameters
    ----------
    log_dir : str or Path
        Directory the game creates per-run CSV folders in.
    sink : ArtifactSink
        Receives raw files, status lines and summaries.
    warmup_samples : int
        Parsed rows discarded before statistics.
    metadata_rows : int
        Fixed metadata rows at the head of each CSV.
    visualization_tool : str, optional
        External CSV-to-image executable.
    visualization_args : Sequence[str]
        Argument template; ``{csv}`` and ``{image}`` are substituted.
    game_name : str
        Recorded in persisted summaries.
    tool_timeout_s : float
        Maximum runtime of the visualization tool.
    """

    def __init__(
        self,
        log_dir: str | Path,
        sink: ArtifactSink,
        warmup_samples: int = 20,
        metadata_rows: int = 0,
        visualization_tool: Optional[str] = None,
        visualization_args: Sequence[str] = ("{csv}", "{image}"),
        game_name: str = "unknown",
        tool_timeout_s: float = 300.0,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.sink = sink
        self.warmup_samples = warmup_samples
        self.metadata_rows = metadata_rows
        self.visualization_tool = visualization_tool
        self.visualization_args = list(visualization_args)
        self.game_name = game_name
        self.tool_timeout_s = tool_timeout_s
        self._snapshot: Optional[set[str]] = None

    @classmethod
    def from_config(cls, config, sink: ArtifactSink) -> "PerformanceExtractor":
        """Build an extractor from a :class:`~src.profiling.config.ProfileConfig`."""
        return cls(
            config.log_dir,
            sink,
            warmup_samples=config.warmup_samples,
            metadata_rows=config.csv_metadata_rows,
            visualization_tool=config.visualization_tool,
            visualization_args=config.visualization_args,
            game_name=config.name,
        )

    # -- Run scoping -----------------------------------------------------

    def _subdirectories(self) -> set[str]:
        self.log_dir.mkdir(parents=True, exist_ok=True)
        return {p.name for p in self.log_dir.iterdir() if p.is_dir()}

    def snapshot(self) -> set[str]:
        """Record the log sub-directories that exist before the run."""
        self._snapshot = self._subdirectories()
        return set(self._snapshot)

    def new_directories(self) -> list[Path]:
        """Sub-directories created since :meth:`snapshot`."""
        if self._snapshot is None:
            logger.warning("No snapshot of %s taken; treating every folder as new", self.log_dir)
            before: set[str] = set()
        else:
            before = self._snapshot
        return [self.log_dir / name for name in sorted(self._subdirectories() - before)]

    # -- Extraction ------------------------------------------------------

    def extract(self, session) -> list[PerformanceSummary]:
        """Process every CSV written during ``session``.

        Parameters
        ----------
        session : GameSession
            Provides ``status_id`` (and ``start_time`` for metadata).

        Returns
        -------
        list[PerformanceSummary]
            One summary per CSV that yielded samples.
        """
        status_id = session.status_id
        directories = self.new_directories()
        if not directories:
            logger.warning("No new profiling folders in %s", self.log_dir)
            self.sink.update_status(status_id, "No performance logs found.")
            return []

        summaries = []
        for directory in directories:
            raw_files = sorted(p for p in directory.rglob("*") if p.is_file())
            for path in raw_files:
                self.sink.upload_file(path, f"Raw log {path.name}")

            for csv_path in (p for p in raw_files if _is_raw_csv(p)):
                summary = self.extract_csv(csv_path, status_id, session)
                if summary is not None:
                    summaries.append(summary)
        return summaries

    def extract_csv(
        self,
        csv_path: Path,
        status_id: str,
        session=None,
    ) -> Optional[PerformanceSummary]:
        """Run the processing steps for one raw CSV."""
        processed = self.write_processed(csv_path)
        with open(processed, newline="", encoding="utf-8") as fh:
            rows = list(csv.reader(fh))

        samples, skipped = parse_samples(rows[1:], self.warmup_samples)
        if skipped:
            logger.warning("%s: skipped %d unparseable row(s)", csv_path.name, skipped)
        if not samples:
            self.sink.update_status(
                status_id,
                f"{csv_path.name}: no samples after {self.warmup_samples} warm-up rows.",
            )
            return None

        summary = summarize(samples, skipped_rows=skipped)
        frame = summary.frame_time
        self.sink.update_status(
            status_id,
            f"{csv_path.name}: average frame time {frame.average:.2f} ms "
            f"({frame.as_fps()['average']:.2f} FPS), p95 {frame.percentile_95:.2f} ms.",
        )

        image = self.render_chart(processed, status_id)
        if image is not None:
            self.sink.upload_file(image, f"Chart for {csv_path.name}")

        metadata = {
            "game": self.game_name,
            "csv_name": csv_path.name,
            "files": [csv_path.name, processed.name],
            "image_path": str(image) if image is not None else None,
        }
        if session is not None and getattr(session, "start_time", None) is not None:
            metadata["session_start"] = session.start_time.isoformat()
        self.sink.persist_summary(summary, metadata)
        return summary

    def write_processed(self, csv_path: Path) -> Path:
        """Write the processed copy of ``csv_path`` and return its path."""
        with open(csv_path, newline="", encoding="utf-8", errors="replace") as fh:
            rows = list(csv.reader(fh))

        processed = csv_path.with_name(f"{csv_path.stem}{PROCESSED_SUFFIX}.csv")
        with open(processed, "w", newline="", encoding="utf-8") as fh:
            csv.writer(fh).writerows(process_rows(rows, self.metadata_rows))
        logger.info("Wrote %s", processed)
        return processed

    def render_chart(self, csv_path: Path, status_id: str) -> Optional[Path]:
        """Render ``csv_path`` with the visualization tool.

        Returns ``None`` when no tool is configured, the tool is
        missing, or it fails.  Failures are reported, never raised.
        """
        if not self.visualization_tool:
            return None

        tool = shutil.which(self.visualization_tool)
        if tool is None:
            logger.info("Visualization tool %s not found, skipping chart", self.visualization_tool)
            return None

        image = csv_path.with_suffix(".png")
        args = [
            a.format(csv=str(csv_path), image=str(image)) for a in self.visualization_args
        ]
        try:
            result = subprocess.run(
                [tool, *args],
                capture_output=True,
                text=True,
                timeout=self.tool_timeout_s,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("Visualization tool failed: %s", exc)
            self.sink.update_status(status_id, f"Chart generation failed: {exc}")
            return None

        if result.returncode != 0 or not image.exists():
            logger.error(
                "Visualization tool exited with code %d: %s",
                result.returncode,
                result.stderr[-500:],
            )
            self.sink.update_status(
                status_id,
                f"Chart generation failed (exit {result.returncode}).",
            )
            return None
        return image


def _is_raw_csv(path: Path) -> bool:
    return path.suffix.lower() == ".csv" and not path.stem.endswith(PROCESSED_SUFFIX)
