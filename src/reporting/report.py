"""Performance report generation — structured JSON reports from profiling runs.

Each processed CSV produces a :class:`PerformanceReport` which is
serialised to JSON and rendered to a short markdown summary.
When an earlier report for the same game exists in the output directory,
the summary also shows each average's change against it.

JSON schema::

    {
        "report_id": "uuid",
        "game": "my-game",
        "build_id": "local",
        "created": "ISO-8601",
        "csv_name": "Profile(20250519_101500).csv",
        "files": ["..."],
        "image_path": "chart.png" | null,
        "summary": {
            "frame_time": {"average": 16.6, "percentile_95": 18.0,
                           "percentile_99": 21.0, "maximum": 33.0},
            "game_thread_time": {...},
            "render_thread_time": {...},
            "gpu_time": {...},
            "sample_count": 1800,
            "skipped_rows": 0
        }
    }
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import numpy as np
from jinja2 import Environment, select_autoescape

from src.profiling.summary import METRIC_NAMES, PerformanceSummary

logger = logging.getLogger(__name__)

_REPORT_TEMPLATE = """\
## Performance Report: {{ game }}
{% for metric in metrics %}
**{{ metric.label }}**: {{ "%.2f"|format(metric.average) }} ms avg \
({{ "%.2f"|format(metric.fps) }} FPS), \
p95 {{ "%.2f"|format(metric.percentile_95) }} ms, \
p99 {{ "%.2f"|format(metric.percentile_99) }} ms, \
worst {{ "%.2f"|format(metric.maximum) }} ms\
{% if metric.delta is not none %}, \
{{ "%+.2f"|format(metric.delta) }}% vs previous {{ "%.2f"|format(metric.previous) }} ms \
({{ "%+.2f"|format(metric.fps_delta) }}% FPS)\
{% endif %}
{%- endfor %}

Samples: {{ sample_count }}{% if skipped_rows %} ({{ skipped_rows }} unparseable rows skipped){% endif %}
CSV: {{ csv_name }}
{% if image_path %}Chart: {{ image_path }}
{% endif %}"""

_METRIC_LABELS = {
    "frame_time": "Frame Time",
    "game_thread_time": "Game Thread",
    "render_thread_time": "Render Thread",
    "gpu_time": "GPU",
}


def _json_default(obj: Any) -> Any:
    """Handle numpy and path types during JSON serialisation."""
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Path):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


@dataclass
class PerformanceReport:
    """Persisted record of one summarised CSV.

    Attributes
    ----------
    summary : PerformanceSummary
        The computed statistics.
    csv_name : str
        File name of the source CSV.
    game : str
        Name of the profiled game.
    files : list[str]
        Raw and processed files belonging to the run.
    image_path : str | None
        Rendered chart, if the visualization tool produced one.
    report_id : str
        UUID of this report.
    build_id : str
        Build identifier from ``CI_COMMIT_SHORT_SHA``, else ``"local"``.
    created : str
        ISO-8601 creation timestamp.
    """

    summary: PerformanceSummary
    csv_name: str
    game: str = "unknown"
    files: list[str] = field(default_factory=list)
    image_path: str | None = None
    report_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    build_id: str = field(
        default_factory=lambda: os.getenv("CI_COMMIT_SHORT_SHA", "local")
    )
    created: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert the report to a plain nested dict."""
        return asdict(self)


class ReportGenerator:
    """Persists and renders :class:`PerformanceReport` objects.

    Parameters
    ----------
    output_dir : str or Path
        Directory to write report files to.
    """

    def __init__(self, output_dir: str | Path = "reports") -> None:
        self.output_dir = Path(output_dir)
        self._env = Environment(autoescape=select_autoescape(default=False))
        self._template = self._env.from_string(_REPORT_TEMPLATE)

    def render(
        self,
        report: PerformanceReport,
        previous: dict[str, Any] | None = None,
    ) -> str:
        """Render ``report`` as a short markdown summary.

        Parameters
        ----------
        report : PerformanceReport
            The report to render.
        previous : dict, optional
            An earlier report as loaded by :meth:`load_previous`.  Each
            metric then shows the percentage change of its average.
        """
        previous_summary = (previous or {}).get("summary") or {}
        metrics = []
        for name in METRIC_NAMES:
            metric = getattr(report.summary, name)
            old = (previous_summary.get(name) or {}).get("average")
            metrics.append(
                {
                    "label": _METRIC_LABELS[name],
                    "average": metric.average,
                    "fps": metric.as_fps()["average"],
                    "percentile_95": metric.percentile_95,
                    "percentile_99": metric.percentile_99,
                    "maximum": metric.maximum,
                    "previous": old,
                    "delta": _percent_change(old, metric.average),
                    "fps_delta": _percent_change(metric.average, old),
                }
            )
        return self._template.render(
            game=report.game,
            metrics=metrics,
            sample_count=report.summary.sample_count,
            skipped_rows=report.summary.skipped_rows,
            csv_name=report.csv_name,
            image_path=report.image_path,
        )

    def save(self, report: PerformanceReport, filename: str | None = None) -> Path:
        """Serialise ``report`` to JSON, plus a rendered ``.md`` sibling.

        Creates the output directory if it does not exist.  The markdown
        compares against the latest earlier report for the same game.

        Returns
        -------
        Path
            Path to the written JSON file.
        """
        if filename is None:
            filename = f"{report.game}_{report.report_id[:8]}.json"

        previous = self.load_previous(report.game, exclude=report.report_id)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        out_path = self.output_dir / filename

        with open(out_path, "w", encoding="utf-8") as fh:
            json.dump(report.to_dict(), fh, indent=2, default=_json_default)

        out_path.with_suffix(".md").write_text(
            self.render(report, previous), encoding="utf-8"
        )
        return out_path

    def load_previous(self, game: str, exclude: str | None = None) -> dict[str, Any] | None:
        """Return the most recently created saved report for ``game``.

        Reports whose ``report_id`` equals ``exclude`` are ignored, as are
        unreadable files.
        """
        if not self.output_dir.is_dir():
            return None
        latest: dict[str, Any] | None = None
        for path in sorted(self.output_dir.glob("*.json")):
            try:
                with open(path, encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable report %s: %s", path, exc)
                continue
            if not isinstance(data, dict) or data.get("game") != game:
                continue
            if exclude is not None and data.get("report_id") == exclude:
                continue
            if latest is None or str(data.get("created", "")) > str(latest.get("created", "")):
                latest = data
        return latest


def _percent_change(old: float | None, new: float | None) -> float | None:
    """Percentage change from ``old`` to ``new``; ``None`` if undefined."""
    if old is None or new is None or not old:
        return None
    return (new - old) / old * 100.0
