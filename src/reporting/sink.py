"""Artifact sinks — where uploaded files, status lines and summaries go.

:class:`ArtifactSink` is the narrow contract the profiling pipeline
reports through.  :class:`LocalArtifactSink` implements it on the local
filesystem: uploads are copied into ``<output_dir>/uploads``, status
messages are kept in memory (and logged), and summaries are persisted
as JSON + markdown reports.
"""

from __future__ import annotations

import abc
import logging
import shutil
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from src.profiling.summary import PerformanceSummary

from .report import PerformanceReport, ReportGenerator

logger = logging.getLogger(__name__)

# Number of most recent lines a status message keeps.
STATUS_WINDOW: int = 10


class ArtifactSink(abc.ABC):
    """Receives everything the profiling pipeline produces."""

    @abc.abstractmethod
    def upload_file(self, path: str | Path, caption: str = "") -> None:
        """Publish a file with an optional caption."""

    @abc.abstractmethod
    def update_status(self, status_id: str, text: str) -> str:
        """Append ``text`` to status message ``status_id``.

        Returns
        -------
        str
            The full status text after the update, limited to the most
            recent :data:`STATUS_WINDOW` lines.
        """

    @abc.abstractmethod
    def persist_summary(
        self,
        summary: PerformanceSummary,
        metadata: dict[str, Any],
    ) -> Path:
        """Store a computed summary together with its run metadata."""


class LocalArtifactSink(ArtifactSink):
    """Filesystem-backed :class:`ArtifactSink`.

    Parameters
    ----------
    output_dir : str or Path
        Root directory for uploads and reports.
    game_name : str
        Name recorded in persisted reports.
    """

    def __init__(self, output_dir: str | Path, game_name: str = "unknown") -> None:
        self.output_dir = Path(output_dir)
        self.upload_dir = self.output_dir / "uploads"
        self.game_name = game_name
        self._reports = ReportGenerator(self.output_dir / "reports")
        self._status_lock = threading.Lock()
        self._status: dict[str, deque[str]] = {}

    def upload_file(self, path: str | Path, caption: str = "") -> None:
        """Copy ``path`` into the upload directory.

        Failures are logged and swallowed: publishing is best-effort.
        """
        src = Path(path)
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
            dest = self.upload_dir / src.name
            if src.resolve() != dest.resolve():
                shutil.copy2(src, dest)
        except OSError as exc:
            logger.error("Failed to upload %s: %s", src, exc)
            return
        logger.info("Uploaded %s%s", src.name, f" ({caption})" if caption else "")

    def update_status(self, status_id: str, text: str) -> str:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._status_lock:
            lines = self._status.setdefault(status_id, deque(maxlen=STATUS_WINDOW))
            lines.append(f"[{stamp}] {text}")
            content = "\n".join(lines)
        logger.info("[status %s] %s", status_id, text)
        return content

    def status(self, status_id: str) -> str:
        """Return the current text of status message ``status_id``."""
        with self._status_lock:
            return "\n".join(self._status.get(status_id, ()))

    def persist_summary(
        self,
        summary: PerformanceSummary,
        metadata: dict[str, Any],
    ) -> Path:
        image_path: Optional[str] = metadata.get("image_path")
        report = PerformanceReport(
            summary=summary,
            csv_name=str(metadata.get("csv_name", "")),
            game=str(metadata.get("game", self.game_name)),
            files=[str(f) for f in metadata.get("files", [])],
            image_path=str(image_path) if image_path else None,
        )
        out_path = self._reports.save(report)
        logger.info("Persisted performance report %s", out_path)
        return out_path
