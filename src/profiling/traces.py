"""Trace collection — claim the ``.utrace`` files written during a game run.

Trace files are named after their creation time
(``20250519_101502.utrace``).  Stripping every non-digit from the stem
yields ``yyyyMMddHHmmss``.  A trace belongs to a game session only if
that timestamp is strictly after the session's start time.

Claiming *moves* the file into the output directory, so a trace is
never collected twice.  Claimed traces can additionally be committed
to a git work tree by :class:`TraceArchiver`.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from src.reporting.sink import ArtifactSink

logger = logging.getLogger(__name__)

TRACE_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"
TRACE_PATTERN = "*.utrace"

# Traces above this size are not archived (git hosts reject them).
DEFAULT_ARCHIVE_SIZE_LIMIT = 100 * 1024 * 1024

_NON_DIGITS_RE = re.compile(r"\D")


@dataclass
class TraceArtifact:
    """A trace file and what is known about it.

    Attributes
    ----------
    path : Path
        Current location (inside the output directory once claimed).
    timestamp : datetime
        Creation time parsed from the file name.
    size_bytes : int
        File size.
    claimed : bool
        Whether the file has been moved out of the trace directory.
    """

    path: Path
    timestamp: datetime
    size_bytes: int
    claimed: bool = False


def parse_trace_timestamp(path: str | Path) -> Optional[datetime]:
    """Parse the creation time encoded in a trace file name.

    Returns ``None`` when the digits do not form a valid
    ``yyyyMMddHHmmss`` timestamp.
    """
    digits = _NON_DIGITS_RE.sub("", Path(path).stem)
    if len(digits) != 14:
        return None
    try:
        return datetime.strptime(digits, TRACE_TIMESTAMP_FORMAT)
    except ValueError:
        return None


class TraceArchiver:
    """Commits claimed traces to a git work tree.

    Failures never propagate: they are logged and reported to the sink
    so collection always completes.

    Parameters
    ----------
    repo_dir : str or Path
        Git work tree the traces live in.
    sink : ArtifactSink
        Receives failure and skip notices.
    size_limit_bytes : int
        Larger traces are skipped with a warning.
    git : str
        git executable.
    """

    def __init__(
        self,
        repo_dir: str | Path,
        sink: ArtifactSink,
        size_limit_bytes: int = DEFAULT_ARCHIVE_SIZE_LIMIT,
        git: str = "git",
    ) -> None:
        self.repo_dir = Path(repo_dir)
        self.sink = sink
        self.size_limit_bytes = size_limit_bytes
        self.git = git

    def archive(self, artifacts: Sequence[TraceArtifact], status_id: str) -> list[Path]:
        """Add and commit ``artifacts``; return the paths that were committed."""
        eligible: list[Path] = []
        for artifact in artifacts:
            if artifact.size_bytes > self.size_limit_bytes:
                size_mb = artifact.size_bytes / (1024 * 1024)
                logger.warning(
                    "Skipping archival of %s: %.1f MB exceeds limit",
                    artifact.path.name,
                    size_mb,
                )
                self.sink.update_status(
                    status_id,
                    f"Trace {artifact.path.name} ({size_mb:.1f} MB) too large to archive.",
                )
                continue
            eligible.append(artifact.path)

        if not eligible:
            return []

        names = ", ".join(p.name for p in eligible)
        try:
            self._git("add", "--", *(str(p.resolve()) for p in eligible))
            self._git("commit", "-m", f"Add traces {names}")
        except (OSError, subprocess.CalledProcessError) as exc:
            detail = getattr(exc, "stderr", None) or str(exc)
            logger.error("Archiving traces failed: %s", detail)
            self.sink.update_status(status_id, f"Archiving traces failed: {detail}")
            return []

        logger.info("Archived %d trace(s) in %s", len(eligible), self.repo_dir)
        self.sink.update_status(status_id, f"Archived {len(eligible)} trace(s).")
        return eligible

    def _git(self, *args: str) -> subprocess.CompletedProcess:
        return subprocess.run(
            [self.git, "-C", str(self.repo_dir), *args],
            capture_output=True,
            text=True,
            check=True,
        )


class TraceCollector:
    """Finds, claims and publishes the traces of one game session.

    Parameters
    ----------
    trace_dir : str or Path
        Directory traces are written to.  Created on demand.
    output_dir : str or Path
        Directory claimed traces are moved into.  Created on demand.
    sink : ArtifactSink
        Receives claimed traces and status lines.
    archiver : TraceArchiver, optional
        Commits claimed traces when set.
    """

    def __init__(
        self,
        trace_dir: str | Path,
        output_dir: str | Path,
        sink: ArtifactSink,
        archiver: Optional[TraceArchiver] = None,
    ) -> None:
        self.trace_dir = Path(trace_dir)
        self.output_dir = Path(output_dir)
        self.sink = sink
        self.archiver = archiver

    @classmethod
    def from_config(cls, config, sink: ArtifactSink) -> "TraceCollector":
        """Build a collector from a :class:`~src.profiling.config.ProfileConfig`."""
        archiver = None
        if config.archive_enabled:
            archiver = TraceArchiver(
                config.archive_path,
                sink,
                size_limit_bytes=int(config.archive_size_limit_mb * 1024 * 1024),
            )
        return cls(config.trace_dir, config.output_dir / "traces", sink, archiver)

    def find_eligible(self, start_time: datetime) -> list[TraceArtifact]:
        """Return unclaimed traces created strictly after ``start_time``."""
        self.trace_dir.mkdir(parents=True, exist_ok=True)

        eligible = []
        for path in sorted(self.trace_dir.glob(TRACE_PATTERN)):
            timestamp = parse_trace_timestamp(path)
            if timestamp is None:
                logger.debug("Ignoring trace with unparseable name: %s", path.name)
                continue
            if timestamp <= start_time:
                continue
            eligible.append(TraceArtifact(path, timestamp, path.stat().st_size))
        return eligible

    def claim(self, artifact: TraceArtifact) -> bool:
        """Move ``artifact`` into the output directory.

        Returns ``False`` if the file disappeared before it could be
        moved (someone else claimed it).
        """
        if artifact.claimed:
            return False
        self.output_dir.mkdir(parents=True, exist_ok=True)
        dest = self.output_dir / artifact.path.name
        try:
            shutil.move(str(artifact.path), str(dest))
        except FileNotFoundError:
            logger.warning("Trace %s vanished before it was claimed", artifact.path)
            return False
        artifact.path = dest
        artifact.claimed = True
        return True

    def collect(self, session) -> list[TraceArtifact]:
        """Claim, publish and optionally archive the traces of ``session``.

        Parameters
        ----------
        session : GameSession
            Provides ``start_time`` and ``status_id``.

        Returns
        -------
        list[TraceArtifact]
            Traces claimed by this call.
        """
        status_id = session.status_id
        artifacts = self.find_eligible(session.start_time)
        if not artifacts:
            logger.warning("No new traces in %s", self.trace_dir)
            self.sink.update_status(status_id, "No trace files found.")
            return []

        claimed = [a for a in artifacts if self.claim(a)]
        for artifact in claimed:
            logger.info("Claimed trace %s", artifact.path.name)
            self.sink.upload_file(artifact.path, f"Trace {artifact.path.name}")
        self.sink.update_status(status_id, f"Collected {len(claimed)} trace file(s).")

        if self.archiver is not None and claimed:
            self.archiver.archive(claimed, status_id)
        return claimed
