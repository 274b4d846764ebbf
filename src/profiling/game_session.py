"""Game session — launch the profiled game, wait for it, collect telemetry.

A :class:`GameSession` runs exactly once:

1. record :attr:`GameSession.start_time` and snapshot the CSV log dir,
2. wait ``startup_delay_s`` so every trace written by this run carries a
   timestamp strictly after the start time,
3. start the game and poll until it exits,
4. wait ``flush_delay_s`` for the game to finish writing telemetry,
5. hand over to the :class:`~src.profiling.traces.TraceCollector` and
   :class:`~src.profiling.performance.PerformanceExtractor`.

A non-zero exit code is reported as a warning; telemetry is collected
regardless.  :meth:`GameSession.stop` during the startup delay cancels
the launch.
"""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from src.reporting.sink import ArtifactSink

logger = logging.getLogger(__name__)


class GameSessionState(enum.Enum):
    """Lifecycle of a :class:`GameSession`."""

    NOT_STARTED = "not_started"
    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


class GameSessionError(Exception):
    """Raised when the game process cannot be launched."""


class GameSession:
    """Supervises one run of the profiled game.

    Parameters
    ----------
    executable : str or Path
        Game binary.
    working_dir : str or Path
        Working directory of the game process.
    sink : ArtifactSink
        Receives status lines (and, via the collectors, artifacts).
    args : Sequence[str]
        Launch arguments.
    status_id : str
        Status message the session reports progress to.
    trace_collector : TraceCollector, optional
        Claims ``.utrace`` files after exit.
    performance_extractor : PerformanceExtractor, optional
        Summarises CSV telemetry after exit.
    startup_delay_s, flush_delay_s, poll_interval_s : float
        Timing knobs, see module docstring.
    """

    def __init__(
        self,
        executable: str | Path,
        working_dir: str | Path,
        sink: ArtifactSink,
        args: Sequence[str] = (),
        status_id: str = "run-game",
        trace_collector=None,
        performance_extractor=None,
        startup_delay_s: float = 1.0,
        flush_delay_s: float = 5.0,
        poll_interval_s: float = 0.1,
    ) -> None:
        self.executable = Path(executable)
        self.working_dir = Path(working_dir)
        self.args = list(args)
        self.sink = sink
        self.status_id = status_id
        self.trace_collector = trace_collector
        self.performance_extractor = performance_extractor
        self.startup_delay_s = startup_delay_s
        self.flush_delay_s = flush_delay_s
        self.poll_interval_s = poll_interval_s

        self._lock = threading.Lock()
        self._state = GameSessionState.NOT_STARTED
        self._cancelled = threading.Event()
        self._process: subprocess.Popen | None = None
        self._exit_code: Optional[int] = None
        self.start_time: Optional[datetime] = None

    @classmethod
    def from_config(
        cls,
        config,
        sink: ArtifactSink,
        status_id: str = "run-game",
        trace_collector=None,
        performance_extractor=None,
    ) -> "GameSession":
        """Build a session from a :class:`~src.profiling.config.ProfileConfig`."""
        return cls(
            executable=config.game_binary,
            working_dir=config.game_dir,
            sink=sink,
            args=config.game_args,
            status_id=status_id,
            trace_collector=trace_collector,
            performance_extractor=performance_extractor,
            startup_delay_s=config.startup_delay_s,
            flush_delay_s=config.flush_delay_s,
            poll_interval_s=config.poll_interval_s,
        )

    # -- Properties ----------------------------------------------------

    @property
    def state(self) -> GameSessionState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        return self.state is GameSessionState.RUNNING

    @property
    def exit_code(self) -> Optional[int]:
        """Process exit code, ``None`` until the game has exited."""
        with self._lock:
            return self._exit_code

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            return self._process.pid if self._process is not None else None

    # -- Lifecycle -----------------------------------------------------

    def run(self) -> bool:
        """Run the game to completion and collect its telemetry.

        Returns
        -------
        bool
            ``True`` if the game exited with code 0, ``False`` if it
            failed or the launch was cancelled by :meth:`stop`.

        Raises
        ------
        GameSessionError
            If the session already ran or the game cannot be launched.
        """
        with self._lock:
            if self._state is not GameSessionState.NOT_STARTED:
                raise GameSessionError(f"Game session already {self._state.value}")
            self._state = GameSessionState.STARTING

        self.start_time = datetime.now()
        if self.performance_extractor is not None:
            self.performance_extractor.snapshot()
        if self._cancelled.wait(self.startup_delay_s):
            with self._lock:
                self._state = GameSessionState.EXITED
            logger.info("Game launch cancelled")
            self.sink.update_status(self.status_id, "Game launch cancelled.")
            return False

        self._launch()
        self.sink.update_status(self.status_id, f"Game started (PID {self.pid}).")

        exit_code = self._wait_for_exit()
        if exit_code == 0:
            self.sink.update_status(self.status_id, "Game exited with code 0.")
        else:
            logger.warning("Game exited with code %s", exit_code)
            self.sink.update_status(
                self.status_id,
                f"Game exited with code {exit_code}. Collecting telemetry anyway.",
            )

        self.sink.update_status(
            self.status_id,
            f"Waiting {self.flush_delay_s:g}s for telemetry to flush...",
        )
        time.sleep(self.flush_delay_s)

        if self.trace_collector is not None:
            self.trace_collector.collect(self)
        if self.performance_extractor is not None:
            self.performance_extractor.extract(self)

        return exit_code == 0

    def stop(self) -> bool:
        """Force-terminate the game, or cancel a launch still in its startup delay.

        Returns
        -------
        bool
            ``False`` if there was nothing to stop.
        """
        with self._lock:
            if self._state is GameSessionState.STARTING:
                logger.info("Cancelling game launch")
                self._cancelled.set()
                return True
            if self._state is not GameSessionState.RUNNING or self._process is None:
                return False
            process = self._process
        self._kill(process)
        return True

    # -- Internal -------------------------------------------------------

    def _kill(self, process: subprocess.Popen) -> None:
        pid = process.pid
        logger.info("Force stopping game (PID %d)", pid)
        try:
            if sys.platform == "win32":
                subprocess.run(
                    ["taskkill", "/F", "/T", "/PID", str(pid)],
                    capture_output=True,
                )
            else:
                os.killpg(os.getpgid(pid), signal.SIGKILL)
        except OSError as exc:
            logger.warning("Process group kill of PID %d failed (%s), killing PID", pid, exc)
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _launch(self) -> None:
        logger.info(
            "Starting game: %s %s (in %s)",
            self.executable,
            " ".join(self.args),
            self.working_dir,
        )
        kwargs: dict = dict(cwd=str(self.working_dir))
        if sys.platform == "win32":
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen([str(self.executable), *self.args], **kwargs)
        except OSError as exc:
            with self._lock:
                self._state = GameSessionState.EXITED
            raise GameSessionError(f"Could not launch {self.executable}: {exc}") from exc

        with self._lock:
            self._process = process
            self._state = GameSessionState.RUNNING
            cancelled = self._cancelled.is_set()
        logger.info("Game process PID: %d", process.pid)
        if cancelled:
            self._kill(process)

    def _wait_for_exit(self) -> int:
        process = self._process
        assert process is not None
        while process.poll() is None:
            time.sleep(self.poll_interval_s)

        with self._lock:
            self._exit_code = process.returncode
            self._state = GameSessionState.EXITED
        logger.info("Game exited with code %d", process.returncode)
        return process.returncode

    def __repr__(self) -> str:
        return f"<{type(self).__name__}({self.executable.name!r}, {self.state.value})>"
