"""Profile runner -- update, launch and profile the game on request.

Holds the long-lived :class:`~src.steamcmd.session.InteractiveSession`
and at most one running :class:`~src.profiling.game_session.GameSession`.
Each operation reports its progress to one status message on the
artifact sink and turns expected failures into status text rather than
exceptions.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Optional

from src.profiling.config import ProfileConfig
from src.profiling.game_session import GameSession, GameSessionError
from src.profiling.performance import PerformanceExtractor
from src.profiling.trace_server import ensure_trace_server
from src.profiling.traces import TraceCollector
from src.reporting.sink import ArtifactSink
from src.steamcmd.channel import HumanChannel
from src.steamcmd.session import InteractiveSession, SteamCMDError
from src.steamcmd.stream import LineStream

logger = logging.getLogger(__name__)

# Failures an operation reports as status text instead of raising.
_REPORTED_ERRORS = (SteamCMDError, GameSessionError, OSError, ValueError)


class ProfileRunner:
    """Runs the update / run / stop operations for one configured game.

    Parameters
    ----------
    config : ProfileConfig
        Loop configuration.
    sink : ArtifactSink
        Receives status lines, uploads and summaries.
    channel : HumanChannel
        Operator channel for Steam Guard.
    stream_factory : Callable[[], LineStream], optional
        Builds the SteamCMD line stream; defaults to a pty stream.
    """

    def __init__(
        self,
        config: ProfileConfig,
        sink: ArtifactSink,
        channel: HumanChannel,
        stream_factory: Optional[Callable[[], LineStream]] = None,
    ) -> None:
        self.config = config
        self.sink = sink
        self.channel = channel
        self._stream_factory = stream_factory
        self._steamcmd: InteractiveSession | None = None
        self._game: GameSession | None = None
        # Set from run_game entry until the game session has fully finished.
        self._game_busy = False
        self._lock = threading.Lock()

    # -- Operations ------------------------------------------------------

    def execute(
        self,
        name: str,
        action: Callable[[str], bool],
        status_id: str | None = None,
    ) -> bool:
        """Run ``action`` with status reporting.

        Parameters
        ----------
        name : str
            Operation name shown in status text.
        action : Callable[[str], bool]
            Receives the status id, returns success.
        status_id : str, optional
            Status message to report to; defaults to ``name``.
        """
        status_id = status_id or name
        self.sink.update_status(status_id, f"{name} - Executing command...")
        try:
            success = action(status_id)
        except _REPORTED_ERRORS as exc:
            logger.error("%s failed: %s", name, exc, exc_info=True)
            self.sink.update_status(
                status_id, f"An error occurred while executing {name}: {exc}"
            )
            return False

        outcome = "successful" if success else "failed"
        logger.info("%s: command execution %s", name, outcome)
        self.sink.update_status(status_id, f"{name} - Command execution {outcome}")
        return success

    def update_game(self, status_id: str = "update-game") -> bool:
        """Update the game through SteamCMD."""
        return self.execute("update-game", self._update_game, status_id)

    def run_game(self, status_id: str = "run-game") -> bool:
        """Launch the game and collect its telemetry."""
        return self.execute("run-game", self._run_game, status_id)

    def stop_game(self, status_id: str = "stop-game") -> bool:
        """Force-stop the running game."""
        return self.execute("stop-game", self._stop_game, status_id)

    def run_steam_command(self, command: str, status_id: str = "steam-command") -> bool:
        """Run an arbitrary SteamCMD command."""
        return self.execute(
            "steam-command",
            lambda _status: self.steamcmd.run_command(command),
            status_id,
        )

    def close(self) -> None:
        """Stop the game if running and quit SteamCMD."""
        with self._lock:
            game, steamcmd = self._game, self._steamcmd
        if game is not None:
            game.stop()
        if steamcmd is not None:
            steamcmd.close()

    # -- Internals -------------------------------------------------------

    @property
    def steamcmd(self) -> InteractiveSession:
        """The SteamCMD session, started on first use."""
        with self._lock:
            if self._steamcmd is None:
                stream = self._stream_factory() if self._stream_factory else None
                session = InteractiveSession.from_config(self.config, self.channel, stream)
                session.start()
                self._steamcmd = session
            return self._steamcmd

    @property
    def game(self) -> GameSession | None:
        """The most recent game session, if any."""
        with self._lock:
            return self._game

    def _update_game(self, status_id: str) -> bool:
        if not self.config.app_id:
            self.sink.update_status(status_id, "No app_id configured.")
            return False
        self.sink.update_status(status_id, f"Updating app {self.config.app_id}...")
        return self.steamcmd.update_game(self.config.app_id, self.config.beta_branch)

    def _run_game(self, status_id: str) -> bool:
        with self._lock:
            if self._game_busy:
                self.sink.update_status(status_id, "Game is already running.")
                return False
            self._game_busy = True

        try:
            if self.config.trace_server_path:
                ensure_trace_server(self.config.trace_server_path)

            game = GameSession.from_config(
                self.config,
                self.sink,
                status_id=status_id,
                trace_collector=TraceCollector.from_config(self.config, self.sink),
                performance_extractor=PerformanceExtractor.from_config(self.config, self.sink),
            )
            with self._lock:
                self._game = game
            return game.run()
        finally:
            with self._lock:
                self._game_busy = False

    def _stop_game(self, status_id: str) -> bool:
        game = self.game
        if game is None or not game.stop():
            self.sink.update_status(status_id, "No game running.")
            return False
        self.sink.update_status(status_id, "Game force stopped.")
        return True
