"""Interactive SteamCMD session — login, Steam Guard and serialized commands.

An :class:`InteractiveSession` owns one SteamCMD process.  SteamCMD is
started with ``+login <user> <password>`` and then driven purely from
its console output:

1. Output lines are read by the :class:`~src.steamcmd.stream.LineStream`
   and handled by a single consumer thread, one line at a time.  A
   Steam Guard prompt that arrives in two chunks is therefore never
   handled while the rest of it is being processed.
2. Each line is mapped to a :class:`~src.steamcmd.protocol.LineEvent`
   by :func:`~src.steamcmd.protocol.classify_line`, which drives the
   :class:`SessionState` machine.
3. :meth:`InteractiveSession.run_command` blocks its caller until the
   session is logged in, at the ``Steam>`` prompt and it is that
   caller's turn.  Commands are written strictly in submission order
   and never overlap.

If SteamCMD exits, or its login fails, every blocked caller is released
with ``False``.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from pathlib import Path
from typing import Optional

from src.steamcmd.channel import HumanChannel
from src.steamcmd.protocol import (
    LineEvent,
    app_update_command,
    classify_line,
    login_command,
)
from src.steamcmd.stream import LineStream, PtyLineStream

logger = logging.getLogger(__name__)

# Marker SteamCMD prints when an app_update fails.
_UPDATE_ERROR_MARKER = "ERROR!"


class SessionState(enum.Enum):
    """Lifecycle of an :class:`InteractiveSession`."""

    STARTING = "starting"
    AWAITING_AUTHENTICATION = "awaiting_authentication"
    AWAITING_TWO_FACTOR = "awaiting_two_factor"
    AUTHENTICATED = "authenticated"
    IDLE = "idle"
    BUSY = "busy"
    EXITED = "exited"
    FAILED = "failed"


_TERMINAL_STATES = frozenset({SessionState.EXITED, SessionState.FAILED})
_LOGIN_STATES = frozenset(
    {
        SessionState.STARTING,
        SessionState.AWAITING_AUTHENTICATION,
        SessionState.AWAITING_TWO_FACTOR,
    }
)


class SteamCMDError(Exception):
    """Raised when SteamCMD cannot be started or a command cannot be run."""


class InteractiveSession:
    """Drives one SteamCMD process through login and a command loop.

    Parameters
    ----------
    executable : str or Path
        SteamCMD executable.
    working_dir : str or Path
        Directory SteamCMD runs in.  Created on demand.
    username, password : str
        Steam credentials.
    channel : HumanChannel
        Operator channel for Steam Guard codes and notices.
    stream : LineStream, optional
        Process adapter.  Defaults to a :class:`PtyLineStream`.
    max_login_retries : int
        Automatic ``login`` retries after a Steam Guard code mismatch.
    """

    def __init__(
        self,
        executable: str | Path,
        working_dir: str | Path,
        username: str,
        password: str,
        channel: HumanChannel,
        stream: Optional[LineStream] = None,
        max_login_retries: int = 1,
    ) -> None:
        self.executable = Path(executable)
        self.working_dir = Path(working_dir)
        self._username = username
        self._password = password
        self._channel = channel
        self._stream: LineStream = stream if stream is not None else PtyLineStream()
        self.max_login_retries = max_login_retries

        self._cond = threading.Condition()
        self._state = SessionState.STARTING
        self._authenticated = False
        self._closing = False
        self._pending: Optional[str] = None
        self._output: list[str] = []
        self._last_output: list[str] = []
        self._next_ticket = 0
        self._serving = 0
        self._abandoned: set[int] = set()
        # Tickets whose caller awaits output, and finished output until collected.
        self._waiting: set[int] = set()
        self._results: dict[int, list[str]] = {}

        self._last_line = ""
        self._login_retries = 0
        self._consumer: threading.Thread | None = None

    @classmethod
    def from_config(cls, config, channel: HumanChannel, stream: Optional[LineStream] = None):
        """Build a session from a :class:`~src.profiling.config.ProfileConfig`."""
        return cls(
            executable=config.steamcmd_binary,
            working_dir=config.steamcmd_dir,
            username=config.steam_username,
            password=config.steam_password,
            channel=channel,
            stream=stream,
        )

    # -- Properties ----------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._cond:
            return self._state

    @property
    def pending_command(self) -> Optional[str]:
        """The command currently executing, or ``None``."""
        with self._cond:
            return self._pending

    @property
    def last_output(self) -> list[str]:
        """Output lines produced by the most recently completed command."""
        with self._cond:
            return list(self._last_output)

    # -- Lifecycle -----------------------------------------------------

    def start(self) -> None:
        """Spawn SteamCMD and begin consuming its output.

        Raises
        ------
        SteamCMDError
            If the session was already started or SteamCMD cannot be
            launched.
        """
        with self._cond:
            if self._state is not SessionState.STARTING or self._consumer is not None:
                raise SteamCMDError(f"Session already started ({self._state.value})")

        self.working_dir.mkdir(parents=True, exist_ok=True)
        try:
            pid = self._stream.start(
                self.executable,
                ["+login", self._username, self._password],
                self.working_dir,
            )
        except OSError as exc:
            self._set_state(SessionState.FAILED)
            raise SteamCMDError(f"Could not launch {self.executable}: {exc}") from exc

        logger.info("SteamCMD started (PID %d), logging in as %s", pid, self._username)
        self._set_state(SessionState.AWAITING_AUTHENTICATION)

        self._consumer = threading.Thread(
            target=self._consume,
            name="steamcmd-consumer",
            daemon=True,
        )
        self._consumer.start()

    def close(self, quit_timeout_s: float = 10.0) -> None:
        """Quit SteamCMD and release any waiting callers.  Idempotent."""
        with self._cond:
            if self._state in _TERMINAL_STATES:
                return
            self._closing = True
            at_prompt = self._state is SessionState.IDLE

        if at_prompt:
            try:
                self._stream.write_line("quit")
            except OSError as exc:
                logger.debug("Could not send quit: %s", exc)
            if self._consumer is not None:
                self._consumer.join(timeout=quit_timeout_s)

        self._stream.stop()
        self._finish(failed=False)
        if self._consumer is not None and self._consumer is not threading.current_thread():
            self._consumer.join(timeout=quit_timeout_s)

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until logged in and at the prompt.

        Returns
        -------
        bool
            ``True`` once :attr:`SessionState.IDLE` or ``BUSY`` is
            reached, ``False`` if the session ended first.

        Raises
        ------
        SteamCMDError
            If ``timeout`` expires.
        """
        with self._cond:
            ok = self._cond.wait_for(
                lambda: self._state in _TERMINAL_STATES
                or self._state in (SessionState.IDLE, SessionState.BUSY),
                timeout=timeout,
            )
            if not ok:
                raise SteamCMDError(f"SteamCMD not ready after {timeout}s")
            return self._state not in _TERMINAL_STATES

    # -- Commands ------------------------------------------------------

    def run_command(self, command: str, timeout: Optional[float] = None) -> bool:
        """Run one SteamCMD command and wait for it to finish.

        Callers are served strictly in the order they called this
        method; a command is only written once the previous one has
        returned to the ``Steam>`` prompt.

        Parameters
        ----------
        command : str
            Command line, e.g. ``"app_update 480"``.
        timeout : float, optional
            Overall seconds to wait.  ``None`` waits indefinitely.

        Returns
        -------
        bool
            ``True`` when the command completed, ``False`` when the
            session exited or failed before it could.

        Raises
        ------
        SteamCMDError
            If ``timeout`` expires or the command cannot be written.
        """
        return self._run(command, timeout) is not None

    def _run(self, command: str, timeout: Optional[float]) -> Optional[list[str]]:
        """Run ``command``; return its output lines, ``None`` if the session ended."""
        deadline = None if timeout is None else time.monotonic() + timeout

        with self._cond:
            if self._state in _TERMINAL_STATES:
                logger.error("SteamCMD is not running, cannot run %r", command)
                return None

            ticket = self._next_ticket
            self._next_ticket += 1

            ready = self._cond.wait_for(
                lambda: self._state in _TERMINAL_STATES
                or (self._serving == ticket and self._state is SessionState.IDLE),
                timeout=_remaining(deadline),
            )
            if self._state in _TERMINAL_STATES:
                return None
            if not ready:
                self._abandon(ticket)
                raise SteamCMDError(f"Timed out waiting to run {command!r}")

            logger.info("[steamcmd IN] Steam>%s", command)
            self._pending = command
            self._output = []
            self._state = SessionState.BUSY
            self._waiting.add(ticket)
            try:
                self._stream.write_line(command)
            except OSError as exc:
                self._waiting.discard(ticket)
                self._pending = None
                self._state = SessionState.IDLE
                self._advance()
                raise SteamCMDError(f"Could not write {command!r}: {exc}") from exc

            done = self._cond.wait_for(
                lambda: self._serving > ticket or self._state in _TERMINAL_STATES,
                timeout=_remaining(deadline),
            )
            self._waiting.discard(ticket)
            if self._serving > ticket:
                return self._results.pop(ticket, [])
            if not done:
                raise SteamCMDError(f"Timed out waiting for {command!r} to finish")
            return None

    def update_game(
        self,
        app_id: str,
        beta_branch: Optional[str] = None,
        validate: bool = False,
        timeout: Optional[float] = None,
    ) -> bool:
        """Run ``app_update`` for ``app_id``.

        Returns
        -------
        bool
            ``True`` if the command completed without SteamCMD
            reporting an error.
        """
        command = app_update_command(app_id, beta_branch, validate)
        output = self._run(command, timeout)
        if output is None:
            return False

        errors = [line for line in output if _UPDATE_ERROR_MARKER in line]
        if errors:
            logger.warning("app_update %s reported: %s", app_id, errors[-1])
            return False
        return True

    # -- Output handling -----------------------------------------------

    def _consume(self) -> None:
        failed = False
        try:
            for line in self._stream.lines():
                if not line.strip():
                    continue
                logger.info("[steamcmd] %s", line)
                self._handle_line(line)
        except Exception:
            logger.exception("SteamCMD output handling failed")
            failed = True
            self._stream.stop()
        finally:
            self._finish(failed=failed)
            logger.info("SteamCMD exited (code %s)", self._stream.exit_code)

    def _handle_line(self, line: str) -> None:
        event = classify_line(line, self._last_line)
        self._last_line = line

        with self._cond:
            if self._state is SessionState.BUSY and event is not LineEvent.PROMPT:
                self._output.append(line)

        if event is LineEvent.TWO_FACTOR_PROMPT:
            # A prompt raised by a running command (e.g. "login") leaves it BUSY.
            with self._cond:
                if self._state in _LOGIN_STATES:
                    self._state = SessionState.AWAITING_TWO_FACTOR
                    self._cond.notify_all()
            code = self._channel.request_code(
                "Please enter the Steam Guard code for your Steam account."
            )
            self._stream.write_line(code.strip())

        elif event is LineEvent.MOBILE_CONFIRMATION:
            self._channel.notify(line.strip())

        elif event is LineEvent.AUTHENTICATED:
            with self._cond:
                if self._state in _LOGIN_STATES:
                    logger.info("SteamCMD logged in")
                    self._authenticated = True
                    self._state = SessionState.AUTHENTICATED
                    self._cond.notify_all()

        elif event is LineEvent.CODE_MISMATCH:
            self._on_code_mismatch()

        elif event is LineEvent.LOGIN_FAILED:
            with self._cond:
                logging_in = self._state in _LOGIN_STATES
            if logging_in:
                logger.error("SteamCMD login failed: %s", line.strip())
                self._channel.notify(f"SteamCMD login failed: {line.strip()}")
                self._finish(failed=True)
                self._stream.stop()

        elif event is LineEvent.PROMPT:
            with self._cond:
                if self._pending is not None:
                    logger.info("Command finished: %s", self._pending)
                    if self._serving in self._waiting:
                        self._results[self._serving] = self._output
                    self._pending = None
                    self._last_output = self._output
                    self._output = []
                    self._state = SessionState.IDLE
                    self._advance()
                elif self._state is SessionState.AUTHENTICATED:
                    self._state = SessionState.IDLE
                self._cond.notify_all()

    def _on_code_mismatch(self) -> None:
        with self._cond:
            command = self._pending
            if command is None:
                self._authenticated = False

        if command is not None:
            # The running command handles its own login; it completes at the prompt.
            logger.warning("Steam Guard code mismatch while running %r", command)
            self._channel.notify(f"Steam Guard code rejected while running {command!r}.")
            return

        if self._login_retries < self.max_login_retries:
            self._login_retries += 1
            logger.warning(
                "Steam Guard code mismatch, retrying login (%d/%d)",
                self._login_retries,
                self.max_login_retries,
            )
            self._set_state(SessionState.AWAITING_AUTHENTICATION)
            self._stream.write_line(login_command(self._username, self._password))
            return

        logger.error("Steam Guard code mismatch, giving up on login")
        self._channel.notify("SteamCMD login failed: Steam Guard code rejected.")
        self._finish(failed=True)
        self._stream.stop()

    # -- Internal -------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        with self._cond:
            if self._state in _TERMINAL_STATES:
                return
            self._state = state
            self._cond.notify_all()

    def _finish(self, failed: bool) -> None:
        """Enter a terminal state and wake every waiting caller."""
        with self._cond:
            if self._state in _TERMINAL_STATES:
                return
            if failed or not (self._authenticated or self._closing):
                self._state = SessionState.FAILED
            else:
                self._state = SessionState.EXITED
            if self._pending is not None:
                logger.warning("SteamCMD ended while running %r", self._pending)
            self._pending = None
            self._cond.notify_all()

    def _advance(self) -> None:
        """Hand the prompt to the next caller that is still waiting."""
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1

    def _abandon(self, ticket: int) -> None:
        if ticket == self._serving:
            self._advance()
        else:
            self._abandoned.add(ticket)
        self._cond.notify_all()

    def __repr__(self) -> str:
        return f"<{type(self).__name__}({self._username!r}, {self.state.value})>"


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())
