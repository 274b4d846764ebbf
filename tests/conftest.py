"""Shared pytest fixtures for the profile-server test suite.

Provides in-memory stand-ins for the SteamCMD process and the operator
channel so session tests run without SteamCMD, a terminal, or a human.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

import pytest

from src.steamcmd.channel import HumanChannel
from src.steamcmd.stream import LineStream

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it holds or ``timeout`` expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeLineStream(LineStream):
    """Scripted SteamCMD.

    Lines pushed with :meth:`feed` are yielded by :meth:`lines`.  An
    optional ``responder`` maps every written line to the output lines
    SteamCMD would print in reply.  Writing ``quit`` ends the stream.
    """

    def __init__(self, responder: Optional[Callable[[str], Sequence[str]]] = None):
        self.responder = responder
        self.writes: list[str] = []
        self.started_with = None
        self.start_error: Optional[OSError] = None
        self.stopped = False
        self._queue: queue.Queue = queue.Queue()
        self._lock = threading.Lock()

    def start(self, executable, args, working_dir) -> int:
        if self.start_error is not None:
            raise self.start_error
        self.started_with = (Path(executable), list(args), Path(working_dir))
        return 4242

    def lines(self) -> Iterator[str]:
        while True:
            item = self._queue.get()
            if item is None:
                return
            yield item

    def feed(self, *lines: str) -> None:
        for line in lines:
            self._queue.put(line)

    def finish(self) -> None:
        self._queue.put(None)

    def write_line(self, text: str) -> None:
        with self._lock:
            self.writes.append(text)
        if text == "quit":
            self.finish()
            return
        if self.responder is not None:
            self.feed(*self.responder(text))

    def stop(self) -> None:
        if not self.stopped:
            self.stopped = True
            self.finish()

    @property
    def exit_code(self) -> Optional[int]:
        return 0 if self.stopped else None


class FakeChannel(HumanChannel):
    """Operator stand-in returning a fixed Steam Guard code."""

    def __init__(self, code: str = "ABCDE"):
        self.code = code
        self.prompts: list[str] = []
        self.notices: list[str] = []

    def request_code(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.code

    def notify(self, text: str) -> None:
        self.notices.append(text)


def command_responder(text: str) -> list[str]:
    """Answer every command with one output line and a fresh prompt."""
    return [f"output of {text}", "Steam>"]


LOGIN_OK = ("Logging in user 'bot' to Steam Public...OK", "Waiting for user info...OK", "Steam>")

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_stream() -> FakeLineStream:
    return FakeLineStream(responder=command_responder)


@pytest.fixture
def fake_channel() -> FakeChannel:
    return FakeChannel()
