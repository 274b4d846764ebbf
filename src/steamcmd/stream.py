"""Line streams — run a console tool on a pseudo-terminal, read it line by line.

SteamCMD only behaves interactively (Steam Guard prompts, the
``Steam>`` prompt) when attached to a terminal, so the default
:class:`PtyLineStream` spawns it on a pty.  A dedicated reader thread
turns raw output into complete lines and queues them; exactly one
consumer drains the queue through :meth:`LineStream.lines`.

Prompts are not newline-terminated.  The reader therefore flushes a
trailing partial line once the tool has been silent for
``idle_flush_s`` seconds.
"""

from __future__ import annotations

import abc
import codecs
import logging
import os
import queue
import re
import select
import subprocess
import sys
import threading
from pathlib import Path
from typing import Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

# CSI / OSC escape sequences emitted by terminal-aware tools.
_ANSI_RE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]|\x1b\][^\x07]*\x07|\x1b[@-Z\\-_]")

_EOF = None


class LineStream(abc.ABC):
    """A child process whose combined output is consumed as text lines."""

    @abc.abstractmethod
    def start(
        self,
        executable: str | Path,
        args: Sequence[str],
        working_dir: str | Path,
    ) -> int:
        """Spawn the process and return its PID.

        Raises
        ------
        OSError
            If the executable cannot be launched.
        """

    @abc.abstractmethod
    def lines(self) -> Iterator[str]:
        """Yield output lines in order; returns once the process exits."""

    @abc.abstractmethod
    def write_line(self, text: str) -> None:
        """Send ``text`` followed by a newline to the process."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Terminate the process.  Safe to call more than once."""

    @property
    @abc.abstractmethod
    def exit_code(self) -> Optional[int]:
        """Exit code once the process has exited, else ``None``."""


class PtyLineStream(LineStream):
    """:class:`LineStream` on a POSIX pseudo-terminal.

    Parameters
    ----------
    idle_flush_s : float
        Silence after which a partial line (typically a prompt) is
        delivered without its newline.
    read_size : int
        Maximum bytes per read from the pty.
    """

    def __init__(self, idle_flush_s: float = 0.25, read_size: int = 4096) -> None:
        self.idle_flush_s = idle_flush_s
        self.read_size = read_size
        self._process: subprocess.Popen | None = None
        self._master_fd: int | None = None
        self._queue: queue.Queue[Optional[str]] = queue.Queue()
        self._reader: threading.Thread | None = None
        self._write_lock = threading.Lock()

    def start(
        self,
        executable: str | Path,
        args: Sequence[str],
        working_dir: str | Path,
    ) -> int:
        if sys.platform == "win32":
            raise OSError("PtyLineStream requires a POSIX pseudo-terminal")

        import pty
        import termios

        master_fd, slave_fd = pty.openpty()

        # No echo: typed codes and credentials must not come back as output.
        attrs = termios.tcgetattr(slave_fd)
        attrs[3] &= ~termios.ECHO
        termios.tcsetattr(slave_fd, termios.TCSANOW, attrs)

        try:
            self._process = subprocess.Popen(
                [str(executable), *args],
                cwd=str(working_dir),
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                start_new_session=True,
                close_fds=True,
            )
        except OSError:
            os.close(master_fd)
            raise
        finally:
            os.close(slave_fd)

        self._master_fd = master_fd
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"pty-reader-{self._process.pid}",
            daemon=True,
        )
        self._reader.start()
        logger.info("Spawned %s on a pty (PID %d)", executable, self._process.pid)
        return self._process.pid

    def lines(self) -> Iterator[str]:
        while True:
            line = self._queue.get()
            if line is _EOF:
                return
            yield line

    def write_line(self, text: str) -> None:
        if self._master_fd is None:
            raise OSError("stream not started")
        data = (text + "\n").encode("utf-8")
        with self._write_lock:
            while data:
                written = os.write(self._master_fd, data)
                data = data[written:]

    def stop(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return

        logger.info("Terminating PID %d", process.pid)
        process.terminate()
        try:
            process.wait(timeout=10)
        except subprocess.TimeoutExpired:
            logger.warning("Forceful termination of PID %d", process.pid)
            process.kill()
            process.wait(timeout=5)

        if self._reader is not None:
            self._reader.join(timeout=5)

    @property
    def exit_code(self) -> Optional[int]:
        if self._process is None:
            return None
        return self._process.poll()

    # -- Internal -------------------------------------------------------

    def _emit(self, line: str) -> None:
        self._queue.put(_ANSI_RE.sub("", line).replace("\r", ""))

    def _read_loop(self) -> None:
        fd = self._master_fd
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        try:
            while True:
                ready, _, _ = select.select([fd], [], [], self.idle_flush_s)
                if not ready:
                    if buffer:
                        self._emit(buffer)
                        buffer = ""
                    continue
                try:
                    chunk = os.read(fd, self.read_size)
                except OSError:
                    # EIO once the slave side is closed by the exiting child.
                    break
                if not chunk:
                    break
                buffer += decoder.decode(chunk)
                *complete, buffer = buffer.split("\n")
                for line in complete:
                    self._emit(line)
        finally:
            buffer += decoder.decode(b"", final=True)
            if buffer:
                self._emit(buffer)
            os.close(fd)
            self._master_fd = None
            if self._process is not None:
                self._process.wait()
                logger.info(
                    "PID %d exited with code %s",
                    self._process.pid,
                    self._process.returncode,
                )
            self._queue.put(_EOF)
