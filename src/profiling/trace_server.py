"""Trace server supervision.

``.utrace`` files are recorded by a trace server (Unreal Insights) that
must be running before the game starts.  :func:`ensure_trace_server`
finds it by process name via ``psutil`` and starts it when absent.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

import psutil

logger = logging.getLogger(__name__)


def find_trace_server(executable: str | Path) -> Optional[psutil.Process]:
    """Return a running process whose name matches ``executable``'s stem."""
    stem = Path(executable).stem.lower()
    for proc in psutil.process_iter(["name"]):
        name = (proc.info.get("name") or "").lower()
        if name and Path(name).stem == stem:
            return proc
    return None


def ensure_trace_server(executable: str | Path) -> psutil.Process:
    """Make sure the trace server is running.

    Parameters
    ----------
    executable : str or Path
        Trace server binary.

    Returns
    -------
    psutil.Process
        The already running or newly started process.

    Raises
    ------
    FileNotFoundError
        If the server is not running and ``executable`` does not exist.
    """
    running = find_trace_server(executable)
    if running is not None:
        logger.info("Trace server already running (PID %d)", running.pid)
        return running

    path = Path(executable)
    if not path.is_file():
        raise FileNotFoundError(f"Trace server executable not found at: {path}")

    logger.info("Trace server not running, starting %s", path)
    process = subprocess.Popen(
        [str(path)],
        cwd=str(path.parent),
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    return psutil.Process(process.pid)
