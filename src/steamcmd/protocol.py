"""SteamCMD console output classification.

SteamCMD has no machine-readable interface; its human-oriented console
output is the protocol.  All knowledge of that output lives in
:func:`classify_line` so a change in a SteamCMD release only touches
this module.
"""

from __future__ import annotations

import enum

PROMPT_MARKER = "Steam>"
TWO_FACTOR_MARKER = "Two-factor code:"
MOBILE_CONFIRMATION_MARKERS = ("confirm the login", "mobile app")
USER_INFO_MARKER = "Waiting for user info"


class LineEvent(enum.Enum):
    """What a line of SteamCMD output means for the session."""

    OUTPUT = "output"
    TWO_FACTOR_PROMPT = "two_factor_prompt"
    MOBILE_CONFIRMATION = "mobile_confirmation"
    AUTHENTICATED = "authenticated"
    CODE_MISMATCH = "code_mismatch"
    LOGIN_FAILED = "login_failed"
    PROMPT = "prompt"


def _is_authenticated(line: str, previous_line: str) -> bool:
    if USER_INFO_MARKER in line:
        # "Waiting for user info...OK" on one line.
        return "OK" in line.split(USER_INFO_MARKER, 1)[1]
    return USER_INFO_MARKER in previous_line and "OK" in line


def classify_line(line: str, previous_line: str = "") -> LineEvent:
    """Map one output line to a :class:`LineEvent`.

    Parameters
    ----------
    line : str
        The current line, without its line terminator.
    previous_line : str
        The line received immediately before ``line``.  Needed because
        the ``OK`` of a login step may arrive as its own line.

    Returns
    -------
    LineEvent
        The most specific event matching ``line``.  ``LOGIN_FAILED``
        only ends the session while it is still logging in.
    """
    if TWO_FACTOR_MARKER in line:
        return LineEvent.TWO_FACTOR_PROMPT
    if "FAILED" in line:
        if "code mismatch" in line.lower():
            return LineEvent.CODE_MISMATCH
        return LineEvent.LOGIN_FAILED
    if all(marker in line.lower() for marker in MOBILE_CONFIRMATION_MARKERS):
        return LineEvent.MOBILE_CONFIRMATION
    if _is_authenticated(line, previous_line):
        return LineEvent.AUTHENTICATED
    if line.lstrip().startswith(PROMPT_MARKER):
        return LineEvent.PROMPT
    return LineEvent.OUTPUT


def login_command(username: str, password: str) -> str:
    """Return the interactive ``login`` command line."""
    return f"login {username} {password}"


def app_update_command(
    app_id: str,
    beta_branch: str | None = None,
    validate: bool = False,
) -> str:
    """Return the ``app_update`` command line for ``app_id``."""
    parts = ["app_update", str(app_id)]
    if beta_branch:
        parts += ["-beta", beta_branch]
    if validate:
        parts.append("validate")
    return " ".join(parts)
