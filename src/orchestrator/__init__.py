"""Orchestrator module -- update, run and stop operations for the profiled game.

Provides ``ProfileRunner``, which owns the SteamCMD session and the
current game session and reports each operation's progress to an
artifact sink.
"""

from .profile_runner import ProfileRunner

__all__ = [
    "ProfileRunner",
]
