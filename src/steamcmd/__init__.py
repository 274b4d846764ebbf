"""SteamCMD subsystem — drive the SteamCMD console through login and commands.

Typical usage::

    from src.steamcmd import ConsoleChannel, InteractiveSession

    session = InteractiveSession(
        "steamcmd/steamcmd.sh", "steamcmd", "user", "password", ConsoleChannel()
    )
    session.start()
    session.update_game("480", beta_branch="nightly")
    session.close()
"""

from src.steamcmd.channel import ConsoleChannel, HumanChannel
from src.steamcmd.protocol import LineEvent, classify_line
from src.steamcmd.session import InteractiveSession, SessionState, SteamCMDError
from src.steamcmd.stream import LineStream, PtyLineStream

__all__ = [
    "ConsoleChannel",
    "HumanChannel",
    "InteractiveSession",
    "LineEvent",
    "LineStream",
    "PtyLineStream",
    "SessionState",
    "SteamCMDError",
    "classify_line",
]
