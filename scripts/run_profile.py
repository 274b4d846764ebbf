#!/usr/bin/env python
"""CLI entry point -- update the game, run it, and summarise its telemetry.

Examples::

    # Update the game through SteamCMD (prompts for Steam Guard codes):
    python scripts/run_profile.py --config configs/example.yaml update

    # Launch the game once and collect traces + CSV summaries:
    python scripts/run_profile.py --config configs/example.yaml run

    # Update first, then profile:
    python scripts/run_profile.py --config configs/example.yaml update run

    # Run a raw SteamCMD command:
    python scripts/run_profile.py --config configs/example.yaml command "app_status 480"

Credentials are usually supplied through ``${STEAM_USERNAME}`` /
``${STEAM_PASSWORD}`` references in the YAML config.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

logger = logging.getLogger(__name__)

_OPERATIONS = ("update", "run", "command")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Parameters
    ----------
    argv : list[str] or None
        Command-line arguments.  If None, uses ``sys.argv[1:]``.

    Returns
    -------
    argparse.Namespace
        Parsed arguments.
    """
    parser = argparse.ArgumentParser(
        description="Update, launch and profile a game, then summarise its telemetry.",
    )
    parser.add_argument(
        "operations",
        nargs="+",
        help=(
            "Operations to run in order: 'update', 'run', or 'command' "
            "followed by a SteamCMD command line."
        ),
    )
    parser.add_argument(
        "--config",
        type=str,
        required=True,
        help="Path to a profile config YAML, or a config name under configs/.",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Override the config's output directory for uploads and reports.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args(argv)

    steps: list[tuple[str, str | None]] = []
    tokens = list(args.operations)
    while tokens:
        op = tokens.pop(0)
        if op not in _OPERATIONS:
            parser.error(f"unknown operation {op!r}, expected one of {list(_OPERATIONS)}")
        if op == "command":
            if not tokens:
                parser.error("'command' requires a SteamCMD command line")
            steps.append((op, tokens.pop(0)))
        else:
            steps.append((op, None))
    args.steps = steps
    return args


def main(argv: list[str] | None = None) -> int:
    """Run the requested operations.

    Returns
    -------
    int
        Exit code (0 when every operation succeeded).
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    from src.orchestrator import ProfileRunner
    from src.profiling.config import load_profile_config
    from src.reporting.sink import LocalArtifactSink
    from src.steamcmd.channel import ConsoleChannel

    config = load_profile_config(args.config)
    output_dir = Path(args.output_dir) if args.output_dir else config.output_dir
    sink = LocalArtifactSink(output_dir, game_name=config.name)
    runner = ProfileRunner(config, sink, ConsoleChannel())

    ok = True
    try:
        for op, value in args.steps:
            if op == "update":
                ok = runner.update_game() and ok
            elif op == "run":
                ok = runner.run_game() and ok
            else:
                ok = runner.run_steam_command(value) and ok
    except KeyboardInterrupt:
        logger.warning("Interrupted, stopping")
        runner.stop_game()
        ok = False
    finally:
        runner.close()

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
