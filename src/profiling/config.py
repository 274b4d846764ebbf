"""Profile server configuration data structures.

A :class:`ProfileConfig` describes everything the profiling loop needs
to know: where SteamCMD lives and which credentials it logs in with,
which game binary to launch, where the game writes its traces and CSV
logs, and what to do with the collected artifacts.

Configs are loaded from YAML files via :func:`load_profile_config`.
String values support environment variable expansion using ``$VAR`` or
``${VAR}`` syntax (so credentials can stay out of the file), as well as
``~`` for the user home directory.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

# Default search path for profile config YAML files.
_CONFIGS_DIR = Path(__file__).resolve().parent.parent.parent / "configs"

# Pattern matching $VAR or ${VAR} for environment variable expansion.
_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")

_PATH_FIELDS = (
    "steamcmd_dir",
    "game_dir",
    "trace_dir",
    "output_dir",
    "log_dir",
)


@dataclass
class ProfileConfig:
    """Declarative description of one update/launch/profile loop.

    Parameters
    ----------
    name : str
        Human-readable identifier for the profiled game.
    steamcmd_path : str
        Path to the SteamCMD executable, relative to ``steamcmd_dir``
        or absolute.
    steamcmd_dir : str or Path
        Working directory for SteamCMD.  Created on demand.
    steam_username, steam_password : str
        Login credentials.  Usually ``${STEAM_USERNAME}`` references.
    app_id : str, optional
        Steam application id updated by ``app_update``.
    beta_branch : str, optional
        Beta branch passed as ``-beta`` to ``app_update``.
    game_executable : str
        Game binary, relative to ``game_dir`` or absolute.
    game_dir : str or Path
        Working directory of the game process.
    game_args : list[str]
        Launch arguments for the game.
    trace_dir : str or Path
        Directory the game (or trace server) writes ``.utrace`` files to.
    output_dir : str or Path
        Directory claimed traces and reports are moved/written into.
    archive_enabled : bool
        Commit claimed traces to the git work tree at ``archive_dir``.
    archive_dir : str, optional
        Git work tree used for archival.  Defaults to ``output_dir``.
    archive_size_limit_mb : float
        Traces above this size are never archived.
    log_dir : str or Path
        Directory the game creates per-run CSV profiling folders in.
    warmup_samples : int
        Parsed CSV rows discarded before statistics.
    csv_metadata_rows : int
        Fixed metadata rows stripped from the head of each CSV.
    visualization_tool : str, optional
        External CSV-to-image tool.  Skipped when unset or missing.
    visualization_args : list[str]
        Argument template for the tool; ``{csv}`` and ``{image}`` are
        substituted.
    trace_server_path : str, optional
        Trace recorder executable started before each run if not
        already running.
    startup_delay_s : float
        Delay between recording the session start and launching.
    flush_delay_s : float
        Delay after exit before telemetry is collected.
    poll_interval_s : float
        Process exit polling interval.
    """

    name: str
    game_executable: str
    game_dir: str | Path = "."
    game_args: list[str] = field(default_factory=list)

    # SteamCMD
    steamcmd_path: str = "steamcmd.sh"
    steamcmd_dir: str | Path = "steamcmd"
    steam_username: str = ""
    steam_password: str = ""
    app_id: Optional[str] = None
    beta_branch: Optional[str] = None

    # Telemetry
    trace_dir: str | Path = "traces"
    output_dir: str | Path = "output"
    archive_enabled: bool = False
    archive_dir: Optional[str] = None
    archive_size_limit_mb: float = 100.0
    log_dir: str | Path = "logs"
    warmup_samples: int = 20
    csv_metadata_rows: int = 0
    visualization_tool: Optional[str] = None
    visualization_args: list[str] = field(default_factory=lambda: ["{csv}", "{image}"])
    trace_server_path: Optional[str] = None

    # Timing
    startup_delay_s: float = 1.0
    flush_delay_s: float = 5.0
    poll_interval_s: float = 0.1

    def __post_init__(self) -> None:
        for name in _PATH_FIELDS:
            value = getattr(self, name)
            setattr(self, name, Path(os.path.expanduser(_expand_vars(str(value)))))
        if self.warmup_samples < 0:
            raise ValueError(f"warmup_samples must be >= 0, got {self.warmup_samples}")
        if self.csv_metadata_rows < 0:
            raise ValueError(
                f"csv_metadata_rows must be >= 0, got {self.csv_metadata_rows}"
            )

    @property
    def game_binary(self) -> Path:
        """Absolute path of the game executable."""
        return (self.game_dir / self.game_executable).absolute()

    @property
    def steamcmd_binary(self) -> Path:
        """Absolute path of the SteamCMD executable."""
        return (self.steamcmd_dir / self.steamcmd_path).absolute()

    @property
    def archive_path(self) -> Path:
        """Git work tree used for trace archival."""
        if self.archive_dir:
            return Path(os.path.expanduser(self.archive_dir))
        return self.output_dir


def _expand_vars(value: str) -> str:
    """Expand ``$VAR`` and ``${VAR}`` references in a string.

    Undefined variables are left as-is (no error).  ``${VAR:-default}``
    falls back to ``default``.
    """

    def _replace(match: re.Match) -> str:
        braced = match.group(1)
        bare = match.group(2)
        original: str = match.group(0) or ""

        if braced is not None:
            if ":-" in braced:
                var_name, default = braced.split(":-", 1)
                return os.environ.get(var_name, default)
            return os.environ.get(braced, original)

        return os.environ.get(bare or "", original)

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_value(value):
    if isinstance(value, str):
        return _expand_vars(value)
    if isinstance(value, list):
        return [_expand_value(v) for v in value]
    return value


def _expand_vars_recursive(data: dict) -> dict:
    """Expand environment variables in all string (and list-of-string) values."""
    return {key: _expand_value(value) for key, value in data.items()}


def load_profile_config(
    name: str | Path,
    configs_dir: str | Path | None = None,
) -> ProfileConfig:
    """Load a :class:`ProfileConfig` from a YAML file.

    Parameters
    ----------
    name : str or Path
        Either a path to an existing YAML file, or a config identifier
        resolved as ``<configs_dir>/<name>.yaml``.
    configs_dir : str or Path, optional
        Override the default config directory (``configs/``).

    Returns
    -------
    ProfileConfig

    Raises
    ------
    FileNotFoundError
        If no YAML file is found.
    ValueError
        If the YAML contains unknown or missing fields.
    """
    candidate = Path(name)
    if candidate.suffix in (".yaml", ".yml") and candidate.exists():
        config_path = candidate
        search_dir = candidate.parent
    else:
        search_dir = Path(configs_dir) if configs_dir else _CONFIGS_DIR
        config_path = search_dir / f"{name}.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"No profile config found at {config_path}. "
            f"Available configs: {[p.stem for p in search_dir.glob('*.yaml')]}"
        )

    logger.info("Loading profile config from %s", config_path)
    with open(config_path, "r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)

    if not isinstance(raw, dict):
        raise ValueError(
            f"Expected a YAML mapping in {config_path}, got {type(raw).__name__}"
        )

    raw = _expand_vars_recursive(raw)

    valid_fields = {f.name for f in dataclasses.fields(ProfileConfig)}
    unknown = set(raw) - valid_fields
    if unknown:
        raise ValueError(
            f"Unknown fields in {config_path}: {sorted(unknown)}. "
            f"Valid fields: {sorted(valid_fields)}"
        )

    try:
        return ProfileConfig(**raw)
    except TypeError as exc:
        raise ValueError(
            f"Invalid config in {config_path}: {exc}. "
            f"Valid fields: {sorted(valid_fields)}"
        ) from exc
