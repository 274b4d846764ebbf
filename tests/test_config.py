"""Tests for ProfileConfig and load_profile_config."""

from __future__ import annotations

from pathlib import Path

import pytest

from src.profiling.config import ProfileConfig, load_profile_config

_MINIMAL = "name: demo\ngame_executable: Game.sh\n"


def _write(tmp_path: Path, text: str, name: str = "demo.yaml") -> Path:
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return path


class TestProfileConfig:
    """Tests for the dataclass itself."""

    def test_defaults(self):
        config = ProfileConfig(name="demo", game_executable="Game.sh")
        assert config.warmup_samples == 20
        assert config.csv_metadata_rows == 0
        assert config.archive_size_limit_mb == 100.0
        assert config.visualization_args == ["{csv}", "{image}"]
        assert isinstance(config.trace_dir, Path)
        assert config.archive_path == config.output_dir

    def test_binaries_are_absolute(self, tmp_path):
        config = ProfileConfig(
            name="demo", game_executable="bin/Game.sh", game_dir=tmp_path, steamcmd_dir="sc"
        )
        assert config.game_binary == tmp_path / "bin" / "Game.sh"
        assert config.steamcmd_binary.is_absolute()
        assert config.steamcmd_binary.name == "steamcmd.sh"

    def test_negative_warmup_rejected(self):
        with pytest.raises(ValueError, match="warmup_samples"):
            ProfileConfig(name="demo", game_executable="g", warmup_samples=-1)


class TestLoadProfileConfig:
    """Tests for YAML loading."""

    def test_load_by_path(self, tmp_path):
        path = _write(tmp_path, _MINIMAL + "app_id: '480'\nwarmup_samples: 5\n")
        config = load_profile_config(path)
        assert config.name == "demo"
        assert config.app_id == "480"
        assert config.warmup_samples == 5

    def test_load_by_name(self, tmp_path):
        _write(tmp_path, _MINIMAL)
        config = load_profile_config("demo", configs_dir=tmp_path)
        assert config.game_executable == "Game.sh"

    def test_env_expansion(self, tmp_path, monkeypatch):
        monkeypatch.setenv("STEAM_USERNAME", "bot")
        monkeypatch.setenv("PROFILE_ROOT", str(tmp_path))
        monkeypatch.delenv("STEAM_BETA_BRANCH", raising=False)
        path = _write(
            tmp_path,
            _MINIMAL
            + "steam_username: ${STEAM_USERNAME}\n"
            + "beta_branch: ${STEAM_BETA_BRANCH:-nightly}\n"
            + "trace_dir: $PROFILE_ROOT/traces\n"
            + "game_args: ['-log=$PROFILE_ROOT/game.log']\n",
        )
        config = load_profile_config(path)
        assert config.steam_username == "bot"
        assert config.beta_branch == "nightly"
        assert config.trace_dir == tmp_path / "traces"
        assert config.game_args == [f"-log={tmp_path}/game.log"]

    def test_undefined_variable_left_as_is(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = _write(tmp_path, _MINIMAL + "steam_password: ${NOT_SET_ANYWHERE}\n")
        assert load_profile_config(path).steam_password == "${NOT_SET_ANYWHERE}"

    def test_unknown_field(self, tmp_path):
        path = _write(tmp_path, _MINIMAL + "frobnicate: true\n")
        with pytest.raises(ValueError, match="frobnicate"):
            load_profile_config(path)

    def test_missing_required_field(self, tmp_path):
        path = _write(tmp_path, "name: demo\n")
        with pytest.raises(ValueError, match="Invalid config"):
            load_profile_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = _write(tmp_path, "- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            load_profile_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_profile_config("nope", configs_dir=tmp_path)

    def test_example_config_loads(self):
        config = load_profile_config("example")
        assert config.name == "example-game"
        assert config.visualization_args == ["-csvs", "{csv}", "-o", "{image}"]
