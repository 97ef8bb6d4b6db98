"""CLI tests for configuration commands."""

import os
from pathlib import Path
from typing import Any

from click.testing import CliRunner

from cmsync.cli import cli
from cmsync.config import ConfigManager


def _env_with_home(tmp_path: Path) -> dict[str, Any]:
    env = dict(os.environ)
    env["HOME"] = str(tmp_path)
    return env


def _config_path(tmp_path: Path) -> Path:
    return tmp_path / ".cmsync" / "config.yaml"


def test_config_view_creates_and_displays_config(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(cli, ["config", "view"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "server:" in result.output
    assert _config_path(tmp_path).exists()


def test_config_view_masks_the_password(tmp_path: Path) -> None:
    manager = ConfigManager(config_path=_config_path(tmp_path))
    manager.save({"server": {"password": "hunter2"}})

    result = CliRunner().invoke(cli, ["config", "view"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "hunter2" not in result.output
    assert "********" in result.output


def test_config_set_updates_value_and_writes_diff(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(
        cli, ["config", "set", "server.host", "--value", "cm.example.com"], env=_env_with_home(tmp_path)
    )

    assert result.exit_code == 0
    assert "cm.example.com" in result.output
    assert "Updated server.host" in result.output

    config = ConfigManager(config_path=_config_path(tmp_path)).load(include_env=False)
    assert config.server.host == "cm.example.com"


def test_config_set_same_value_reports_no_change(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)
    runner.invoke(cli, ["config", "set", "sync.max_workers", "--value", "8"], env=env)

    result = runner.invoke(cli, ["config", "set", "sync.max_workers", "--value", "8"], env=env)

    assert result.exit_code == 0
    assert "No changes applied" in result.output


def test_config_set_rejects_invalid_values(tmp_path: Path) -> None:
    result = CliRunner().invoke(
        cli, ["config", "set", "server.port", "--value", "0"], env=_env_with_home(tmp_path)
    )

    assert result.exit_code != 0
    config = ConfigManager(config_path=_config_path(tmp_path)).load(include_env=False)
    assert config.server.port == 7001
