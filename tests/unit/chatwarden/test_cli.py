# -*- coding: utf-8 -*-
"""Tests for the typer command line interface."""

# Third-Party
import orjson
import pytest
from typer.testing import CliRunner

# First-Party
from chatwarden import __version__
from chatwarden.cli import app
from chatwarden.config import Settings

runner = CliRunner()


@pytest.fixture
def cli_settings(monkeypatch, tmp_path):
    """Point the CLI at isolated settings backed by a temporary database."""

    def _install(**overrides):
        values = dict(_env_file=None, database_url=f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}", bot_token="token")
        values.update(overrides)
        settings = Settings(**values)
        monkeypatch.setattr("chatwarden.cli.get_settings", lambda: settings)
        return settings

    return _install


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.stdout.strip() == __version__


def test_check_config_json(cli_settings):
    cli_settings()
    result = runner.invoke(app, ["check-config", "--json-output"])
    assert result.exit_code == 0
    summary = orjson.loads(result.stdout)
    assert summary["problems"] == []
    assert summary["builtins"] == ["cmd", "emoji", "emoji-admin", "help", "perm", "py", "roll"]
    assert summary["script_limits"]["timeout_ms"] == 3000


def test_check_config_reports_problems(cli_settings):
    cli_settings(bot_token=None, init_allow_commands=["help", "dance"])
    result = runner.invoke(app, ["check-config", "--json-output"])
    assert result.exit_code == 1
    problems = orjson.loads(result.stdout)["problems"]
    assert "init_allow_commands lists unknown commands: dance" in problems
    assert "BOT_TOKEN is not configured" in problems


def test_grant_and_revoke(cli_settings):
    cli_settings()
    result = runner.invoke(app, ["grant", "100", "perm", "--user", "5", "--group", "9"])
    assert result.exit_code == 0
    assert orjson.loads(result.stdout) == {"tenant": "100", "command": "perm", "users": ["5"], "groups": ["9"]}

    result = runner.invoke(app, ["grant", "100", "perm", "--user", "5", "--revoke"])
    assert result.exit_code == 0
    assert orjson.loads(result.stdout)["users"] == []
    assert orjson.loads(result.stdout)["groups"] == ["9"]


@pytest.mark.parametrize("args", [["grant", "100", "perm"], ["grant", "100", "dance", "--user", "5"]])
def test_grant_rejects_bad_input(cli_settings, args):
    cli_settings()
    result = runner.invoke(app, args)
    assert result.exit_code == 2
