"""Tests for the CLI commands that need no network."""

import pytest
from typer.testing import CliRunner

from xcred import __version__
from xcred.cli import app

runner = CliRunner()


class TestCli:

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_geo_country(self):
        result = runner.invoke(app, ["geo", "Berlin, Germany"])

        assert result.exit_code == 0
        assert "DE" in result.output

    def test_geo_region(self):
        result = runner.invoke(app, ["geo", "Middle East"])

        assert result.exit_code == 0
        assert "R-ME" in result.output
        assert "Middle East" in result.output

    def test_geo_unresolved(self):
        result = runner.invoke(app, ["geo", "Web"])

        assert result.exit_code == 1


class TestCacheOnlyCommands:

    @pytest.fixture(autouse=True)
    def cache_only_env(self, monkeypatch):
        monkeypatch.setenv("XCRED_STORE_BACKEND", "memory")
        monkeypatch.setenv("XCRED_SWEEP_INTERVAL_SECONDS", "0")
        monkeypatch.setenv("XCRED_REMOTE_URL", "")
        monkeypatch.setenv("XCRED_BEARER_TOKEN", "")
        monkeypatch.setenv("XCRED_CSRF_TOKEN", "")

    def test_sync_needs_remote(self):
        result = runner.invoke(app, ["cache", "sync"])

        assert result.exit_code == 1
        assert "No remote store configured" in result.output

    def test_refresh_unavailable(self):
        result = runner.invoke(app, ["refresh", "@jack"])

        assert result.exit_code == 1
        assert "@jack" in result.output

    def test_cross_check_unknown(self):
        result = runner.invoke(app, ["cross-check", "jack"])

        assert result.exit_code == 0
        assert "@jack: unknown" in result.output
