"""
Tests for the history and status commands.
"""

import pytest
from typer.testing import CliRunner

import main
from spotarb import database
from spotarb.config import reload_config


runner = CliRunner()


@pytest.fixture
def use_store(monkeypatch, tmp_path):
    """Point the CLI at a fresh trade store of the given kind."""
    def choose(kind):
        monkeypatch.setenv("TRADE_STORE", kind)
        monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "trades.db"))
        monkeypatch.setattr(database, "_store", None)
        reload_config()

    yield choose
    monkeypatch.undo()
    database._store = None
    reload_config()


@pytest.mark.parametrize("command", ["history", "status"])
def test_memory_store_warns_history_is_not_kept(use_store, command):
    use_store("memory")

    result = runner.invoke(main.app, [command])

    assert result.exit_code == 0
    assert "TRADE_STORE=sqlite" in result.output


def test_sqlite_store_has_no_warning(use_store):
    use_store("sqlite")

    result = runner.invoke(main.app, ["history"])

    assert result.exit_code == 0
    assert "TRADE_STORE=sqlite" not in result.output
    assert "No trades found" in result.output
