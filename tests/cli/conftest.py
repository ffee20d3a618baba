"""Shared fixtures for CLI tests."""

from __future__ import annotations

import json
import os
from typing import TYPE_CHECKING, Any

import pytest
from typer.testing import CliRunner

from cloudsqlite.cli import app
from cloudsqlite.locks import LeaseLockManager, SqliteLockStore

if TYPE_CHECKING:
    from click.testing import Result


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep CLOUDSQLITE_* variables from the calling shell out of CLI tests."""
    for name in list(os.environ):
        if name.startswith("CLOUDSQLITE_"):
            monkeypatch.delenv(name)


@pytest.fixture
def stores(tmp_path) -> dict[str, str]:
    """Local snapshot directory and lock table for one test."""
    return {
        "snapshot_uri": f"file://{tmp_path / 'snapshots'}",
        "lock_uri": f"sqlite:///{tmp_path / 'locks.db'}",
        "lock_path": str(tmp_path / "locks.db"),
        "snapshot_dir": str(tmp_path / "snapshots"),
    }


@pytest.fixture
def lock_manager(stores):
    """Lock manager on the same lock table the CLI uses."""
    return LeaseLockManager(SqliteLockStore(stores["lock_path"]))


def invoke(runner: CliRunner, args: list[str], stores: dict[str, str] | None = None) -> "Result":
    """Invoke CLI with store options injected before the subcommand."""
    if stores:
        args = ["--snapshot-uri", stores["snapshot_uri"], "--lock-uri", stores["lock_uri"]] + args
    result = runner.invoke(app, args, catch_exceptions=False)
    return result


def json_output(result: "Result") -> Any:
    """Parse the JSON document printed as the last line of stdout."""
    return json.loads(result.stdout.strip().splitlines()[-1])
