"""Tests for cloudsqlite exec command."""

from pathlib import Path

from tests.cli.conftest import invoke, json_output


def test_exec_creates_database(runner, stores):
    result = invoke(
        runner, ["exec", "CREATE TABLE t (id INTEGER, name TEXT)", "-r", "t.db"], stores
    )
    assert result.exit_code == 0
    assert "0 rows affected (database initialized)" in result.stdout
    assert (Path(stores["snapshot_dir"]) / "t.db").exists()


def test_exec_query_table(runner, stores):
    invoke(runner, ["exec", "CREATE TABLE t (id INTEGER, name TEXT)", "-r", "t.db"], stores)
    invoke(runner, ["exec", "INSERT INTO t VALUES (1, 'alpha'), (2, NULL)", "-r", "t.db"], stores)

    result = invoke(runner, ["exec", "SELECT id, name FROM t ORDER BY id", "-r", "t.db"], stores)

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert lines[0].split() == ["id", "name"]
    assert lines[2].split() == ["1", "alpha"]
    assert lines[3].split() == ["2", "NULL"]
    assert lines[-1] == "Query executed successfully, returned 2 rows"


def test_exec_json(runner, stores):
    result = invoke(runner, ["--json", "exec", "SELECT 1 AS one, 'x' AS two"], stores)
    assert result.exit_code == 0
    assert json_output(result) == {
        "success": True,
        "rows": [{"one": 1, "two": "x"}],
        "message": "Query executed successfully, returned 1 rows (database initialized)",
    }
    assert (Path(stores["snapshot_dir"]) / "database.db").exists()


def test_exec_empty_result(runner, stores):
    result = invoke(runner, ["exec", "SELECT name FROM sqlite_master"], stores)
    assert result.exit_code == 0
    assert "(no rows)" in result.stdout


def test_exec_read_kind_rejects_write(runner, stores):
    invoke(runner, ["exec", "CREATE TABLE t (v)"], stores)
    result = invoke(runner, ["--json", "exec", "--kind", "read", "DROP TABLE t"], stores)
    assert result.exit_code == 1
    assert json_output(result)["error_kind"] == "ExecutionError"


def test_exec_syntax_error(runner, stores):
    result = invoke(runner, ["--json", "exec", "SELEC 1"], stores)
    assert result.exit_code == 1
    data = json_output(result)
    assert data["success"] is False
    assert "syntax error" in data["error"]


def test_exec_empty_statement_is_usage_error(runner, stores):
    result = invoke(runner, ["--json", "exec", "  "], stores)
    assert result.exit_code == 2
    assert json_output(result)["error_kind"] == "ValidationError"


def test_exec_lock_conflict(runner, stores, lock_manager):
    lock_manager.try_acquire("t.db", "other-worker", lease_duration_s=300)

    result = invoke(runner, ["--json", "exec", "SELECT 1", "-r", "t.db"], stores)

    assert result.exit_code == 3
    data = json_output(result)
    assert data["error_kind"] == "LockConflict"
    assert "other-worker" in data["error"]
    assert lock_manager.describe("t.db").holder_id == "other-worker"


def test_exec_bad_store_uri(runner):
    result = invoke(runner, ["--snapshot-uri", "ftp://host/dbs", "exec", "SELECT 1"])
    assert result.exit_code == 2


def test_exec_lease_too_short_for_config(runner, stores):
    result = invoke(runner, ["--lease-duration", "10", "exec", "SELECT 1"], stores)
    assert result.exit_code == 2
    assert "lease_duration_s" in result.output
