"""Run one SQL statement against a local working copy."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import closing
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from cloudsqlite.errors import ExecutionError

logger = logging.getLogger(__name__)


class StatementKind(Enum):
    """How the caller wants a statement treated.

    ``AUTO`` shapes the result from what the statement actually did: a result
    set becomes rows, anything else an affected-row count. ``READ`` makes the
    connection read-only so the engine rejects writes. ``WRITE`` always
    reports an affected-row count.
    """

    AUTO = "auto"
    READ = "read"
    WRITE = "write"


@dataclass
class StatementResult:
    """Outcome of a successful statement.

    Exactly one of ``rows`` and ``affected`` is set. ``changed`` is True when
    the statement modified the database file.
    """

    rows: list[dict[str, Any]] | None = None
    affected: int | None = None
    changed: bool = False
    columns: list[str] = field(default_factory=list)

    @property
    def is_query(self) -> bool:
        return self.rows is not None

    @property
    def message(self) -> str:
        if self.rows is not None:
            return f"Query executed successfully, returned {len(self.rows)} rows"
        return f"Statement executed successfully, {self.affected} rows affected"


def initialize_database(path: Path, script: str | None = None) -> None:
    """Create an empty database at ``path``, optionally running a setup script."""
    with closing(sqlite3.connect(path, isolation_level=None)) as conn:
        if script:
            try:
                conn.executescript(script)
            except sqlite3.Error as e:
                raise ExecutionError(f"Bootstrap script failed: {e}") from e
    logger.info("Initialized empty database at %s", path)


def _schema_version(conn: sqlite3.Connection) -> int:
    # DDL bumps the schema cookie but does not count towards total_changes
    return int(conn.execute("PRAGMA schema_version").fetchone()[0])


class StatementExecutor:
    """Executes statements in autocommit mode, one statement per call."""

    def __init__(self, *, busy_timeout_s: float = 5.0) -> None:
        self._busy_timeout_s = busy_timeout_s

    def execute(
        self,
        path: Path,
        statement: str,
        kind: StatementKind = StatementKind.AUTO,
    ) -> StatementResult:
        if not statement or not statement.strip():
            raise ExecutionError("Statement is empty")

        try:
            conn = sqlite3.connect(path, timeout=self._busy_timeout_s, isolation_level=None)
        except sqlite3.Error as e:
            raise ExecutionError(f"Failed to open database: {e}") from e

        with closing(conn):
            try:
                if kind is StatementKind.READ:
                    conn.execute("PRAGMA query_only = ON")
                before = (conn.total_changes, _schema_version(conn))
                cur = conn.execute(statement)
                description = cur.description
                columns = [d[0] for d in description] if description is not None else []
                fetched = cur.fetchall()
                rowcount = cur.rowcount
                changed = (conn.total_changes, _schema_version(conn)) != before
            except sqlite3.Warning as e:
                # e.g. more than one statement in the input
                raise ExecutionError(str(e)) from e
            except sqlite3.Error as e:
                raise ExecutionError(str(e)) from e
            except ValueError as e:
                # e.g. UnicodeEncodeError for a lone surrogate
                raise ExecutionError(f"Statement cannot be passed to SQLite: {e}") from e

        if kind is not StatementKind.WRITE and description is not None:
            rows = [dict(zip(columns, values)) for values in fetched]
            return StatementResult(rows=rows, changed=changed, columns=columns)
        # DDL and other non-DML statements report -1
        return StatementResult(affected=max(rowcount, 0), changed=changed)


__all__ = ["StatementKind", "StatementResult", "StatementExecutor", "initialize_database"]
