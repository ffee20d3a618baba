"""cloudsqlite exec — run one statement through a full lease cycle."""

from __future__ import annotations

from typing import Optional

import typer

from cloudsqlite.cli import _exitcodes as ec
from cloudsqlite.cli._output import print_error, print_json, print_rows
from cloudsqlite.cli._storage import open_orchestrator
from cloudsqlite.executor import StatementKind
from cloudsqlite.orchestrator import OperationRequest, run_with_retry


def exec_cmd(
    statement: str = typer.Argument(..., help="SQL statement to execute"),
    resource: Optional[str] = typer.Option(
        None, "--resource", "-r", help="Database name (default: configured default resource)"
    ),
    kind: StatementKind = typer.Option(
        StatementKind.AUTO, "--kind", help="Treat statement as auto, read or write"
    ),
    retries: int = typer.Option(
        0, "--retries", min=0, help="Retry lock conflicts and transient store errors N times"
    ),
) -> None:
    """Acquire the lease, run STATEMENT on a fresh snapshot, publish and release."""
    from cloudsqlite.cli import state

    try:
        orchestrator = open_orchestrator()
    except Exception as e:
        print_error(f"Cannot open stores: {e}")
        raise typer.Exit(ec.USAGE_ERROR)

    request = OperationRequest(statement=statement, resource_id=resource, kind=kind)
    result = run_with_retry(orchestrator, request, attempts=retries + 1)

    if state.json_output:
        print_json(result.to_dict())
    elif result.success:
        if result.rows is not None:
            print_rows(result.rows)
        print(result.message)
    else:
        print_error(result.error or "unknown error")
        if result.durability_unknown:
            print_error("The statement ran but its effect may not have been saved.")

    if not result.success:
        raise typer.Exit(ec.BY_ERROR_KIND.get(result.error_kind or "", ec.EXECUTION_FAILURE))
