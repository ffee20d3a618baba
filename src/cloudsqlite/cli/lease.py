"""cloudsqlite lease — inspect and clear lease records."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import typer

from cloudsqlite.cli import _exitcodes as ec
from cloudsqlite.cli._output import print_error, print_object
from cloudsqlite.cli._storage import config_from_state, open_lock_manager
from cloudsqlite.errors import LockServiceError
from cloudsqlite.locks import ReleaseOutcome

app = typer.Typer(no_args_is_help=True)


def _iso(epoch_s: int) -> str:
    return datetime.fromtimestamp(epoch_s, tz=timezone.utc).isoformat()


@app.command("show")
def show_cmd(
    resource: Optional[str] = typer.Argument(None, help="Database name"),
) -> None:
    """Show the lease record for a resource, if any."""
    from cloudsqlite.cli import state

    resource_id = resource or config_from_state().default_resource_id
    try:
        manager = open_lock_manager()
        lease = manager.describe(resource_id)
    except (LockServiceError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.STORE_ERROR)

    if lease is None:
        data: dict[str, Any] = {"resource_id": resource_id, "status": "free"}
    else:
        now = manager.now()
        data = {
            "resource_id": lease.resource_id,
            "status": "stale" if lease.is_stale(now) else "held",
            "holder_id": lease.holder_id,
            "lease_expiry": lease.lease_expiry,
            "lease_expiry_iso": _iso(lease.lease_expiry),
            "created_at": lease.created_at,
            "remaining_s": max(0, lease.lease_expiry - now),
        }
    print_object(data, json_mode=state.json_output)


@app.command("release")
def release_cmd(
    holder: str = typer.Option(..., "--holder", help="Holder id the lease must belong to"),
    resource: Optional[str] = typer.Argument(None, help="Database name"),
) -> None:
    """Release a lease on behalf of HOLDER (e.g. after killing a stuck worker)."""
    from cloudsqlite.cli import state

    resource_id = resource or config_from_state().default_resource_id
    try:
        outcome = open_lock_manager().release(resource_id, holder)
    except (LockServiceError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(ec.STORE_ERROR)

    data = {"resource_id": resource_id, "outcome": outcome.value}
    print_object(data, json_mode=state.json_output)
    if outcome is ReleaseOutcome.NOT_HOLDER:
        raise typer.Exit(ec.LOCK_CONFLICT)
