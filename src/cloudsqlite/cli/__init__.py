"""cloudsqlite CLI: run statements against shared databases and inspect leases."""

from __future__ import annotations

import logging
from typing import Optional

import typer

from cloudsqlite.cli import exec_cmd, lease

app = typer.Typer(
    name="cloudsqlite",
    help="cloudsqlite CLI — run statements against leased shared SQLite databases.",
    no_args_is_help=True,
)


class _State:
    """Global CLI state shared across subcommands."""

    snapshot_uri: str | None = None
    lock_uri: str | None = None
    lease_duration_s: int | None = None
    json_output: bool = False


state = _State()


def _version_callback(value: bool) -> None:
    if value:
        from cloudsqlite import __version__

        print(f"cloudsqlite {__version__}")
        raise typer.Exit()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    snapshot_uri: Optional[str] = typer.Option(
        None,
        "--snapshot-uri",
        envvar="CLOUDSQLITE_SNAPSHOT_URI",
        help="Snapshot store URI (s3://bucket/prefix or file:///dir)",
    ),
    lock_uri: Optional[str] = typer.Option(
        None,
        "--lock-uri",
        envvar="CLOUDSQLITE_LOCK_URI",
        help="Lock store URI (dynamodb://table, s3://bucket/prefix or sqlite:///locks.db)",
    ),
    lease_duration: Optional[int] = typer.Option(
        None, "--lease-duration", help="Lease duration in seconds"
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol steps to stderr"),
    version: bool = typer.Option(
        False, "--version", help="Show version", is_eager=True, callback=_version_callback
    ),
) -> None:
    """Global options for all cloudsqlite commands."""
    from cloudsqlite.storage import parse_storage_target

    for uri in (snapshot_uri, lock_uri):
        if uri:
            try:
                parse_storage_target(uri)
            except ValueError as e:
                raise typer.BadParameter(str(e))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    state.snapshot_uri = snapshot_uri
    state.lock_uri = lock_uri
    state.lease_duration_s = lease_duration
    state.json_output = json_output
    if ctx.invoked_subcommand is None and not version:
        print(ctx.get_help())
        raise typer.Exit()


app.command(name="exec")(exec_cmd.exec_cmd)
app.add_typer(lease.app, name="lease", help="Inspect and clear leases")


def main() -> None:
    """Entry point for the cloudsqlite CLI."""
    app()
