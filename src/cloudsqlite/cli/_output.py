"""Output formatting helpers for the CLI."""

from __future__ import annotations

import sys
from typing import Any

from cloudsqlite.handler import dumps


def print_json(data: Any) -> None:
    print(dumps(data))


def print_rows(rows: list[dict[str, Any]]) -> None:
    """Print result rows as an aligned text table, columns in result order."""
    if not rows:
        print("(no rows)")
        return

    headers = list(rows[0].keys())
    str_rows = [
        ["NULL" if row.get(h) is None else str(row.get(h)) for h in headers] for row in rows
    ]
    widths = [len(h) for h in headers]
    for row in str_rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)))


def print_object(data: dict[str, Any], *, json_mode: bool = False) -> None:
    """Print a single object as JSON or key-value pairs."""
    if json_mode:
        print_json(data)
        return
    for k, v in data.items():
        print(f"{k}: {v}")


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)
