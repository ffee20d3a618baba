"""Example 01: Local lease cycle.

This example runs the full acquire → fetch → execute → publish → release cycle
against local stand-ins for the object store and the lock service:
- a snapshot directory (file://) instead of S3
- a SQLite lock table (sqlite://) instead of DynamoDB
- first use of a resource bootstraps an empty database
- a held lease turns a second worker away with a conflict
"""

import tempfile
from pathlib import Path

from cloudsqlite import (
    CloudSQLiteConfig,
    LeaseLockManager,
    LocalSnapshotStore,
    OperationRequest,
    Orchestrator,
    SqliteLockStore,
)


def main():
    """Run the local cycle example."""
    print("=" * 80)
    print("EXAMPLE 01: LOCAL LEASE CYCLE")
    print("=" * 80)

    root = Path(tempfile.mkdtemp(prefix="cloudsqlite-example-"))
    config = CloudSQLiteConfig(
        snapshot_uri=f"file://{root / 'snapshots'}",
        lock_uri=f"sqlite:///{root / 'locks.db'}",
    )
    locks = LeaseLockManager(SqliteLockStore(str(root / "locks.db")))
    orchestrator = Orchestrator(locks, LocalSnapshotStore(root / "snapshots"), config=config)

    statements = [
        "CREATE TABLE logs(id INTEGER PRIMARY KEY, message TEXT)",
        "INSERT INTO logs(message) VALUES ('first'), ('second')",
        "SELECT id, message FROM logs ORDER BY id",
    ]
    for statement in statements:
        result = orchestrator.run(OperationRequest(statement=statement, resource_id="t.db"))
        print(f"\n> {statement}")
        print(f"  {result.message}")
        if result.rows is not None:
            for row in result.rows:
                print(f"  {row}")

    # Hold the lease as another worker would, then try to run a statement.
    print("\n" + "=" * 80)
    print("LOCK CONFLICT")
    print("=" * 80)
    held = locks.try_acquire("t.db", "other-worker", lease_duration_s=60)
    print(f"\nother-worker acquired: {held.acquired}")
    result = orchestrator.run(OperationRequest(statement="SELECT 1", resource_id="t.db"))
    print(f"run succeeded: {result.success} ({result.error_kind}: {result.error})")
    locks.release("t.db", "other-worker")

    print(f"\nSnapshot stored at {root / 'snapshots' / 't.db'}")


if __name__ == "__main__":
    main()
