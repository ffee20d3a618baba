"""cloudsqlite: lease-guarded read/modify/write of SQLite databases kept in object storage."""

__version__ = "0.1.0"

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.errors import (
    CloudSQLiteError,
    ExecutionError,
    FetchFailedError,
    LeaseExpiredError,
    LockConflictError,
    LockServiceError,
    PublishFailedError,
    SnapshotNotFoundError,
    ValidationError,
)
from cloudsqlite.executor import StatementExecutor, StatementKind, StatementResult
from cloudsqlite.handler import handle, make_lambda_handler, parse_request
from cloudsqlite.locks import (
    Acquired,
    Conflict,
    DynamoDBLockStore,
    Lease,
    LeaseLockManager,
    ReleaseOutcome,
    S3LockStore,
    SqliteLockStore,
    new_holder_id,
    open_lock_store,
)
from cloudsqlite.orchestrator import (
    OperationRequest,
    OperationResult,
    Orchestrator,
    Phase,
    build_orchestrator,
    run_with_retry,
)
from cloudsqlite.snapshots import LocalSnapshotStore, S3SnapshotStore, open_snapshot_store

__all__ = [
    "__version__",
    "CloudSQLiteConfig",
    "CloudSQLiteError",
    "ValidationError",
    "LockConflictError",
    "LockServiceError",
    "LeaseExpiredError",
    "FetchFailedError",
    "SnapshotNotFoundError",
    "PublishFailedError",
    "ExecutionError",
    "Lease",
    "Acquired",
    "Conflict",
    "ReleaseOutcome",
    "LeaseLockManager",
    "DynamoDBLockStore",
    "S3LockStore",
    "SqliteLockStore",
    "new_holder_id",
    "open_lock_store",
    "S3SnapshotStore",
    "LocalSnapshotStore",
    "open_snapshot_store",
    "StatementExecutor",
    "StatementKind",
    "StatementResult",
    "Orchestrator",
    "OperationRequest",
    "OperationResult",
    "Phase",
    "build_orchestrator",
    "run_with_retry",
    "handle",
    "parse_request",
    "make_lambda_handler",
]
