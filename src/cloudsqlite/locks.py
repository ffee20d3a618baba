"""Lease-based mutual exclusion over a conditional-write store.

A lease record names the holder of a resource and an absolute expiry in epoch
seconds. A record whose expiry has passed is stale: it is still physically
present but any new holder may overwrite it. Acquisition is a single
conditional write whose precondition ("no record, or the record is stale") is
evaluated by the store at write time. Release is a conditional delete fenced on
the holder id, so a worker can never remove a lease it no longer holds.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import socket
import sqlite3
import time
from contextlib import closing
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol, runtime_checkable

from botocore.exceptions import ParamValidationError

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.errors import LockServiceError
from cloudsqlite.storage import (
    is_conditional_check_failed,
    is_not_found,
    is_precondition_failed,
    make_client,
    parse_storage_target,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lease:
    """One lease record as stored in the lock store."""

    resource_id: str
    holder_id: str
    lease_expiry: int
    created_at: int

    def is_stale(self, now: float) -> bool:
        return now > self.lease_expiry


@dataclass(frozen=True)
class Acquired:
    lease: Lease

    acquired = True


@dataclass(frozen=True)
class Conflict:
    """Another holder owns a live lease.

    ``current_holder`` and ``expires_at`` describe the record that blocked the
    write; they are ``None`` when the store could not report it.
    """

    resource_id: str
    current_holder: str | None
    expires_at: int | None

    acquired = False


class ReleaseOutcome(Enum):
    RELEASED = "released"
    NOT_HOLDER = "not_holder"


class _PreconditionFailed(Exception):
    """Raised by a lock store when its conditional write was rejected."""

    def __init__(self, current: Lease | None = None) -> None:
        super().__init__("lease precondition failed")
        self.current = current


@runtime_checkable
class LockStore(Protocol):
    """Backend contract for lease records.

    ``put_if_free`` must write ``lease`` iff no record exists for its resource
    or the existing record's ``lease_expiry`` is earlier than ``now``, as one
    atomic store-side operation. On rejection it raises ``_PreconditionFailed``
    carrying the blocking record when known.
    """

    def put_if_free(self, lease: Lease, now: int) -> None: ...

    def delete_if_holder(self, resource_id: str, holder_id: str) -> bool: ...

    def get(self, resource_id: str) -> Lease | None: ...

    def close(self) -> None: ...


def new_holder_id() -> str:
    """Return an identifier unique to one acquisition attempt."""
    return f"{socket.gethostname()}-{os.getpid()}-{time.time_ns()}-{secrets.token_hex(4)}"


class LeaseLockManager:
    """Acquire and release leases on named resources.

    Conflicts are returned, not raised: contention is an expected outcome and
    the caller decides whether to wait, retry or give up. Store failures raise
    ``LockServiceError``.
    """

    def __init__(self, store: LockStore, *, clock: Callable[[], float] = time.time) -> None:
        self._store = store
        self._clock = clock

    @property
    def store(self) -> LockStore:
        return self._store

    def now(self) -> int:
        return int(self._clock())

    def try_acquire(
        self, resource_id: str, holder_id: str, lease_duration_s: int
    ) -> Acquired | Conflict:
        if lease_duration_s <= 0:
            raise ValueError("lease_duration_s must be positive")
        now = self.now()
        lease = Lease(
            resource_id=resource_id,
            holder_id=holder_id,
            lease_expiry=now + lease_duration_s,
            created_at=now,
        )
        try:
            self._store.put_if_free(lease, now)
        except _PreconditionFailed as e:
            current = e.current
            logger.info(
                "Lease on %s held by %s until %s; %s not admitted",
                resource_id,
                current.holder_id if current else "unknown",
                current.lease_expiry if current else "unknown",
                holder_id,
            )
            return Conflict(
                resource_id=resource_id,
                current_holder=current.holder_id if current else None,
                expires_at=current.lease_expiry if current else None,
            )
        except LockServiceError:
            raise
        except Exception as e:
            raise LockServiceError("acquire", str(e)) from e

        logger.info(
            "Lease on %s acquired by %s until %d", resource_id, holder_id, lease.lease_expiry
        )
        return Acquired(lease)

    def release(self, resource_id: str, holder_id: str) -> ReleaseOutcome:
        try:
            deleted = self._store.delete_if_holder(resource_id, holder_id)
        except LockServiceError:
            raise
        except Exception as e:
            raise LockServiceError("release", str(e)) from e

        if not deleted:
            logger.warning("Lease on %s is no longer held by %s", resource_id, holder_id)
            return ReleaseOutcome.NOT_HOLDER
        logger.info("Lease on %s released by %s", resource_id, holder_id)
        return ReleaseOutcome.RELEASED

    def describe(self, resource_id: str) -> Lease | None:
        """Read the current record for inspection. Never used to decide acquisition."""
        try:
            return self._store.get(resource_id)
        except LockServiceError:
            raise
        except Exception as e:
            raise LockServiceError("describe", str(e)) from e

    def close(self) -> None:
        self._store.close()


# --- DynamoDB ---

_DDB_ACQUIRE_CONDITION = "attribute_not_exists(resource_id) OR lease_expiry < :now"
_DDB_RELEASE_CONDITION = "holder_id = :holder_id"


def _lease_to_item(lease: Lease) -> dict[str, Any]:
    return {
        "resource_id": {"S": lease.resource_id},
        "holder_id": {"S": lease.holder_id},
        "lease_expiry": {"N": str(lease.lease_expiry)},
        "created_at": {"N": str(lease.created_at)},
    }


def _lease_from_item(item: dict[str, Any]) -> Lease:
    return Lease(
        resource_id=item["resource_id"]["S"],
        holder_id=item["holder_id"]["S"],
        lease_expiry=int(item["lease_expiry"]["N"]),
        created_at=int(item.get("created_at", {"N": "0"})["N"]),
    )


class DynamoDBLockStore:
    """Lease records in a DynamoDB table keyed by ``resource_id``.

    ``lease_expiry`` is numeric epoch seconds, so it can double as the table's
    TTL attribute; TTL deletion is lazy and only tidies up, correctness relies
    on the condition expression alone.
    """

    def __init__(
        self,
        table_name: str,
        *,
        client: Any = None,
        config: CloudSQLiteConfig | None = None,
    ) -> None:
        self.table_name = table_name
        if client is None:
            cfg = config or CloudSQLiteConfig()
            client = make_client("dynamodb", cfg, endpoint_url=cfg.dynamodb_endpoint_url)
        self._client = client

    def put_if_free(self, lease: Lease, now: int) -> None:
        try:
            self._client.put_item(
                TableName=self.table_name,
                Item=_lease_to_item(lease),
                ConditionExpression=_DDB_ACQUIRE_CONDITION,
                ExpressionAttributeValues={":now": {"N": str(now)}},
                ReturnValuesOnConditionCheckFailure="ALL_OLD",
            )
        except Exception as e:
            if is_conditional_check_failed(e):
                item = e.response.get("Item")  # type: ignore[attr-defined]
                raise _PreconditionFailed(
                    _lease_from_item(item) if item else self._diagnostic_get(lease.resource_id)
                ) from e
            raise

    def _diagnostic_get(self, resource_id: str) -> Lease | None:
        # The write was already rejected; a failed read only loses the details.
        try:
            return self.get(resource_id)
        except Exception as e:
            logger.debug("Could not read blocking lease on %s: %s", resource_id, e)
            return None

    def delete_if_holder(self, resource_id: str, holder_id: str) -> bool:
        try:
            self._client.delete_item(
                TableName=self.table_name,
                Key={"resource_id": {"S": resource_id}},
                ConditionExpression=_DDB_RELEASE_CONDITION,
                ExpressionAttributeValues={":holder_id": {"S": holder_id}},
            )
        except Exception as e:
            if is_conditional_check_failed(e):
                return False
            raise
        return True

    def get(self, resource_id: str) -> Lease | None:
        resp = self._client.get_item(
            TableName=self.table_name,
            Key={"resource_id": {"S": resource_id}},
            ConsistentRead=True,
        )
        item = resp.get("Item")
        return _lease_from_item(item) if item else None

    def close(self) -> None:
        pass


# --- S3 (ETag compare-and-swap) ---


class S3LockStore:
    """Lease records as JSON objects in S3.

    S3 has no predicate writes, so "absent or stale" is emulated with ETag
    compare-and-swap: create with ``If-None-Match: *``; if a record exists and
    is stale, overwrite it with ``If-Match`` on the ETag that was read. Two
    workers reclaiming the same stale record race on the same ETag and only
    one write can succeed.
    """

    _MAX_ROUNDS = 3

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        *,
        client: Any = None,
        config: CloudSQLiteConfig | None = None,
    ) -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        if client is None:
            cfg = config or CloudSQLiteConfig()
            client = make_client("s3", cfg, endpoint_url=cfg.s3_endpoint_url)
        self._s3 = client

    def _key(self, resource_id: str) -> str:
        rel = f"locks/{resource_id}.json"
        return f"{self.prefix}/{rel}" if self.prefix else rel

    def _read(self, resource_id: str) -> tuple[Lease | None, str | None]:
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=self._key(resource_id))
        except Exception as e:
            if is_not_found(e):
                return None, None
            raise
        data = json.loads(resp["Body"].read().decode("utf-8"))
        return Lease(**data), resp.get("ETag")

    def _put(self, lease: Lease, **precondition: str) -> None:
        body = json.dumps(asdict(lease), sort_keys=True).encode("utf-8")
        try:
            self._s3.put_object(
                Bucket=self.bucket,
                Key=self._key(lease.resource_id),
                Body=body,
                ContentType="application/json",
                **precondition,
            )
        except ParamValidationError as e:
            raise LockServiceError(
                "conditional_write", "S3 endpoint does not support conditional write preconditions"
            ) from e
        except Exception as e:
            if is_precondition_failed(e):
                raise _PreconditionFailed() from e
            raise

    def put_if_free(self, lease: Lease, now: int) -> None:
        current: Lease | None = None
        for _ in range(self._MAX_ROUNDS):
            try:
                self._put(lease, IfNoneMatch="*")
                return
            except _PreconditionFailed:
                pass

            current, etag = self._read(lease.resource_id)
            if current is None or etag is None:
                # Released between our create and read; try to create again.
                continue
            if not current.lease_expiry < now:
                raise _PreconditionFailed(current)
            try:
                self._put(lease, IfMatch=etag)
                return
            except _PreconditionFailed:
                current, _ = self._read(lease.resource_id)
                raise _PreconditionFailed(current) from None
        raise _PreconditionFailed(current)

    def delete_if_holder(self, resource_id: str, holder_id: str) -> bool:
        current, etag = self._read(resource_id)
        if current is None or etag is None or current.holder_id != holder_id:
            return False
        try:
            self._s3.delete_object(Bucket=self.bucket, Key=self._key(resource_id), IfMatch=etag)
        except ParamValidationError as e:
            raise LockServiceError(
                "conditional_delete", "S3 endpoint does not support conditional deletes"
            ) from e
        except Exception as e:
            if is_precondition_failed(e) or is_not_found(e):
                return False
            raise
        return True

    def get(self, resource_id: str) -> Lease | None:
        lease, _etag = self._read(resource_id)
        return lease

    def close(self) -> None:
        pass


# --- SQLite (local) ---

_SQLITE_SCHEMA = """
CREATE TABLE IF NOT EXISTS leases (
    resource_id  TEXT PRIMARY KEY,
    holder_id    TEXT NOT NULL,
    lease_expiry INTEGER NOT NULL,
    created_at   INTEGER NOT NULL
)
"""

_SQLITE_ACQUIRE = """
INSERT INTO leases (resource_id, holder_id, lease_expiry, created_at)
VALUES (?, ?, ?, ?)
ON CONFLICT (resource_id) DO UPDATE SET
    holder_id = excluded.holder_id,
    lease_expiry = excluded.lease_expiry,
    created_at = excluded.created_at
WHERE leases.lease_expiry < ?
"""


class SqliteLockStore:
    """Lease records in a local SQLite file.

    The upsert's ``WHERE`` clause is the acquire precondition, so the check and
    the write happen inside one statement under SQLite's write lock. Safe
    across threads and processes sharing the file; not across machines.
    """

    def __init__(self, db_path: str, *, busy_timeout_s: float = 10.0) -> None:
        self.db_path = db_path
        self._busy_timeout_s = busy_timeout_s
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        with closing(self._connect()) as conn:
            conn.execute(_SQLITE_SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self._busy_timeout_s, isolation_level=None)

    def put_if_free(self, lease: Lease, now: int) -> None:
        with closing(self._connect()) as conn:
            cur = conn.execute(
                _SQLITE_ACQUIRE,
                (lease.resource_id, lease.holder_id, lease.lease_expiry, lease.created_at, now),
            )
            if cur.rowcount == 1:
                return
            current = self._get(conn, lease.resource_id)
        raise _PreconditionFailed(current)

    def delete_if_holder(self, resource_id: str, holder_id: str) -> bool:
        with closing(self._connect()) as conn:
            cur = conn.execute(
                "DELETE FROM leases WHERE resource_id = ? AND holder_id = ?",
                (resource_id, holder_id),
            )
            return cur.rowcount == 1

    def _get(self, conn: sqlite3.Connection, resource_id: str) -> Lease | None:
        row = conn.execute(
            "SELECT resource_id, holder_id, lease_expiry, created_at FROM leases "
            "WHERE resource_id = ?",
            (resource_id,),
        ).fetchone()
        return Lease(*row) if row else None

    def get(self, resource_id: str) -> Lease | None:
        with closing(self._connect()) as conn:
            return self._get(conn, resource_id)

    def close(self) -> None:
        pass


def open_lock_store(uri: str, config: CloudSQLiteConfig | None = None) -> LockStore:
    """Open a lock store from a ``dynamodb://``, ``s3://`` or ``sqlite://`` URI."""
    cfg = config or CloudSQLiteConfig()
    target = parse_storage_target(uri)
    if target.backend == "dynamodb":
        assert target.table is not None
        return DynamoDBLockStore(target.table, config=cfg)
    if target.backend == "s3":
        assert target.bucket is not None
        return S3LockStore(target.bucket, target.prefix or "", config=cfg)
    if target.backend == "sqlite":
        assert target.path is not None
        return SqliteLockStore(target.path, busy_timeout_s=cfg.request_timeout_s)
    raise ValueError(f"Unsupported lock store backend '{target.backend}'")


__all__ = [
    "Lease",
    "Acquired",
    "Conflict",
    "ReleaseOutcome",
    "LockStore",
    "LeaseLockManager",
    "DynamoDBLockStore",
    "S3LockStore",
    "SqliteLockStore",
    "new_holder_id",
    "open_lock_store",
]
