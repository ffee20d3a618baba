"""Shared test fixtures and in-process fakes for cloudsqlite tests."""

from __future__ import annotations

import io
import itertools
import threading
from typing import Any

import pytest
from botocore.exceptions import ClientError

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.locks import DynamoDBLockStore, LeaseLockManager, S3LockStore, SqliteLockStore
from cloudsqlite.orchestrator import Orchestrator
from cloudsqlite.snapshots import LocalSnapshotStore

T0 = 1_700_000_000


def client_error(code: str, operation: str, **extra: Any) -> ClientError:
    response: dict[str, Any] = {"Error": {"Code": code, "Message": code}, **extra}
    return ClientError(response, operation)  # type: ignore[arg-type]


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = T0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeS3Client:
    """Minimal thread-safe S3 client with ETag preconditions."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}
        self.fail_on: dict[str, Exception] = {}
        self._lock = threading.Lock()
        self._etags = itertools.count(1)

    def _maybe_fail(self, op: str) -> None:
        exc = self.fail_on.get(op)
        if exc is not None:
            raise exc

    def get_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self._maybe_fail("get_object")
        with self._lock:
            found = self.objects.get((Bucket, Key))
        if found is None:
            raise client_error("NoSuchKey", "GetObject")
        body, etag = found
        return {"Body": io.BytesIO(body), "ETag": etag}

    def put_object(
        self,
        *,
        Bucket: str,
        Key: str,
        Body: Any,
        ContentType: str | None = None,
        IfNoneMatch: str | None = None,
        IfMatch: str | None = None,
    ) -> dict[str, Any]:
        self._maybe_fail("put_object")
        data = Body if isinstance(Body, bytes) else Body.read()
        with self._lock:
            existing = self.objects.get((Bucket, Key))
            if IfNoneMatch == "*" and existing is not None:
                raise client_error("PreconditionFailed", "PutObject")
            if IfMatch is not None and (existing is None or existing[1] != IfMatch):
                raise client_error("PreconditionFailed", "PutObject")
            etag = f'"{next(self._etags)}"'
            self.objects[(Bucket, Key)] = (data, etag)
        return {"ETag": etag}

    def delete_object(self, *, Bucket: str, Key: str, IfMatch: str | None = None) -> dict[str, Any]:
        self._maybe_fail("delete_object")
        with self._lock:
            existing = self.objects.get((Bucket, Key))
            if IfMatch is not None and (existing is None or existing[1] != IfMatch):
                raise client_error("PreconditionFailed", "DeleteObject")
            self.objects.pop((Bucket, Key), None)
        return {}


class FakeDynamoDBClient:
    """Minimal thread-safe DynamoDB client that evaluates the lease conditions."""

    ACQUIRE_CONDITION = "attribute_not_exists(resource_id) OR lease_expiry < :now"
    RELEASE_CONDITION = "holder_id = :holder_id"

    def __init__(self) -> None:
        self.items: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.fail_on: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def _conditional_failure(self, op: str, old: dict[str, Any] | None) -> ClientError:
        extra = {"Item": dict(old)} if old is not None else {}
        return client_error("ConditionalCheckFailedException", op, **extra)

    def put_item(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("put_item", kwargs))
        if "put_item" in self.fail_on:
            raise self.fail_on["put_item"]
        assert kwargs["ConditionExpression"] == self.ACQUIRE_CONDITION
        item = kwargs["Item"]
        now = int(kwargs["ExpressionAttributeValues"][":now"]["N"])
        key = item["resource_id"]["S"]
        with self._lock:
            existing = self.items.get(key)
            if existing is not None and not int(existing["lease_expiry"]["N"]) < now:
                returned = existing if kwargs.get("ReturnValuesOnConditionCheckFailure") else None
                raise self._conditional_failure("PutItem", returned)
            self.items[key] = dict(item)
        return {}

    def delete_item(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("delete_item", kwargs))
        if "delete_item" in self.fail_on:
            raise self.fail_on["delete_item"]
        assert kwargs["ConditionExpression"] == self.RELEASE_CONDITION
        key = kwargs["Key"]["resource_id"]["S"]
        holder = kwargs["ExpressionAttributeValues"][":holder_id"]["S"]
        with self._lock:
            existing = self.items.get(key)
            if existing is None or existing["holder_id"]["S"] != holder:
                raise self._conditional_failure("DeleteItem", None)
            del self.items[key]
        return {}

    def get_item(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(("get_item", kwargs))
        if "get_item" in self.fail_on:
            raise self.fail_on["get_item"]
        key =kwargs["Key"]["resource_id"]["S"]
        with self._lock:
            existing = self.items.get(key)
        return {"Item": dict(existing)} if existing is not None else {}


# --- Fixtures ---


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(params=["sqlite", "dynamodb", "s3"])
def lock_store(request, tmp_path):
    """Every lock store backend, each on its own isolated backing state."""
    if request.param == "sqlite":
        return SqliteLockStore(str(tmp_path / "locks.db"))
    if request.param == "dynamodb":
        return DynamoDBLockStore("locks", client=FakeDynamoDBClient())
    return S3LockStore("lock-bucket", "leases", client=FakeS3Client())


@pytest.fixture
def lock_manager(lock_store, clock):
    return LeaseLockManager(lock_store, clock=clock)


@pytest.fixture
def local_locks(tmp_path, clock):
    """Lock manager on a local SQLite lock table."""
    return LeaseLockManager(SqliteLockStore(str(tmp_path / "locks.db")), clock=clock)


@pytest.fixture
def snapshot_store(tmp_path):
    return LocalSnapshotStore(tmp_path / "snapshots")


@pytest.fixture
def config(tmp_path):
    work_dir = tmp_path / "work"
    work_dir.mkdir()
    return CloudSQLiteConfig(
        snapshot_uri=f"file://{tmp_path / 'snapshots'}",
        lock_uri=f"sqlite:///{tmp_path / 'locks.db'}",
        work_dir=str(work_dir),
    )


@pytest.fixture
def orchestrator(local_locks, snapshot_store, config):
    return Orchestrator(local_locks, snapshot_store, config=config)
