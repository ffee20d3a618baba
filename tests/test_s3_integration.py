"""Live backend integration tests (MinIO / LocalStack / DynamoDB Local compatible)."""

from __future__ import annotations

import os
import threading
import uuid

import boto3
import pytest

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.locks import DynamoDBLockStore, LeaseLockManager, S3LockStore
from cloudsqlite.orchestrator import OperationRequest, Orchestrator
from cloudsqlite.snapshots import S3SnapshotStore


@pytest.fixture
def s3_backend() -> dict[str, str]:
    if os.getenv("CLOUDSQLITE_S3_TEST") != "1":
        pytest.skip("S3 integration tests disabled (set CLOUDSQLITE_S3_TEST=1)")

    endpoint = os.getenv("CLOUDSQLITE_S3_ENDPOINT", "http://127.0.0.1:9000")
    bucket = os.getenv("CLOUDSQLITE_S3_BUCKET", "cloudsqlite-test")
    region = os.getenv("CLOUDSQLITE_S3_REGION", "us-east-1")

    s3 = boto3.client("s3", endpoint_url=endpoint, region_name=region)
    existing = {b["Name"] for b in s3.list_buckets().get("Buckets", [])}
    if bucket not in existing:
        s3.create_bucket(Bucket=bucket)

    return {
        "endpoint": endpoint,
        "region": region,
        "bucket": bucket,
        "prefix": f"it/{uuid.uuid4().hex}",
    }


@pytest.fixture
def dynamodb_backend() -> dict[str, str]:
    if os.getenv("CLOUDSQLITE_DYNAMODB_TEST") != "1":
        pytest.skip("DynamoDB integration tests disabled (set CLOUDSQLITE_DYNAMODB_TEST=1)")

    endpoint = os.getenv("CLOUDSQLITE_DYNAMODB_ENDPOINT", "http://127.0.0.1:8000")
    region = os.getenv("CLOUDSQLITE_DYNAMODB_REGION", "us-east-1")
    table = f"cloudsqlite-it-{uuid.uuid4().hex[:12]}"

    ddb = boto3.client("dynamodb", endpoint_url=endpoint, region_name=region)
    ddb.create_table(
        TableName=table,
        KeySchema=[{"AttributeName": "resource_id", "KeyType": "HASH"}],
        AttributeDefinitions=[{"AttributeName": "resource_id", "AttributeType": "S"}],
        BillingMode="PAY_PER_REQUEST",
    )
    ddb.get_waiter("table_exists").wait(TableName=table)
    yield {"endpoint": endpoint, "region": region, "table": table}
    ddb.delete_table(TableName=table)


def _cfg(backend: dict[str, str], tmp_path) -> CloudSQLiteConfig:
    return CloudSQLiteConfig(
        region=backend["region"],
        s3_endpoint_url=backend["endpoint"],
        dynamodb_endpoint_url=backend["endpoint"],
        request_timeout_s=5.0,
        work_dir=str(tmp_path),
    )


def _race(manager_factory, n: int = 6) -> list[bool]:
    barrier = threading.Barrier(n)
    won: list[bool] = []
    guard = threading.Lock()

    def worker(i: int) -> None:
        manager = manager_factory()
        barrier.wait()
        outcome = manager.try_acquire("race.db", f"it-{i}", lease_duration_s=60)
        with guard:
            won.append(outcome.acquired)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(n)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return won


@pytest.mark.s3
def test_s3_full_cycle(s3_backend, tmp_path):
    cfg = _cfg(s3_backend, tmp_path)
    orch = Orchestrator(
        LeaseLockManager(S3LockStore(s3_backend["bucket"], s3_backend["prefix"], config=cfg)),
        S3SnapshotStore(s3_backend["bucket"], s3_backend["prefix"], config=cfg),
        config=cfg,
    )

    created = orch.run(OperationRequest("CREATE TABLE t (id INTEGER, v TEXT)", "it.db"))
    assert created.success, created.error
    assert created.trace.bootstrapped

    assert orch.run(OperationRequest("INSERT INTO t VALUES (1, 'one')", "it.db")).affected == 1
    rows = orch.run(OperationRequest("SELECT id, v FROM t", "it.db")).rows
    assert rows == [{"id": 1, "v": "one"}]


@pytest.mark.s3
def test_s3_conditional_writes_admit_one_holder(s3_backend, tmp_path):
    cfg = _cfg(s3_backend, tmp_path)

    def factory():
        return LeaseLockManager(S3LockStore(s3_backend["bucket"], s3_backend["prefix"], config=cfg))

    assert sorted(_race(factory)) == [False] * 5 + [True]


@pytest.mark.dynamodb
def test_dynamodb_conditional_writes_admit_one_holder(dynamodb_backend, tmp_path):
    cfg = _cfg(dynamodb_backend, tmp_path)

    def factory():
        return LeaseLockManager(DynamoDBLockStore(dynamodb_backend["table"], config=cfg))

    assert sorted(_race(factory)) == [False] * 5 + [True]


@pytest.mark.dynamodb
def test_dynamodb_release_is_fenced(dynamodb_backend, tmp_path):
    cfg = _cfg(dynamodb_backend, tmp_path)
    manager = LeaseLockManager(DynamoDBLockStore(dynamodb_backend["table"], config=cfg))

    assert manager.try_acquire("fenced.db", "owner", lease_duration_s=60).acquired
    assert manager.release("fenced.db", "intruder").value == "not_holder"
    assert manager.describe("fenced.db").holder_id == "owner"
    assert manager.release("fenced.db", "owner").value == "released"
