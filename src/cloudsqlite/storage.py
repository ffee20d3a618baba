"""Store URI parsing and shared AWS client helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from cloudsqlite.config import CloudSQLiteConfig


@dataclass(frozen=True)
class StorageTarget:
    """Resolved store location from a URI."""

    backend: str
    uri: str
    path: str | None = None
    bucket: str | None = None
    prefix: str | None = None
    table: str | None = None


def parse_storage_target(uri: str) -> StorageTarget:
    """Resolve a store URI.

    Supported forms::

        s3://bucket/prefix        object store (snapshots or locks)
        dynamodb://table          conditional-write lock table
        sqlite:///relative.db     local lock table (sqlite:////abs.db for absolute)
        file:///abs/dir           local snapshot directory (file://./rel for relative)
    """
    parsed = urlparse(uri)

    if parsed.scheme == "s3":
        bucket = parsed.netloc
        if not bucket:
            raise ValueError(f"Invalid s3 URI: {uri}")
        prefix = parsed.path.strip("/")
        return StorageTarget(backend="s3", uri=uri, bucket=bucket, prefix=prefix)

    if parsed.scheme == "dynamodb":
        table = parsed.netloc or parsed.path.strip("/")
        if not table:
            raise ValueError(f"Invalid dynamodb URI: {uri}")
        return StorageTarget(backend="dynamodb", uri=uri, table=table)

    if parsed.scheme == "sqlite":
        sqlite_path = parsed.path
        if parsed.netloc:
            sqlite_path = f"{parsed.netloc}{sqlite_path}"
        elif sqlite_path.startswith("/"):
            # sqlite:///rel.db -> rel.db, sqlite:////abs.db -> /abs.db
            sqlite_path = sqlite_path[1:]
        if not sqlite_path:
            raise ValueError(f"Invalid sqlite URI: {uri}")
        return StorageTarget(backend="sqlite", uri=uri, path=sqlite_path)

    if parsed.scheme == "file":
        local_path = f"{parsed.netloc}{parsed.path}"
        if not local_path:
            raise ValueError(f"Invalid file URI: {uri}")
        return StorageTarget(backend="file", uri=uri, path=local_path)

    raise ValueError(f"Unsupported store URI scheme '{parsed.scheme}' in {uri!r}")


def make_client(service: str, config: CloudSQLiteConfig, *, endpoint_url: str | None = None) -> Any:
    """Build a boto3 client with bounded timeouts and standard retries."""
    session = boto3.Session(region_name=config.region)
    return session.client(
        service,
        region_name=config.region,
        endpoint_url=endpoint_url,
        config=BotoConfig(
            connect_timeout=config.request_timeout_s,
            read_timeout=config.request_timeout_s,
            retries={"max_attempts": config.max_attempts, "mode": "standard"},
        ),
    )


def error_code(err: Exception) -> str:
    if isinstance(err, ClientError):
        return str(err.response.get("Error", {}).get("Code", ""))
    return ""


def is_not_found(err: Exception) -> bool:
    return error_code(err) in {"NoSuchKey", "404", "NotFound"}


def is_precondition_failed(err: Exception) -> bool:
    return error_code(err) in {"PreconditionFailed", "412", "ConditionalRequestConflict"}


def is_conditional_check_failed(err: Exception) -> bool:
    return error_code(err) == "ConditionalCheckFailedException"


__all__ = [
    "StorageTarget",
    "parse_storage_target",
    "make_client",
    "error_code",
    "is_not_found",
    "is_precondition_failed",
    "is_conditional_check_failed",
]
