"""Whole-file snapshot transfer between the object store and a working copy.

Stores here move opaque blobs and do no concurrency control of their own:
callers must hold the resource's lease for the whole fetch/publish cycle.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from cloudsqlite.config import CloudSQLiteConfig
from cloudsqlite.errors import FetchFailedError, PublishFailedError, SnapshotNotFoundError
from cloudsqlite.storage import is_not_found, make_client, parse_storage_target

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class SnapshotStore(Protocol):
    """Backend contract for database snapshots."""

    def fetch(self, resource_id: str, dest: Path) -> Path:
        """Download the snapshot for ``resource_id`` into ``dest``.

        Raises ``SnapshotNotFoundError`` if nothing was ever published for the
        resource and ``FetchFailedError`` for any other failure.
        """
        ...

    def publish(self, path: Path, resource_id: str) -> None:
        """Replace the remote snapshot with the file at ``path``."""
        ...


class S3SnapshotStore:
    """One object per resource under ``s3://bucket/prefix/``."""

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
        return f"{self.prefix}/{resource_id}" if self.prefix else resource_id

    def fetch(self, resource_id: str, dest: Path) -> Path:
        key = self._key(resource_id)
        try:
            resp = self._s3.get_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            if is_not_found(e):
                raise SnapshotNotFoundError(resource_id) from e
            raise FetchFailedError(resource_id, str(e)) from e

        body = resp["Body"]
        try:
            with open(dest, "wb") as fh:
                shutil.copyfileobj(body, fh, _CHUNK_SIZE)
        except Exception as e:
            raise FetchFailedError(resource_id, str(e)) from e
        finally:
            body.close()

        logger.debug("Fetched s3://%s/%s to %s", self.bucket, key, dest)
        return dest

    def publish(self, path: Path, resource_id: str) -> None:
        key = self._key(resource_id)
        try:
            with open(path, "rb") as fh:
                self._s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=fh,
                    ContentType="application/vnd.sqlite3",
                )
        except Exception as e:
            raise PublishFailedError(resource_id, str(e)) from e
        logger.debug("Published %s to s3://%s/%s", path, self.bucket, key)


class LocalSnapshotStore:
    """Snapshots as files in a local directory standing in for an object store.

    Publishing writes a temporary sibling and renames it over the target, so
    readers never observe a partially written snapshot.
    """

    def __init__(self, root: str | Path) -> None:
        self.root = Path(root)

    def _path(self, resource_id: str) -> Path:
        target = (self.root / resource_id).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Resource id escapes the snapshot directory: {resource_id!r}")
        return target

    def fetch(self, resource_id: str, dest: Path) -> Path:
        try:
            source = self._path(resource_id)
            shutil.copyfile(source, dest)
        except FileNotFoundError as e:
            raise SnapshotNotFoundError(resource_id) from e
        except (OSError, ValueError) as e:
            raise FetchFailedError(resource_id, str(e)) from e
        return dest

    def publish(self, path: Path, resource_id: str) -> None:
        tmp_name: str | None = None
        try:
            target = self._path(resource_id)
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".publish-", dir=target.parent)
            with os.fdopen(fd, "wb") as out, open(path, "rb") as src:
                shutil.copyfileobj(src, out, _CHUNK_SIZE)
                out.flush()
                os.fsync(out.fileno())
            os.replace(tmp_name, target)
            tmp_name = None
        except (OSError, ValueError) as e:
            raise PublishFailedError(resource_id, str(e)) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)


def open_snapshot_store(uri: str, config: CloudSQLiteConfig | None = None) -> SnapshotStore:
    """Open a snapshot store from an ``s3://`` or ``file://`` URI."""
    cfg = config or CloudSQLiteConfig()
    target = parse_storage_target(uri)
    if target.backend == "s3":
        assert target.bucket is not None
        return S3SnapshotStore(target.bucket, target.prefix or "", config=cfg)
    if target.backend == "file":
        assert target.path is not None
        return LocalSnapshotStore(target.path)
    raise ValueError(f"Unsupported snapshot store backend '{target.backend}'")


__all__ = [
    "SnapshotStore",
    "S3SnapshotStore",
    "LocalSnapshotStore",
    "open_snapshot_store",
]
