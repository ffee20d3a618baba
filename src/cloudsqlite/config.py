"""Configuration for cloudsqlite workers."""

from __future__ import annotations

import os
from dataclasses import dataclass

ENV_PREFIX = "CLOUDSQLITE_"


@dataclass
class CloudSQLiteConfig:
    """Configuration for one worker process.

    The lease must outlive a full download/execute/upload cycle. Requests to
    the stores are bounded by ``request_timeout_s`` and a cycle makes at most
    a handful of them, so ``validate`` requires the lease to cover several
    timeouts. ``publish_margin_s`` is the minimum lease time that must remain
    before a working copy is published.
    """

    snapshot_uri: str = "file://./s3_storage"
    lock_uri: str = "sqlite:///./s3_storage/locks.db"
    default_resource_id: str = "database.db"
    lease_duration_s: int = 300
    publish_margin_s: int | None = None
    region: str | None = None
    s3_endpoint_url: str | None = None
    dynamodb_endpoint_url: str | None = None
    request_timeout_s: float = 10.0
    max_attempts: int = 3
    work_dir: str | None = None
    bootstrap_sql: str | None = None

    @property
    def effective_publish_margin_s(self) -> int:
        if self.publish_margin_s is not None:
            return self.publish_margin_s
        return max(1, self.lease_duration_s // 3)

    def validate(self) -> None:
        """Reject settings that would let a healthy holder lose its lease."""
        if not self.default_resource_id:
            raise ValueError("default_resource_id must not be empty")
        if self.lease_duration_s <= 0:
            raise ValueError("lease_duration_s must be positive")
        if self.effective_publish_margin_s >= self.lease_duration_s:
            raise ValueError(
                f"publish_margin_s ({self.effective_publish_margin_s}) must be "
                f"shorter than lease_duration_s ({self.lease_duration_s})"
            )
        # lock write + fetch + publish, each retried up to max_attempts
        worst_case_io_s = 3 * self.max_attempts * self.request_timeout_s
        if self.lease_duration_s <= worst_case_io_s:
            raise ValueError(
                f"lease_duration_s ({self.lease_duration_s}) must exceed the worst-case "
                f"store I/O time of one cycle ({worst_case_io_s:g}s)"
            )

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> CloudSQLiteConfig:
        """Load configuration from ``CLOUDSQLITE_*`` environment variables."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def _get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        margin = _get("PUBLISH_MARGIN_S")
        return cls(
            snapshot_uri=_get("SNAPSHOT_URI") or defaults.snapshot_uri,
            lock_uri=_get("LOCK_URI") or defaults.lock_uri,
            default_resource_id=_get("DEFAULT_RESOURCE") or defaults.default_resource_id,
            lease_duration_s=int(_get("LEASE_DURATION_S") or defaults.lease_duration_s),
            publish_margin_s=int(margin) if margin is not None else None,
            region=_get("REGION") or env.get("AWS_REGION") or None,
            s3_endpoint_url=_get("S3_ENDPOINT_URL"),
            dynamodb_endpoint_url=_get("DYNAMODB_ENDPOINT_URL"),
            request_timeout_s=float(_get("REQUEST_TIMEOUT_S") or defaults.request_timeout_s),
            max_attempts=int(_get("MAX_ATTEMPTS") or defaults.max_attempts),
            work_dir=_get("WORK_DIR"),
            bootstrap_sql=_get("BOOTSTRAP_SQL"),
        )
