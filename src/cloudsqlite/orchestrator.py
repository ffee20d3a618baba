"""The acquire → fetch → execute → publish → release cycle.

One cycle runs one statement against the shared database of one resource::

    START → ACQUIRING → FETCHING → EXECUTING → PUBLISHING → RELEASING → DONE

Any failure ends the cycle in ``ABORTED`` with the error's kind as the reason.
The lease is released and the working copy deleted on every path that got
past ACQUIRING. A lock conflict ends the cycle immediately; retrying is the
caller's decision (see ``run_with_retry``).
"""

from __future__ import annotations

import logging
import random
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

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
from cloudsqlite.executor import (
    StatementExecutor,
    StatementKind,
    StatementResult,
    initialize_database,
)
from cloudsqlite.locks import (
    Conflict,
    Lease,
    LeaseLockManager,
    ReleaseOutcome,
    new_holder_id,
    open_lock_store,
)
from cloudsqlite.snapshots import SnapshotStore, open_snapshot_store

logger = logging.getLogger(__name__)

RETRYABLE_KINDS = frozenset({"LockConflict", "LockServiceError", "FetchFailed"})


class Phase(Enum):
    START = "start"
    ACQUIRING = "acquiring"
    FETCHING = "fetching"
    EXECUTING = "executing"
    PUBLISHING = "publishing"
    RELEASING = "releasing"
    DONE = "done"
    ABORTED = "aborted"


def _as_cycle_error(phase: Phase, resource_id: str, err: Exception) -> CloudSQLiteError:
    """Translate an untyped failure into the error kind of the phase it occurred in."""
    detail = f"{type(err).__name__}: {err}"
    if phase is Phase.FETCHING:
        return FetchFailedError(resource_id, detail)
    if phase is Phase.EXECUTING:
        return ExecutionError(detail)
    if phase is Phase.PUBLISHING:
        return PublishFailedError(resource_id, detail)
    return LockServiceError(phase.value, detail)


@dataclass
class OperationRequest:
    statement: str
    resource_id: str | None = None
    kind: StatementKind = StatementKind.AUTO


@dataclass
class CycleTrace:
    """Phases one cycle went through, for logging and result reporting."""

    resource_id: str
    holder_id: str | None = None
    phases: list[Phase] = field(default_factory=lambda: [Phase.START])
    failed_in: Phase | None = None
    abort_reason: str | None = None
    bootstrapped: bool = False
    release_outcome: ReleaseOutcome | None = None

    @property
    def phase(self) -> Phase:
        return self.phases[-1]

    def enter(self, phase: Phase) -> None:
        logger.debug(
            "%s [%s]: %s -> %s", self.resource_id, self.holder_id, self.phase.name, phase.name
        )
        self.phases.append(phase)

    def abort(self, err: CloudSQLiteError) -> None:
        if self.failed_in is None:
            self.failed_in = self.phase
        self.abort_reason = err.kind
        self.enter(Phase.ABORTED)


@dataclass
class OperationResult:
    """Outcome of one cycle as reported to callers."""

    success: bool
    resource_id: str
    rows: list[dict[str, Any]] | None = None
    affected: int | None = None
    message: str | None = None
    error: str | None = None
    error_kind: str | None = None
    retryable: bool = False
    durability_unknown: bool = False
    lock_holder: str | None = None
    lock_expires_at: int | None = None
    trace: CycleTrace | None = None

    @classmethod
    def from_statement(cls, result: StatementResult, trace: CycleTrace) -> OperationResult:
        message = result.message
        if trace.bootstrapped:
            message += " (database initialized)"
        return cls(
            success=True,
            resource_id=trace.resource_id,
            rows=result.rows,
            affected=result.affected,
            message=message,
            trace=trace,
        )

    @classmethod
    def from_error(cls, err: CloudSQLiteError, trace: CycleTrace) -> OperationResult:
        res = cls(
            success=False,
            resource_id=trace.resource_id,
            message=str(err),
            error=str(err),
            error_kind=err.kind,
            retryable=err.retryable,
            durability_unknown=getattr(err, "durability_unknown", False),
            trace=trace,
        )
        if isinstance(err, LockConflictError):
            res.lock_holder = err.current_holder
            res.lock_expires_at = err.expires_at
        return res

    def to_dict(self) -> dict[str, Any]:
        """Response body. Optional fields are omitted when unset."""
        body: dict[str, Any] = {"success": self.success}
        if self.rows is not None:
            body["rows"] = self.rows
        if self.affected is not None:
            body["affected"] = self.affected
        if self.message:
            body["message"] = self.message
        if self.error:
            body["error"] = self.error
            body["error_kind"] = self.error_kind
        if self.durability_unknown:
            body["durability_unknown"] = True
        return body


class Orchestrator:
    """Runs statements against a shared database under a lease.

    Clients are passed in by the caller; nothing here is process-global.
    """

    def __init__(
        self,
        lock_manager: LeaseLockManager,
        snapshot_store: SnapshotStore,
        executor: StatementExecutor | None = None,
        config: CloudSQLiteConfig | None = None,
        *,
        holder_id_factory: Callable[[], str] = new_holder_id,
    ) -> None:
        self._config = config or CloudSQLiteConfig()
        self._config.validate()
        self._locks = lock_manager
        self._snapshots = snapshot_store
        self._executor = executor or StatementExecutor()
        self._holder_id_factory = holder_id_factory

    @property
    def config(self) -> CloudSQLiteConfig:
        return self._config

    def run(self, request: OperationRequest) -> OperationResult:
        """Run one cycle and report its outcome without raising typed errors."""
        trace = CycleTrace(resource_id=request.resource_id or self._config.default_resource_id)
        try:
            result = self.execute(
                request.statement, trace.resource_id, request.kind, trace=trace
            )
        except CloudSQLiteError as e:
            trace.abort(e)
            level = logging.ERROR if e.kind == "PublishFailed" else logging.WARNING
            logger.log(
                level, "Cycle on %s aborted in %s: %s", trace.resource_id, trace.failed_in, e
            )
            return OperationResult.from_error(e, trace)
        except Exception as e:
            err = _as_cycle_error(trace.phase, trace.resource_id, e)
            err.__cause__ = e
            trace.abort(err)
            logger.exception(
                "Cycle on %s failed unexpectedly in %s", trace.resource_id, trace.failed_in
            )
            return OperationResult.from_error(err, trace)
        return OperationResult.from_statement(result, trace)

    def execute(
        self,
        statement: str,
        resource_id: str | None = None,
        kind: StatementKind = StatementKind.AUTO,
        *,
        trace: CycleTrace | None = None,
    ) -> StatementResult:
        """Run one cycle, raising a ``CloudSQLiteError`` subclass on failure."""
        resource_id = resource_id or self._config.default_resource_id
        if trace is None:
            trace = CycleTrace(resource_id=resource_id)
        if not statement or not statement.strip():
            raise ValidationError("statement is required")

        trace.holder_id = self._holder_id_factory()
        trace.enter(Phase.ACQUIRING)
        outcome = self._locks.try_acquire(
            resource_id, trace.holder_id, self._config.lease_duration_s
        )
        if isinstance(outcome, Conflict):
            raise LockConflictError(resource_id, outcome.current_holder, outcome.expires_at)
        lease = outcome.lease

        try:
            trace.enter(Phase.FETCHING)
            try:
                scratch = tempfile.TemporaryDirectory(
                    prefix="cloudsqlite-",
                    dir=self._config.work_dir,
                    ignore_cleanup_errors=True,
                )
            except OSError as e:
                raise FetchFailedError(
                    resource_id, f"cannot create working directory: {e}"
                ) from e

            with scratch as workdir:
                working_copy = Path(workdir) / "working.db"
                self._fetch(resource_id, working_copy, trace)

                trace.enter(Phase.EXECUTING)
                result = self._executor.execute(working_copy, statement, kind)

                trace.enter(Phase.PUBLISHING)
                self._ensure_lease_safe(lease)
                self._snapshots.publish(working_copy, resource_id)
        except CloudSQLiteError:
            trace.failed_in = trace.phase
            raise
        except Exception as e:
            trace.failed_in = trace.phase
            raise _as_cycle_error(trace.phase, resource_id, e) from e
        finally:
            trace.enter(Phase.RELEASING)
            self._release(lease, trace)

        trace.enter(Phase.DONE)
        logger.info("%s on %s by %s", result.message, resource_id, lease.holder_id)
        return result

    def _fetch(self, resource_id: str, working_copy: Path, trace: CycleTrace) -> None:
        try:
            self._snapshots.fetch(resource_id, working_copy)
        except SnapshotNotFoundError:
            logger.info("No snapshot for %s yet; starting from an empty database", resource_id)
            initialize_database(working_copy, self._config.bootstrap_sql)
            trace.bootstrapped = True

    def _ensure_lease_safe(self, lease: Lease) -> None:
        margin = self._config.effective_publish_margin_s
        if self._locks.now() + margin >= lease.lease_expiry:
            raise LeaseExpiredError(lease.resource_id, lease.lease_expiry)

    def _release(self, lease: Lease, trace: CycleTrace) -> None:
        try:
            trace.release_outcome = self._locks.release(lease.resource_id, lease.holder_id)
        except LockServiceError as e:
            logger.warning(
                "Could not release lease on %s held by %s (expires at %d): %s",
                lease.resource_id,
                lease.holder_id,
                lease.lease_expiry,
                e,
            )


def run_with_retry(
    orchestrator: Orchestrator,
    request: OperationRequest,
    *,
    attempts: int = 5,
    base_delay_s: float = 0.2,
    max_delay_s: float = 10.0,
    sleep: Callable[[float], None] = time.sleep,
) -> OperationResult:
    """Re-run a request with jittered exponential backoff.

    Only kinds whose failed cycle left the remote snapshot untouched are
    retried. Publish failures are not: the statement may already be durable
    and running it again could apply it twice.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    result = orchestrator.run(request)
    for attempt in range(1, attempts):
        if result.success or result.error_kind not in RETRYABLE_KINDS:
            break
        delay = min(max_delay_s, base_delay_s * (2 ** (attempt - 1)))
        delay = random.uniform(delay / 2, delay)
        logger.info(
            "Retrying %s on %s in %.2fs (attempt %d/%d)",
            result.error_kind,
            result.resource_id,
            delay,
            attempt + 1,
            attempts,
        )
        sleep(delay)
        result = orchestrator.run(request)
    return result


def build_orchestrator(config: CloudSQLiteConfig) -> Orchestrator:
    """Construct an orchestrator whose stores are selected by the config URIs."""
    config.validate()
    lock_manager = LeaseLockManager(open_lock_store(config.lock_uri, config))
    snapshot_store = open_snapshot_store(config.snapshot_uri, config)
    return Orchestrator(
        lock_manager,
        snapshot_store,
        StatementExecutor(busy_timeout_s=config.request_timeout_s),
        config,
    )


__all__ = [
    "build_orchestrator",
    "Phase",
    "OperationRequest",
    "OperationResult",
    "CycleTrace",
    "Orchestrator",
    "run_with_retry",
]
