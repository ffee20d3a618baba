"""Structured error types for cloudsqlite."""

from __future__ import annotations


class CloudSQLiteError(Exception):
    """Base error for all cloudsqlite errors."""

    kind = "Error"
    retryable = False


class ValidationError(CloudSQLiteError):
    """Raised when a request is missing fields or carries bad values."""

    kind = "ValidationError"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class LockConflictError(CloudSQLiteError):
    """Raised when another holder owns a live lease on the resource."""

    kind = "LockConflict"
    retryable = True

    def __init__(
        self, resource_id: str, current_holder: str | None, expires_at: int | None
    ) -> None:
        self.resource_id = resource_id
        self.current_holder = current_holder
        self.expires_at = expires_at
        holder = current_holder or "unknown holder"
        until = f" until {expires_at}" if expires_at is not None else ""
        super().__init__(f"Resource '{resource_id}' is locked by {holder}{until}")


class LockServiceError(CloudSQLiteError):
    """Raised when the lock store cannot be reached or rejects a request."""

    kind = "LockServiceError"
    retryable = True

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Lock service error during {operation}: {detail}")


class LeaseExpiredError(LockServiceError):
    """Raised when a lease is too close to expiry to publish safely."""

    def __init__(self, resource_id: str, expires_at: int) -> None:
        self.resource_id = resource_id
        self.expires_at = expires_at
        super().__init__(
            "publish",
            f"lease on '{resource_id}' expires at {expires_at}; changes were not published",
        )


class FetchFailedError(CloudSQLiteError):
    """Raised when a snapshot cannot be downloaded from the object store."""

    kind = "FetchFailed"
    retryable = True

    def __init__(self, resource_id: str, detail: str) -> None:
        self.resource_id = resource_id
        self.detail = detail
        super().__init__(f"Failed to fetch snapshot '{resource_id}': {detail}")


class SnapshotNotFoundError(FetchFailedError):
    """Raised when no snapshot has ever been published for the resource."""

    retryable = False

    def __init__(self, resource_id: str) -> None:
        super().__init__(resource_id, "snapshot does not exist")


class PublishFailedError(CloudSQLiteError):
    """Raised when a mutated working copy could not be published.

    The statement already ran against the working copy, so whether its effect
    is durable remotely is unknown to the caller.
    """

    kind = "PublishFailed"
    retryable = True
    durability_unknown = True

    def __init__(self, resource_id: str, detail: str) -> None:
        self.resource_id = resource_id
        self.detail = detail
        super().__init__(
            f"Failed to publish snapshot '{resource_id}': {detail}; "
            "the statement's effect may not be durable"
        )


class ExecutionError(CloudSQLiteError):
    """Raised when the database engine rejects a statement."""

    kind = "ExecutionError"

    def __init__(self, message: str) -> None:
        super().__init__(message)
