"""Process exit codes for CLI commands."""

SUCCESS = 0
EXECUTION_FAILURE = 1
USAGE_ERROR = 2
LOCK_CONFLICT = 3
STORE_ERROR = 4
DURABILITY_UNKNOWN = 5

BY_ERROR_KIND = {
    "ValidationError": USAGE_ERROR,
    "LockConflict": LOCK_CONFLICT,
    "LockServiceError": STORE_ERROR,
    "FetchFailed": STORE_ERROR,
    "PublishFailed": DURABILITY_UNKNOWN,
    "ExecutionError": EXECUTION_FAILURE,
}
