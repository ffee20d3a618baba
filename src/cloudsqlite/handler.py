"""Request parsing, response shaping and status mapping for front ends.

Any front end (API Gateway proxy, HTTP server, queue consumer) hands the raw
request body to ``handle`` and gets back a status code and a JSON-ready body.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable

from cloudsqlite.errors import ValidationError
from cloudsqlite.executor import StatementKind
from cloudsqlite.orchestrator import CycleTrace, OperationRequest, OperationResult, Orchestrator

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "ValidationError": 400,
    "LockConflict": 409,
    "LockServiceError": 500,
    "FetchFailed": 500,
    "PublishFailed": 500,
    "ExecutionError": 500,
}

# Older clients send sql_statement and database_name.
_STATEMENT_ALIASES = ("statement", "sql_statement")
_RESOURCE_ALIASES = ("resource_id", "database_name")


@dataclass
class Response:
    status_code: int
    body: dict[str, Any]

    def json(self) -> str:
        return dumps(self.body)


def _json_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(body: Any) -> str:
    """Serialize a response body; binary column values become base64 strings."""
    return json.dumps(body, default=_json_default)


def _first(payload: dict[str, Any], names: tuple[str, ...]) -> Any:
    for name in names:
        if payload.get(name) is not None:
            return payload[name]
    return None


def parse_request(payload: dict[str, Any] | str | bytes | None) -> OperationRequest:
    """Validate a raw request body into an ``OperationRequest``."""
    if payload is None:
        raise ValidationError("Request body is required")
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            raise ValidationError("Invalid JSON in request body") from e
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    statement = _first(payload, _STATEMENT_ALIASES)
    if not isinstance(statement, str) or not statement.strip():
        raise ValidationError("SQL statement is required")

    resource_id = _first(payload, _RESOURCE_ALIASES)
    if resource_id is not None:
        if not isinstance(resource_id, str):
            raise ValidationError("resource_id must be a string")
        resource_id = resource_id.strip() or None
        if resource_id is not None and (
            resource_id.startswith("/") or ".." in resource_id.split("/")
        ):
            raise ValidationError(f"Invalid resource_id: {resource_id!r}")

    raw_kind = payload.get("kind", StatementKind.AUTO.value)
    try:
        kind = StatementKind(raw_kind)
    except ValueError as e:
        allowed = ", ".join(k.value for k in StatementKind)
        raise ValidationError(f"kind must be one of: {allowed}") from e

    return OperationRequest(statement=statement, resource_id=resource_id, kind=kind)


def to_response(result: OperationResult) -> Response:
    if result.success:
        return Response(200, result.to_dict())
    return Response(STATUS_BY_KIND.get(result.error_kind or "", 500), result.to_dict())


def handle(payload: dict[str, Any] | str | bytes | None, orchestrator: Orchestrator) -> Response:
    """Validate, run and shape one request."""
    try:
        request = parse_request(payload)
    except ValidationError as e:
        logger.info("Rejected request: %s", e)
        trace = CycleTrace(resource_id=orchestrator.config.default_resource_id)
        trace.abort(e)
        return to_response(OperationResult.from_error(e, trace))
    return to_response(orchestrator.run(request))


def make_lambda_handler(
    orchestrator: Orchestrator,
) -> Callable[[dict[str, Any], Any], dict[str, Any]]:
    """Build an API Gateway proxy handler bound to ``orchestrator``."""

    def lambda_handler(event: dict[str, Any], context: Any = None) -> dict[str, Any]:
        body = event.get("body")
        if body is not None and event.get("isBase64Encoded"):
            body = base64.b64decode(body)
        response = handle(body, orchestrator)
        return {
            "statusCode": response.status_code,
            "headers": {"Content-Type": "application/json"},
            "body": response.json(),
        }

    return lambda_handler


__all__ = [
    "Response",
    "STATUS_BY_KIND",
    "dumps",
    "parse_request",
    "to_response",
    "handle",
    "make_lambda_handler",
]
