"""Example 02: API Gateway handler on S3 + DynamoDB.

Wires an orchestrator from CLOUDSQLITE_* environment variables and exposes it
as an API Gateway proxy handler. Deploy this module as the function entry
point with, for example::

    CLOUDSQLITE_SNAPSHOT_URI=s3://cloudsqlite-databases
    CLOUDSQLITE_LOCK_URI=dynamodb://CloudSQLite-Locks
    CLOUDSQLITE_LEASE_DURATION_S=300

The DynamoDB table needs a string partition key named ``resource_id``;
enabling TTL on ``lease_expiry`` lets the table drop stale records on its own.

Running the module directly invokes the handler once with a sample event.
"""

import json

from cloudsqlite import CloudSQLiteConfig, build_orchestrator, make_lambda_handler

handler = make_lambda_handler(build_orchestrator(CloudSQLiteConfig.from_env()))


def main():
    event = {"body": json.dumps({"statement": "SELECT name FROM sqlite_master"})}
    response = handler(event, None)
    print(response["statusCode"])
    print(json.dumps(json.loads(response["body"]), indent=2))


if __name__ == "__main__":
    main()
