"""Shared pytest fixtures: fake AWS clients and sample log data."""

import base64

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from coldbench.models import FunctionMetadata, InvocationRecord, PendingReconciliation
from coldbench.store import BenchmarkStore

TABLE_NAME = "Benchmarks"


@pytest.fixture(autouse=True)
def aws_environment(monkeypatch):
    """Keep tests away from real credentials."""
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.delenv("TABLE_NAME", raising=False)
    monkeypatch.delenv("COMMA_SEP_ARNS", raising=False)


def client_error(code: str, operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


def report_line(request_id: str, duration: float, init: float | None = None) -> str:
    line = (
        f"REPORT RequestId: {request_id}\tDuration: {duration} ms\tBilled Duration: {int(duration) + 1} ms\t"
        "Memory Size: 512 MB\tMax Memory Used: 70 MB\t"
    )
    if init is not None:
        line += f"Init Duration: {init} ms\t"
    return line


def log_result(request_id: str, duration: float, init: float | None = None) -> str:
    """Return a base64 log tail as returned by a tailed invocation."""
    text = (
        f"START RequestId: {request_id} Version: $LATEST\n"
        f"END RequestId: {request_id}\n"
        f"{report_line(request_id, duration, init)}\n"
    )
    return base64.b64encode(text.encode()).decode()


def make_configuration(name: str = "bench-node", runtime: str = "nodejs14.x") -> dict:
    return {
        "FunctionName": name,
        "Runtime": runtime,
        "Architectures": ["arm64"],
        "MemorySize": 512,
        "CodeSize": 2048,
        "Description": "benchmark target",
        "Layers": [],
        "Environment": {"Variables": {"NODE_OPTIONS": "--enable-source-maps"}},
    }


def make_record(request_id: str, stream: str = "stream-1", group: str = "/aws/lambda/bench-node",
                start: int = 1_000_000, end: int = 1_000_100, duration: float = 100.0) -> InvocationRecord:
    return InvocationRecord(
        duration_ms=duration,
        log_group=group,
        log_stream=stream,
        request_id=request_id,
        start_time=start,
        end_time=end,
    )


def make_pending(records, sort_key: str = "2024-01-15#rest-bench-node", last_call: int | None = None,
                 attempts: int = 0) -> PendingReconciliation:
    return PendingReconciliation(
        partition_key="nodejs14.x",
        sort_key=sort_key,
        date="2024-01-15",
        last_call=last_call if last_call is not None else max(r.end_time for r in records),
        records=list(records),
        metadata=FunctionMetadata.from_configuration(make_configuration()),
        attempts=attempts,
    )


@pytest.fixture
def metadata():
    return FunctionMetadata.from_configuration(make_configuration())


@pytest.fixture
def dynamodb_table():
    """Create a mock benchmark table with the pending index."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "pk", "KeyType": "HASH"},
                {"AttributeName": "sk", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "pk", "AttributeType": "S"},
                {"AttributeName": "sk", "AttributeType": "S"},
                {"AttributeName": "LastCall", "AttributeType": "N"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": "itemsThatNeedCwData",
                    "KeySchema": [
                        {"AttributeName": "pk", "KeyType": "HASH"},
                        {"AttributeName": "LastCall", "KeyType": "RANGE"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                }
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        yield table


@pytest.fixture
def store(dynamodb_table):
    return BenchmarkStore(TABLE_NAME, table=dynamodb_table)
