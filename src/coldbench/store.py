"""DynamoDB storage for benchmark results."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from coldbench.models import (
    BenchmarkEntry,
    FunctionMetadata,
    InvocationRecord,
    PendingReconciliation,
    Stats,
)

logger = logging.getLogger(__name__)

# Sparse index: only items that still carry a LastCall watermark appear in it
PENDING_INDEX = "itemsThatNeedCwData"
ABANDONED = "abandoned"


class StoreError(Exception):
    """Error reading or writing the benchmark table."""

    pass


def sort_key(date: str, function_name: str, group: str = "") -> str:
    """Return the sort key of a benchmark result, e.g. "2024-01-15#rest-api-my-fn"."""
    return f"{date}#{group}-{function_name}" if group else f"{date}#{function_name}"


def partition_key(metadata: FunctionMetadata) -> str:
    """Return the partition a function's results are stored under, its runtime."""
    # Container image functions have no runtime
    return metadata.runtime or "image"


def to_dynamo(value: Any) -> Any:
    """Convert floats to Decimal and drop None values, recursively."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: to_dynamo(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [to_dynamo(v) for v in value if v is not None]
    return value


def from_dynamo(value: Any) -> Any:
    """Convert Decimals back to int or float, recursively."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [from_dynamo(v) for v in value]
    return value


class BenchmarkStore:
    """
    The benchmark results table.

    Items are keyed by runtime (pk) and "date#target" (sk).

    Args:
        table_name: DynamoDB table name
        table: A boto3 Table resource. Created from the name when omitted.
        region: AWS region (uses default if not specified)
    """

    def __init__(self, table_name: str, table=None, region: str | None = None):
        if table is None:
            resource_kwargs = {}
            if region:
                resource_kwargs["region_name"] = region
            table = boto3.resource("dynamodb", **resource_kwargs).Table(table_name)
        self.table_name = table_name
        self.table = table

    def put(self, item: dict[str, Any]) -> None:
        """
        Write an item, replacing any item with the same keys.

        Raises:
            StoreError: If the write fails
        """
        try:
            self.table.put_item(Item=to_dynamo(item))
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            raise StoreError(f"Writing {item.get('sk')} to {self.table_name} failed ({error_code})") from e

    def put_stats(self, stats: Stats, partition_key: str, key: str, date: str, **extra: Any) -> None:
        """Write resolved stats. The item leaves the pending index."""
        self.put({**stats.to_item(), **extra, "Date": date, "pk": partition_key, "sk": key})

    def put_pending(
        self,
        stats: Stats,
        records: list[InvocationRecord],
        partition_key: str,
        key: str,
        date: str,
    ) -> None:
        """Write provisional stats together with the correlation data needed to finish them."""
        self.put(
            {
                **stats.to_item(),
                "FunctionConfiguration": stats.metadata.to_configuration(),
                "CwLookupInfo": [record.to_lookup_info() for record in records],
                "LastCall": max(record.end_time for record in records),
                "ReconcileAttempts": 0,
                "Date": date,
                "pk": partition_key,
                "sk": key,
            }
        )

    def put_abandoned(self, stats: Stats, partition_key: str, key: str, date: str) -> bool:
        """
        Replace a pending item with duration-only stats marked as abandoned.

        Returns:
            False if the item was no longer pending, in which case nothing is written

        Raises:
            StoreError: If the write fails
        """
        item = {**stats.to_item(), "ReconciliationStatus": ABANDONED, "Date": date, "pk": partition_key, "sk": key}
        try:
            self.table.put_item(Item=to_dynamo(item), ConditionExpression="attribute_exists(LastCall)")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ConditionalCheckFailedException":
                # Resolved by a concurrent run, keep its result
                return False
            raise StoreError(f"Writing {key} to {self.table_name} failed ({error_code})") from e
        return True

    def record_miss(self, pending: PendingReconciliation) -> None:
        """Count a reconciliation attempt that left records unmatched."""
        try:
            self.table.update_item(
                Key={"pk": pending.partition_key, "sk": pending.sort_key},
                UpdateExpression="ADD ReconcileAttempts :one",
                ConditionExpression="attribute_exists(LastCall)",
                ExpressionAttributeValues={":one": 1},
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ConditionalCheckFailedException":
                # Resolved by a concurrent run in the meantime
                return
            raise StoreError(f"Updating {pending.sort_key} failed ({error_code})") from e

    def _query(self, **params: Any) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        try:
            while True:
                response = self.table.query(**params)
                items.extend(from_dynamo(item) for item in response.get("Items", []))
                last_key = response.get("LastEvaluatedKey")
                if not last_key or ("Limit" in params and len(items) >= params["Limit"]):
                    break
                params["ExclusiveStartKey"] = last_key
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            raise StoreError(f"Querying {self.table_name} failed ({error_code})") from e
        return items

    def query_pending(self, partition_key: str, watermark: int) -> list[PendingReconciliation]:
        """
        Find the pending items of a partition whose last call precedes the watermark.

        Items with corrupt correlation data are skipped with a warning.
        """
        items = self._query(
            IndexName=PENDING_INDEX,
            KeyConditionExpression=Key("pk").eq(partition_key) & Key("LastCall").lt(watermark),
        )

        pending = []
        for item in items:
            try:
                pending.append(
                    PendingReconciliation(
                        partition_key=item["pk"],
                        sort_key=item["sk"],
                        date=item.get("Date") or item["sk"].split("#")[0],
                        last_call=int(item["LastCall"]),
                        records=[InvocationRecord.from_lookup_info(info) for info in item["CwLookupInfo"]],
                        metadata=FunctionMetadata.from_configuration(item["FunctionConfiguration"]),
                        attempts=int(item.get("ReconcileAttempts", 0)),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed pending item %s: %s", item.get("sk"), e)
        return pending

    def query_latest(self, partition_key: str, limit: int = 25) -> list[BenchmarkEntry]:
        """Return the newest results of a partition, newest first."""
        items = self._query(
            KeyConditionExpression=Key("pk").eq(partition_key),
            ScanIndexForward=False,
            Limit=limit,
        )
        return [
            BenchmarkEntry(
                partition_key=item["pk"],
                sort_key=item["sk"],
                date=item.get("Date"),
                stats=Stats.from_item(item),
                pending="LastCall" in item,
                status=item.get("ReconciliationStatus"),
            )
            for item in items[:limit]
        ]
