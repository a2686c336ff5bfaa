"""Concurrent invocation of benchmark targets."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import boto3
import requests
from botocore.config import Config
from botocore.exceptions import ClientError
from requests.adapters import HTTPAdapter

from coldbench.models import FunctionMetadata, InvocationRecord, Target
from coldbench.parser import LogParseError, decode_log_result, find_report

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 100
DEFAULT_HTTP_TIMEOUT = 30.0


class InvocationError(Exception):
    """An invocation of a benchmark target failed."""

    pass


class MetadataError(Exception):
    """The configuration of a benchmark target could not be fetched."""

    pass


def _now_ms() -> int:
    return int(time.time() * 1000)


class Invoker:
    """
    Fans out concurrent invocations against a single target.

    Every call of a batch is issued at once and the batch fails as a whole
    when any single call fails.

    Args:
        lambda_client: A boto3 "lambda" client. Created from the region when omitted.
        session: A requests session for HTTP targets.
        region: AWS region (uses default if not specified)
        pool_size: Connection pool size, should cover the iteration count
        timeout: Timeout in seconds for each HTTP call
    """

    def __init__(
        self,
        lambda_client=None,
        session: requests.Session | None = None,
        region: str | None = None,
        pool_size: int = DEFAULT_POOL_SIZE,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
    ):
        if lambda_client is None:
            client_kwargs = {"config": Config(max_pool_connections=pool_size)}
            if region:
                client_kwargs["region_name"] = region
            lambda_client = boto3.client("lambda", **client_kwargs)
        if session is None:
            session = requests.Session()
            adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
            session.mount("https://", adapter)
            session.mount("http://", adapter)

        self.lambda_client = lambda_client
        self.session = session
        self.timeout = timeout

    def get_metadata(self, identifier: str) -> FunctionMetadata:
        """
        Fetch the configuration snapshot of a Lambda function.

        Raises:
            MetadataError: If the function can't be described
        """
        try:
            response = self.lambda_client.get_function(FunctionName=identifier)
            return FunctionMetadata.from_configuration(response.get("Configuration") or {})
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ResourceNotFoundException":
                raise MetadataError(
                    f"Lambda function '{identifier}' not found. Check the function name and region."
                ) from e
            raise MetadataError(f"Could not describe '{identifier}' ({error_code})") from e
        except ValueError as e:
            raise MetadataError(f"Unexpected configuration for '{identifier}': {e}") from e

    def _fan_out(self, call: Callable[[Target], InvocationRecord], target: Target, count: int) -> list[InvocationRecord]:
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")

        with ThreadPoolExecutor(max_workers=count) as executor:
            futures = [executor.submit(call, target) for _ in range(count)]
            # .result() re-raises the first failure, failing the whole batch
            records = [future.result() for future in futures]

        logger.debug("Collected %d invocations of %s", len(records), target.name)
        return records

    def _invoke_once(self, target: Target) -> InvocationRecord:
        start_time = _now_ms()
        try:
            response = self.lambda_client.invoke(FunctionName=target.endpoint, LogType="Tail")
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            raise InvocationError(f"Invoking {target.endpoint} failed ({error_code})") from e
        end_time = _now_ms()

        if response.get("FunctionError"):
            raise InvocationError(
                f"{target.endpoint} returned a function error: {response['FunctionError']}"
            )

        try:
            report = find_report(decode_log_result(response.get("LogResult")))
        except LogParseError as e:
            raise InvocationError(f"No usable log output from {target.endpoint}: {e}") from e

        return InvocationRecord(
            duration_ms=report.duration_ms,
            init_duration_ms=report.init_duration_ms,
            request_id=report.request_id,
            start_time=start_time,
            end_time=end_time,
            resolved=True,
        )

    def _request_once(self, target: Target) -> InvocationRecord:
        start_time = _now_ms()
        started = time.perf_counter()
        try:
            response = self.session.get(target.endpoint, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.RequestException, ValueError) as e:
            raise InvocationError(f"Request to {target.endpoint} failed: {e}") from e
        elapsed_ms = (time.perf_counter() - started) * 1000
        end_time = _now_ms()

        context = body.get("context") if isinstance(body, dict) else None
        if not isinstance(context, dict):
            raise InvocationError(f"{target.endpoint} did not return its invocation context")

        try:
            return InvocationRecord(
                duration_ms=round(elapsed_ms, 2),
                log_group=context["logGroupName"],
                log_stream=context["logStreamName"],
                request_id=context["awsRequestId"],
                start_time=start_time,
                end_time=end_time,
            )
        except KeyError as e:
            raise InvocationError(f"{target.endpoint} context is missing {e}") from e

    def invoke_direct(self, target: Target, count: int) -> list[InvocationRecord]:
        """
        Invoke a function directly `count` times at once.

        Each record is resolved from the invocation's own log tail.

        Raises:
            InvocationError: If any single invocation fails
        """
        return self._fan_out(self._invoke_once, target, count)

    def invoke_via_http(self, target: Target, count: int) -> list[InvocationRecord]:
        """
        Call a function's HTTP front end `count` times at once.

        Records carry the client-side round trip time and the correlation
        triple returned by the function; their init durations are resolved later.

        Raises:
            InvocationError: If any single call fails
        """
        return self._fan_out(self._request_once, target, count)
