"""CloudWatch Logs client for fetching Lambda REPORT lines."""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence

import boto3
from botocore.exceptions import ClientError

from coldbench.models import LogEvent
from coldbench.parser import is_report_for, parse_init_duration

logger = logging.getLogger(__name__)

# FilterLogEvents accepts at most 100 log stream names per request
MAX_STREAMS_PER_QUERY = 100
REPORT_FILTER = "REPORT"


class CloudWatchError(Exception):
    """Error fetching data from CloudWatch."""

    pass


def _translate_error(e: ClientError, log_group: str) -> CloudWatchError:
    error_code = e.response.get("Error", {}).get("Code", "Unknown")
    error_message = e.response.get("Error", {}).get("Message", str(e))

    if error_code == "ResourceNotFoundException":
        return CloudWatchError(
            f"Log group '{log_group}' not found. "
            "Ensure the function exists and has been invoked."
        )
    elif error_code == "AccessDeniedException":
        return CloudWatchError(
            f"Access denied to log group '{log_group}'. "
            "Check your AWS credentials and IAM permissions."
        )
    return CloudWatchError(f"CloudWatch error ({error_code}): {error_message}")


class CloudWatchLogs:
    """
    Log backend backed by the CloudWatch Logs API.

    Args:
        client: A boto3 "logs" client. Created from the region when omitted.
        region: AWS region (uses default if not specified)
        max_pages: Upper bound on pages followed per query, None for no bound
    """

    def __init__(self, client=None, region: str | None = None, max_pages: int | None = None):
        if client is None:
            client_kwargs = {}
            if region:
                client_kwargs["region_name"] = region
            client = boto3.client("logs", **client_kwargs)
        self.client = client
        self.max_pages = max_pages

    def filter_events(
        self,
        log_group: str,
        stream_names: Sequence[str],
        start_time: int,
        end_time: int,
        filter_pattern: str = REPORT_FILTER,
    ) -> list[LogEvent]:
        """
        Fetch the events of some streams of a log group within a time window.

        Follows continuation tokens until none is returned.

        Args:
            log_group: Log group name
            stream_names: At most MAX_STREAMS_PER_QUERY stream names
            start_time: Start of the window, epoch milliseconds (inclusive)
            end_time: End of the window, epoch milliseconds (inclusive)
            filter_pattern: CloudWatch filter pattern

        Raises:
            ValueError: If too many stream names are given
            CloudWatchError: If there's an error fetching logs
        """
        if len(stream_names) > MAX_STREAMS_PER_QUERY:
            raise ValueError(
                f"At most {MAX_STREAMS_PER_QUERY} log streams per query, got {len(stream_names)}"
            )

        events: list[LogEvent] = []
        next_token = None
        request_count = 0

        try:
            while True:
                params = {
                    "logGroupName": log_group,
                    "startTime": start_time,
                    "endTime": end_time,
                    "filterPattern": filter_pattern,
                }
                if stream_names:
                    params["logStreamNames"] = list(stream_names)
                if next_token:
                    params["nextToken"] = next_token

                response = self.client.filter_log_events(**params)
                request_count += 1

                events.extend(
                    LogEvent.from_cloudwatch(event, log_group) for event in response.get("events", [])
                )

                next_token = response.get("nextToken")
                if not next_token:
                    break

                if self.max_pages is not None and request_count >= self.max_pages:
                    raise CloudWatchError(
                        f"Gave up on log group '{log_group}' after {request_count} pages"
                    )

                # Rate limiting: CloudWatch allows ~10 requests/second
                if request_count % 10 == 0:
                    time.sleep(0.1)

        except ClientError as e:
            raise _translate_error(e, log_group) from e

        logger.debug(
            "Fetched %d events from %s (%d streams, %d requests)",
            len(events),
            log_group,
            len(stream_names),
            request_count,
        )
        return events

    def get_events(
        self,
        log_group: str,
        log_stream: str,
        start_time: int | None = None,
        end_time: int | None = None,
    ) -> list[LogEvent]:
        """
        Fetch the events of one log stream, oldest first.

        Pages may be empty before the end of the stream. The end is reached
        when the forward token comes back unchanged.

        Raises:
            CloudWatchError: If there's an error fetching logs
        """
        params = {
            "logGroupName": log_group,
            "logStreamName": log_stream,
            "startFromHead": True,
        }
        if start_time is not None:
            params["startTime"] = start_time
        if end_time is not None:
            params["endTime"] = end_time

        events: list[LogEvent] = []
        request_count = 0

        try:
            while True:
                response = self.client.get_log_events(**params)
                request_count += 1

                events.extend(
                    LogEvent.from_cloudwatch(event, log_group, log_stream) for event in response.get("events", [])
                )

                next_token = response.get("nextForwardToken")
                if not next_token or next_token == params.get("nextToken"):
                    break
                params["nextToken"] = next_token

                if self.max_pages is not None and request_count >= self.max_pages:
                    raise CloudWatchError(
                        f"Gave up on log stream '{log_stream}' after {request_count} pages"
                    )

                if request_count % 10 == 0:
                    time.sleep(0.1)

        except ClientError as e:
            raise _translate_error(e, log_group) from e

        return events

    def fetch_init(self, log_group: str, log_stream: str, request_id: str) -> float:
        """
        Look up the init duration of one request in its log stream.

        Returns 0 when the REPORT line has not been ingested yet.
        """
        for event in self.get_events(log_group, log_stream):
            if is_report_for(event.message, request_id):
                return parse_init_duration(event.message)

        logger.debug("No REPORT line yet for %s in %s", request_id, log_stream)
        return 0.0
