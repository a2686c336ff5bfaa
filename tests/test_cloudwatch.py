"""Tests for the CloudWatch Logs backend."""

from unittest.mock import MagicMock

import pytest

from coldbench.cloudwatch import MAX_STREAMS_PER_QUERY, CloudWatchError, CloudWatchLogs
from conftest import client_error, report_line

LOG_GROUP = "/aws/lambda/bench-node"


@pytest.fixture
def logs_client():
    return MagicMock()


def test_filter_events_follows_tokens(logs_client):
    logs_client.filter_log_events.side_effect = [
        {
            "events": [{"logStreamName": "s1", "message": report_line("a", 1.0), "timestamp": 10}],
            "nextToken": "t1",
        },
        {
            "events": [{"logStreamName": "s2", "message": report_line("b", 2.0), "timestamp": 20}],
        },
    ]

    events = CloudWatchLogs(client=logs_client).filter_events(LOG_GROUP, ["s1", "s2"], 0, 100)

    assert [(e.log_group, e.log_stream, e.timestamp) for e in events] == [
        (LOG_GROUP, "s1", 10),
        (LOG_GROUP, "s2", 20),
    ]
    first, second = logs_client.filter_log_events.call_args_list
    assert first.kwargs == {
        "logGroupName": LOG_GROUP,
        "logStreamNames": ["s1", "s2"],
        "startTime": 0,
        "endTime": 100,
        "filterPattern": "REPORT",
    }
    assert second.kwargs["nextToken"] == "t1"


def test_filter_events_rejects_too_many_streams(logs_client):
    streams = [f"s{i}" for i in range(MAX_STREAMS_PER_QUERY + 1)]

    with pytest.raises(ValueError):
        CloudWatchLogs(client=logs_client).filter_events(LOG_GROUP, streams, 0, 100)
    logs_client.filter_log_events.assert_not_called()


def test_filter_events_page_limit(logs_client):
    logs_client.filter_log_events.return_value = {"events": [], "nextToken": "again"}

    with pytest.raises(CloudWatchError, match="after 3 pages"):
        CloudWatchLogs(client=logs_client, max_pages=3).filter_events(LOG_GROUP, ["s1"], 0, 100)
    assert logs_client.filter_log_events.call_count == 3


@pytest.mark.parametrize(
    "code, expected",
    [
        ("ResourceNotFoundException", "not found"),
        ("AccessDeniedException", "Access denied"),
        ("ThrottlingException", "ThrottlingException"),
    ],
)
def test_filter_events_translates_errors(logs_client, code, expected):
    logs_client.filter_log_events.side_effect = client_error(code, "FilterLogEvents")

    with pytest.raises(CloudWatchError, match=expected):
        CloudWatchLogs(client=logs_client).filter_events(LOG_GROUP, ["s1"], 0, 100)


def test_fetch_init_first_matching_report(logs_client):
    logs_client.get_log_events.return_value = {
        "events": [
            {"message": "START RequestId: abc Version: $LATEST", "timestamp": 1},
            {"message": report_line("other", 5.0, 999.0), "timestamp": 2},
            {"message": report_line("abc", 12.3, 150.2), "timestamp": 3},
            {"message": report_line("abc", 12.3, 1.0), "timestamp": 4},
        ]
    }

    init = CloudWatchLogs(client=logs_client).fetch_init(LOG_GROUP, "stream-1", "abc")

    assert init == 150.2
    logs_client.get_log_events.assert_called_once_with(
        logGroupName=LOG_GROUP, logStreamName="stream-1", startFromHead=True
    )


def test_fetch_init_warm(logs_client):
    logs_client.get_log_events.return_value = {"events": [{"message": report_line("abc", 12.3), "timestamp": 3}]}

    assert CloudWatchLogs(client=logs_client).fetch_init(LOG_GROUP, "stream-1", "abc") == 0.0


def test_fetch_init_not_ingested_yet(logs_client):
    logs_client.get_log_events.return_value = {"events": []}

    assert CloudWatchLogs(client=logs_client).fetch_init(LOG_GROUP, "stream-1", "abc") == 0.0


def test_get_events_translates_errors(logs_client):
    logs_client.get_log_events.side_effect = client_error("ResourceNotFoundException", "GetLogEvents")

    with pytest.raises(CloudWatchError):
        CloudWatchLogs(client=logs_client).get_events(LOG_GROUP, "stream-1")


def test_fetch_init_reads_past_empty_pages(logs_client):
    logs_client.get_log_events.side_effect = [
        {"events": [], "nextForwardToken": "f/1"},
        {"events": [{"message": report_line("abc", 12.3, 150.2), "timestamp": 3}], "nextForwardToken": "f/2"},
        {"events": [], "nextForwardToken": "f/2"},
    ]

    init = CloudWatchLogs(client=logs_client).fetch_init(LOG_GROUP, "stream-1", "abc")

    assert init == 150.2
    calls = logs_client.get_log_events.call_args_list
    assert len(calls) == 3
    assert "nextToken" not in calls[0].kwargs
    assert [c.kwargs["nextToken"] for c in calls[1:]] == ["f/1", "f/2"]


def test_get_events_stops_on_repeated_token(logs_client):
    logs_client.get_log_events.side_effect = [
        {"events": [{"message": "START", "timestamp": 1}], "nextForwardToken": "f/1"},
        {"events": [{"message": "END", "timestamp": 2}], "nextForwardToken": "f/1"},
    ]

    events = CloudWatchLogs(client=logs_client).get_events(LOG_GROUP, "stream-1")

    assert [e.message for e in events] == ["START", "END"]
    assert logs_client.get_log_events.call_count == 2


def test_get_events_page_limit(logs_client):
    tokens = iter(range(100))
    logs_client.get_log_events.side_effect = lambda **kwargs: {"events": [], "nextForwardToken": f"f/{next(tokens)}"}

    with pytest.raises(CloudWatchError, match="after 2 pages"):
        CloudWatchLogs(client=logs_client, max_pages=2).get_events(LOG_GROUP, "stream-1")
