"""Tests for the Lambda entry points."""

import json
from unittest.mock import MagicMock, patch

import pytest

from coldbench import handlers
from coldbench.config import ConfigError
from coldbench.jobs import BenchmarkError, JobResult
from coldbench.reconcile import ReconciliationOutcome
from coldbench.stats import compute_stats
from conftest import TABLE_NAME

RULE_ARN = "arn:aws:events:us-east-1:123456789012:rule/LambdaBenchmarkRuleA"


@pytest.fixture
def environment(monkeypatch):
    monkeypatch.setenv("TABLE_NAME", TABLE_NAME)
    monkeypatch.setenv("COMMA_SEP_ARNS", "fn-a")
    monkeypatch.setenv(
        "HTTP_TARGETS_A", json.dumps([{"arn": "fn-a", "url": "https://a.example.com/", "apiG": "rest"}])
    )


@pytest.fixture
def patched():
    with patch("coldbench.handlers.Invoker"), patch("coldbench.handlers.BenchmarkStore"), patch(
        "coldbench.handlers.CloudWatchLogs"
    ):
        yield


def test_benchmark_handler(environment, patched, metadata):
    result = JobResult(stats={"fn-a": compute_stats([1.0], [0.0], metadata)})
    with patch("coldbench.handlers.jobs.run_direct_benchmark", return_value=result):
        response = handlers.benchmark_handler({}, None)

    assert response == {"status": "complete", "targets": ["fn-a"]}


def test_benchmark_handler_fails_loudly(environment, patched):
    with patch("coldbench.handlers.jobs.run_direct_benchmark", return_value=JobResult(failed={"fn-a": "gone"})):
        with pytest.raises(BenchmarkError, match="fn-a: gone"):
            handlers.benchmark_handler({}, None)


def test_http_handler_uses_rule_from_event(environment, patched, metadata):
    result = JobResult(stats={"rest-fn-a": compute_stats([1.0], None, metadata)})
    with patch("coldbench.handlers.jobs.run_http_benchmark", return_value=result) as run:
        response = handlers.benchmark_via_http_handler({"resources": [RULE_ARN]}, None)

    assert run.call_args.args[1] == "LambdaBenchmarkRuleA"
    assert response["statusCode"] == 200
    assert response["body"]["targets"] == ["rest-fn-a"]


def test_http_handler_rejects_unknown_event(environment, patched):
    with pytest.raises(ConfigError):
        handlers.benchmark_via_http_handler({"detail-type": "Scheduled Event"}, None)


def test_reconcile_handler(environment, patched):
    outcome = ReconciliationOutcome(resolved=["a"], still_pending=["b"], evicted=["c"], failed=[])
    with patch("coldbench.handlers.jobs.run_reconciliation", return_value=outcome):
        response = handlers.reconcile_handler({}, None)

    assert response == {"resolved": ["a"], "stillPending": ["b"], "abandoned": ["c"], "failed": []}


def test_get_benchmarks_handler(environment, store, metadata):
    store.put_stats(compute_stats([10.0], [0.0], metadata), "nodejs14.x", "2024-01-15#bench-node", "2024-01-15")

    items = handlers.get_benchmarks_handler({}, None)

    assert len(items) == 1
    assert items[0]["sk"] == "2024-01-15#bench-node"
    assert items[0]["Date"] == "2024-01-15"
    assert items[0]["ColdStarts"] == {"coldStartPercent": "0%"}


def test_handlers_require_table():
    with pytest.raises(ConfigError, match="TABLE_NAME"):
        handlers.reconcile_handler({}, MagicMock())
