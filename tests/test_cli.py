"""Tests for the command-line interface."""

import csv
from unittest.mock import patch

from click.testing import CliRunner

from coldbench.cli import format_duration, main
from coldbench.jobs import JobResult
from coldbench.stats import compute_stats
from conftest import TABLE_NAME, report_line


def test_format_duration():
    assert format_duration(None) == "-"
    assert format_duration(0.5) == "0.500ms"
    assert format_duration(5) == "5.00ms"
    assert format_duration(250) == "250.0ms"
    assert format_duration(1500) == "1.50s"


def test_parse_log_file(tmp_path):
    log_file = tmp_path / "bench.log"
    log_file.write_text(
        "START RequestId: a Version: $LATEST\n"
        + report_line("a", 100.0, 300.0)
        + "\n"
        + report_line("b", 200.0)
        + "\n"
        + "some application output\n"
    )

    result = CliRunner().invoke(main, ["parse", str(log_file)])

    assert result.exit_code == 0
    assert "Parsed 2 REPORT lines" in result.output
    assert "50%" in result.output


def test_parse_without_reports(tmp_path):
    log_file = tmp_path / "empty.log"
    log_file.write_text("nothing to see\n")

    result = CliRunner().invoke(main, ["parse", str(log_file)])

    assert result.exit_code == 0
    assert "No REPORT lines found" in result.output


def test_list_requires_table():
    result = CliRunner().invoke(main, ["list", "nodejs14.x"])

    assert result.exit_code == 1
    assert "TABLE_NAME" in result.output


def test_list_export_requires_output():
    result = CliRunner().invoke(main, ["--table", TABLE_NAME, "list", "nodejs14.x", "--export", "csv"])

    assert result.exit_code == 2
    assert "--output" in result.output


def test_list_and_export(store, metadata, tmp_path):
    store.put_stats(compute_stats([10.0, 20.0], [0.0, 150.0], metadata), "nodejs14.x", "2024-01-15#bench-node", "2024-01-15")
    output = tmp_path / "results.csv"

    result = CliRunner().invoke(
        main, ["--table", TABLE_NAME, "list", "nodejs14.x", "--export", "csv", "-o", str(output)]
    )

    assert result.exit_code == 0, result.output
    assert "Exported to" in result.output
    with output.open() as f:
        rows = list(csv.DictReader(f))
    assert rows[0]["cold_start_percent"] == "50%"
    assert rows[0]["status"] == "complete"


def test_list_empty(store):
    result = CliRunner().invoke(main, ["--table", TABLE_NAME, "list", "nodejs16.x"])

    assert result.exit_code == 0
    assert "No results stored" in result.output


def test_run_reports_failures(metadata):
    failed = JobResult(stats={"fn-a": compute_stats([1.0], [0.0], metadata)}, failed={"fn-b": "not found"})

    with patch("coldbench.cli.jobs.run_direct_benchmark", return_value=failed) as run, patch("coldbench.cli.Invoker"), patch(
        "coldbench.cli.BenchmarkStore"
    ):
        result = CliRunner().invoke(main, ["--table", TABLE_NAME, "run", "--arn", "fn-a", "--arn", "fn-b", "-n", "3"])

    assert result.exit_code == 1
    assert "fn-b failed: not found" in result.output
    settings = run.call_args.args[0]
    assert [t.identifier for t in settings.direct_targets] == ["fn-a", "fn-b"]
    assert settings.iterations == 3


def test_run_http_unknown_rule():
    with patch("coldbench.cli.Invoker"), patch("coldbench.cli.BenchmarkStore"):
        result = CliRunner().invoke(main, ["--table", TABLE_NAME, "run-http", "LambdaBenchmarkRuleQ"])

    assert result.exit_code == 1
    assert "HTTP_TARGETS_Q" in result.output


def test_reconcile_nothing_pending(store):
    with patch("coldbench.cli.CloudWatchLogs"):
        result = CliRunner().invoke(main, ["--table", TABLE_NAME, "reconcile", "--runtime", "nodejs14.x"])

    assert result.exit_code == 0, result.output
    assert "Nothing to reconcile" in result.output
