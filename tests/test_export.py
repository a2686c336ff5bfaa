"""Tests for CSV export."""

import csv

from coldbench.export import FIELDNAMES, export_to_csv
from coldbench.models import BenchmarkEntry
from coldbench.stats import compute_stats


def read_rows(path):
    with path.open() as f:
        reader = csv.DictReader(f)
        assert reader.fieldnames == FIELDNAMES
        return list(reader)


def test_export_complete_pending_and_abandoned(tmp_path, metadata):
    entries = [
        BenchmarkEntry("nodejs14.x", "2024-01-15#bench-node", "2024-01-15",
                       compute_stats([10.0, 20.0, 30.0, 40.0], [0.0, 0.0, 0.0, 120.0], metadata)),
        BenchmarkEntry("nodejs14.x", "2024-01-15#rest-bench-node", "2024-01-15",
                       compute_stats([50.0], None, metadata), pending=True),
        BenchmarkEntry("nodejs14.x", "2024-01-14#rest-bench-node", "2024-01-14",
                       compute_stats([60.0], None, metadata), status="abandoned"),
    ]
    output = tmp_path / "out.csv"

    export_to_csv(entries, output)

    complete, pending, abandoned = read_rows(output)
    assert complete["function_name"] == "bench-node"
    assert complete["architectures"] == "arm64"
    assert complete["memory_size_mb"] == "512"
    assert complete["source_maps_enabled"] == "True"
    assert complete["duration_mean_ms"] == "25.0"
    assert complete["cold_start_percent"] == "25%"
    assert complete["cold_start_p90_ms"] == "120.0"
    assert complete["status"] == "complete"

    assert pending["cold_start_percent"] == ""
    assert pending["status"] == "pending"
    assert abandoned["status"] == "abandoned"


def test_export_warm_only(tmp_path, metadata):
    entry = BenchmarkEntry("nodejs14.x", "2024-01-15#a", "2024-01-15", compute_stats([1.0], [0.0], metadata))
    output = tmp_path / "warm.csv"

    export_to_csv([entry], str(output))

    (row,) = read_rows(output)
    assert row["cold_start_percent"] == "0%"
    assert row["cold_start_mean_ms"] == ""
