"""Export functionality for stored benchmark results."""

import csv
from pathlib import Path

from coldbench.models import BenchmarkEntry

FIELDNAMES = [
    "date",
    "sort_key",
    "function_name",
    "runtime",
    "architectures",
    "memory_size_mb",
    "code_size_bytes",
    "source_maps_enabled",
    "duration_mean_ms",
    "duration_median_ms",
    "duration_p90_ms",
    "cold_start_percent",
    "cold_start_mean_ms",
    "cold_start_median_ms",
    "cold_start_p90_ms",
    "status",
]


def _status(entry: BenchmarkEntry) -> str:
    if entry.status:
        return entry.status
    return "pending" if entry.pending else "complete"


def export_to_csv(entries: list[BenchmarkEntry], output_path: str | Path) -> None:
    """
    Export benchmark results to a CSV file.

    Args:
        entries: Results as listed from the benchmark table
        output_path: Path to write the CSV file
    """
    output_path = Path(output_path)

    with output_path.open("w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDNAMES)
        writer.writeheader()

        for entry in entries:
            stats = entry.stats
            cold = stats.cold_starts
            writer.writerow({
                "date": entry.date or "",
                "sort_key": entry.sort_key,
                "function_name": stats.function_name,
                "runtime": stats.runtime or "",
                "architectures": "/".join(stats.metadata.architectures),
                "memory_size_mb": stats.metadata.memory_size or "",
                "code_size_bytes": stats.metadata.code_size or "",
                "source_maps_enabled": stats.source_maps_enabled,
                "duration_mean_ms": stats.durations.mean,
                "duration_median_ms": stats.durations.median,
                "duration_p90_ms": stats.durations.p90,
                "cold_start_percent": cold.cold_start_percent if cold else "",
                "cold_start_mean_ms": cold.mean if cold and cold.mean is not None else "",
                "cold_start_median_ms": cold.median if cold and cold.median is not None else "",
                "cold_start_p90_ms": cold.p90 if cold and cold.p90 is not None else "",
                "status": _status(entry),
            })
