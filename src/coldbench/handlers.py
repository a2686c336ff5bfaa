"""AWS Lambda entry points for the scheduled benchmark jobs."""

from coldbench import jobs
from coldbench.cloudwatch import CloudWatchLogs
from coldbench.config import ConfigError, Settings
from coldbench.invoker import Invoker
from coldbench.log import configure_logging
from coldbench.store import BenchmarkStore


def _setup() -> Settings:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    return settings


def _store(settings: Settings) -> BenchmarkStore:
    return BenchmarkStore(settings.require_table(), region=settings.region)


def _invoker(settings: Settings) -> Invoker:
    return Invoker(region=settings.region, pool_size=settings.iterations, timeout=settings.http_timeout)


def benchmark_handler(event, context):
    """Benchmark the direct targets listed in COMMA_SEP_ARNS."""
    settings = _setup()
    result = jobs.run_direct_benchmark(settings, _invoker(settings), _store(settings))
    result.raise_for_failures()
    return {"status": "complete", "targets": sorted(result.stats)}


def benchmark_via_http_handler(event, context):
    """Benchmark the HTTP target set of the schedule rule that fired."""
    settings = _setup()
    try:
        rule_name = event["resources"][0].split("/")[-1]
    except (KeyError, IndexError, TypeError, AttributeError):
        raise ConfigError(f"Cannot tell which rule triggered this run: {event!r}")

    result = jobs.run_http_benchmark(settings, rule_name, _invoker(settings), _store(settings))
    result.raise_for_failures()
    return {"statusCode": 200, "body": {"status": "complete", "targets": sorted(result.stats)}}


def reconcile_handler(event, context):
    """Fill in cold start data for HTTP results whose logs have landed."""
    settings = _setup()
    logs = CloudWatchLogs(region=settings.region, max_pages=settings.log_max_pages)
    outcome = jobs.run_reconciliation(settings, _store(settings), logs)
    return {
        "resolved": outcome.resolved,
        "stillPending": outcome.still_pending,
        "abandoned": outcome.evicted,
        "failed": outcome.failed,
    }


def get_benchmarks_handler(event, context):
    """Return the 25 newest results of the first configured runtime."""
    settings = _setup()
    runtime = (event or {}).get("runtime") or settings.runtimes[0]
    entries = jobs.list_benchmarks(_store(settings), runtime)
    return [
        {**entry.stats.to_item(), "Date": entry.date, "pk": entry.partition_key, "sk": entry.sort_key}
        for entry in entries
    ]
