"""Benchmark jobs, one per scheduled trigger."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from coldbench.cloudwatch import CloudWatchLogs
from coldbench.config import Settings
from coldbench.invoker import InvocationError, Invoker, MetadataError
from coldbench.models import BenchmarkEntry, FunctionMetadata, InvocationRecord, Stats, Target
from coldbench.reconcile import ReconciliationOutcome, Reconciler
from coldbench.stats import compute_stats
from coldbench.store import BenchmarkStore, StoreError, partition_key, sort_key

logger = logging.getLogger(__name__)


class BenchmarkError(Exception):
    """One or more targets of a benchmark job failed."""

    pass


@dataclass
class JobResult:
    """Outcome of a benchmark job."""

    stats: dict[str, Stats] = field(default_factory=dict)
    failed: dict[str, str] = field(default_factory=dict)

    def raise_for_failures(self) -> None:
        if self.failed:
            details = "; ".join(f"{name}: {reason}" for name, reason in self.failed.items())
            raise BenchmarkError(f"{len(self.failed)} target(s) failed: {details}")


def today() -> str:
    return datetime.now(timezone.utc).date().isoformat()


def _measure(
    invoke: Callable[[Target, int], list[InvocationRecord]],
    target: Target,
    count: int,
    attempts: int,
) -> list[InvocationRecord]:
    # Retries cover the whole batch, never a single call
    for attempt in range(1, attempts):
        try:
            return invoke(target, count)
        except InvocationError as e:
            logger.warning("Batch for %s failed (attempt %d/%d): %s", target.name, attempt, attempts, e)
    return invoke(target, count)


def _run_targets(
    targets: list[Target],
    invoke: Callable[[Target, int], list[InvocationRecord]],
    persist: Callable[[Target, FunctionMetadata, list[InvocationRecord]], Stats],
    invoker: Invoker,
    settings: Settings,
) -> JobResult:
    result = JobResult()
    for target in targets:
        try:
            metadata = invoker.get_metadata(target.identifier)
            records = _measure(invoke, target, settings.iterations, settings.target_attempts)
            result.stats[target.name] = persist(target, metadata, records)
        except (MetadataError, InvocationError, StoreError) as e:
            logger.error("Skipping %s: %s", target.name, e)
            result.failed[target.name] = str(e)
    return result


def run_direct_benchmark(
    settings: Settings,
    invoker: Invoker,
    store: BenchmarkStore,
    date: str | None = None,
) -> JobResult:
    """
    Invoke every direct target and store its complete stats.

    Init durations come from each invocation's own log tail, so results are
    final right away.

    Raises:
        ConfigError: If no targets are configured
    """
    targets = settings.require_direct_targets()
    date = date or today()

    def persist(target: Target, metadata: FunctionMetadata, records: list[InvocationRecord]) -> Stats:
        stats = compute_stats(
            [record.duration_ms for record in records],
            [record.init_duration_ms for record in records],
            metadata,
        )
        store.put_stats(stats, partition_key(metadata), sort_key(date, metadata.function_name), date)
        logger.info(
            "%s: mean %.2fms, cold starts %s",
            target.name,
            stats.durations.mean,
            stats.cold_starts.cold_start_percent,
        )
        return stats

    return _run_targets(targets, invoker.invoke_direct, persist, invoker, settings)


def run_http_benchmark(
    settings: Settings,
    rule_name: str,
    invoker: Invoker,
    store: BenchmarkStore,
    date: str | None = None,
) -> JobResult:
    """
    Call every HTTP target of a rule's set and store provisional stats.

    The stored items keep the correlation data of each call until the
    reconciliation job fills in the cold start figures.

    Raises:
        ConfigError: If the rule has no targets configured
    """
    targets = settings.http_targets_for(rule_name)
    date = date or today()

    def persist(target: Target, metadata: FunctionMetadata, records: list[InvocationRecord]) -> Stats:
        stats = compute_stats([record.duration_ms for record in records], None, metadata)
        store.put_pending(
            stats,
            records,
            partition_key(metadata),
            sort_key(date, metadata.function_name, target.group),
            date,
        )
        logger.info("%s: mean %.2fms, awaiting logs", target.name, stats.durations.mean)
        return stats

    return _run_targets(targets, invoker.invoke_via_http, persist, invoker, settings)


def build_reconciler(settings: Settings, store: BenchmarkStore, logs: CloudWatchLogs, clock=time.time) -> Reconciler:
    return Reconciler(
        store,
        logs,
        delay_ms=settings.reconcile_delay_ms,
        buffer_ms=settings.end_time_buffer_ms,
        max_attempts=settings.max_attempts,
        max_age_ms=settings.max_age_ms,
        clock=clock,
    )


def run_reconciliation(
    settings: Settings,
    store: BenchmarkStore,
    logs: CloudWatchLogs,
    clock=time.time,
) -> ReconciliationOutcome:
    """Resolve the pending HTTP results of every configured runtime."""
    outcome = build_reconciler(settings, store, logs, clock).run(settings.runtimes)
    logger.info(
        "Reconciliation: %d resolved, %d still pending, %d abandoned, %d failed",
        len(outcome.resolved),
        len(outcome.still_pending),
        len(outcome.evicted),
        len(outcome.failed),
    )
    return outcome


def list_benchmarks(store: BenchmarkStore, runtime: str, limit: int = 25) -> list[BenchmarkEntry]:
    """Return the newest results stored for a runtime."""
    return store.query_latest(runtime, limit)
