"""Deferred matching of HTTP measurements to their REPORT lines."""

from __future__ import annotations

import logging
import time
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field, replace

from coldbench.cloudwatch import MAX_STREAMS_PER_QUERY, REPORT_FILTER, CloudWatchError, CloudWatchLogs
from coldbench.models import InvocationRecord, LogEvent, PendingReconciliation
from coldbench.parser import is_report_for, parse_init_duration
from coldbench.stats import compute_stats
from coldbench.store import BenchmarkStore, StoreError

logger = logging.getLogger(__name__)

RECONCILE_DELAY_MS = 10 * 60 * 1000
# CloudWatch timestamps can trail the client's end time by a few milliseconds
END_TIME_BUFFER_MS = 50


@dataclass
class LogGroupQuery:
    """The streams of one log group to fetch, and the window covering all their calls."""

    log_group: str
    start_time: int
    end_time: int
    stream_names: list[str] = field(default_factory=list)

    def chunks(self, size: int = MAX_STREAMS_PER_QUERY) -> list[list[str]]:
        return chunk_stream_names(self.stream_names, size)


@dataclass
class ReconciliationOutcome:
    """What a reconciliation run did with each pending target, by sort key."""

    resolved: list[str] = field(default_factory=list)
    still_pending: list[str] = field(default_factory=list)
    evicted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def chunk_stream_names(stream_names: Sequence[str], size: int = MAX_STREAMS_PER_QUERY) -> list[list[str]]:
    """Split stream names into chunks of at most `size` names."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(stream_names[i : i + size]) for i in range(0, len(stream_names), size)]


def plan_queries(pending: Iterable[PendingReconciliation], buffer_ms: int = END_TIME_BUFFER_MS) -> dict[str, LogGroupQuery]:
    """
    Group the records of all pending targets by log group.

    Each group's window runs from its earliest call start to its latest call
    end plus the buffer. Stream names are de-duplicated, keeping first-seen order.
    """
    queries: dict[str, LogGroupQuery] = {}
    for target in pending:
        for record in target.records:
            query = queries.get(record.log_group)
            if query is None:
                queries[record.log_group] = LogGroupQuery(
                    log_group=record.log_group,
                    start_time=record.start_time,
                    end_time=record.end_time,
                    stream_names=[record.log_stream],
                )
                continue

            query.start_time = min(query.start_time, record.start_time)
            query.end_time = max(query.end_time, record.end_time)
            if record.log_stream not in query.stream_names:
                query.stream_names.append(record.log_stream)

    for query in queries.values():
        query.end_time += buffer_ms
    return queries


def collect_events(
    logs: CloudWatchLogs, queries: Iterable[LogGroupQuery]
) -> tuple[list[LogEvent], set[str]]:
    """
    Run every planned query, one request per chunk of streams, and pool the events.

    A log group that fails to load is skipped, its remaining chunks included.

    Returns:
        The pooled events, and the names of the log groups that could not be read
    """
    events: list[LogEvent] = []
    unavailable: set[str] = set()
    for query in queries:
        for chunk in query.chunks():
            try:
                events.extend(
                    logs.filter_events(
                        query.log_group,
                        chunk,
                        query.start_time,
                        query.end_time,
                        filter_pattern=REPORT_FILTER,
                    )
                )
            except CloudWatchError as e:
                logger.error("Skipping log group %s: %s", query.log_group, e)
                unavailable.add(query.log_group)
                break
    return events, unavailable


def index_events(events: Iterable[LogEvent]) -> dict[tuple[str, str], list[LogEvent]]:
    index: dict[tuple[str, str], list[LogEvent]] = {}
    for event in events:
        index.setdefault((event.log_group, event.log_stream), []).append(event)
    return index


def find_report_event(
    record: InvocationRecord,
    index: dict[tuple[str, str], list[LogEvent]],
    buffer_ms: int = END_TIME_BUFFER_MS,
) -> LogEvent | None:
    """Find the REPORT event of a record within its call window."""
    for event in index.get((record.log_group, record.log_stream), []):
        if (
            record.start_time <= event.timestamp <= record.end_time + buffer_ms
            and is_report_for(event.message, record.request_id)
        ):
            return event
    return None


def match_records(
    records: Sequence[InvocationRecord],
    index: dict[tuple[str, str], list[LogEvent]],
    buffer_ms: int = END_TIME_BUFFER_MS,
) -> list[InvocationRecord] | None:
    """
    Resolve the init duration of every record of a target.

    The given records are left untouched.

    Returns:
        Resolved copies of the records, or None if any record has no match
    """
    resolved = []
    for record in records:
        event = find_report_event(record, index, buffer_ms)
        if event is None:
            logger.info("No REPORT line yet for %s in %s", record.request_id, record.log_stream)
            return None

        record = replace(record)
        record.resolve(parse_init_duration(event.message))
        resolved.append(record)
    return resolved


class Reconciler:
    """
    Completes pending HTTP benchmark results once their logs have landed.

    Args:
        store: The benchmark table
        logs: The log backend
        delay_ms: Minimum age of a target's last call before it is looked at
        buffer_ms: Slack added after each call's end time when matching
        max_attempts: Evict a target after this many unmatched runs, None to never
        max_age_ms: Evict a target whose last call is older than this, None to never
        clock: Returns the current time in seconds
    """

    def __init__(
        self,
        store: BenchmarkStore,
        logs: CloudWatchLogs,
        delay_ms: int = RECONCILE_DELAY_MS,
        buffer_ms: int = END_TIME_BUFFER_MS,
        max_attempts: int | None = None,
        max_age_ms: int | None = None,
        clock=time.time,
    ):
        self.store = store
        self.logs = logs
        self.delay_ms = delay_ms
        self.buffer_ms = buffer_ms
        self.max_attempts = max_attempts
        self.max_age_ms = max_age_ms
        self.clock = clock

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def select_pending(self, partition_keys: Iterable[str], now_ms: int) -> list[PendingReconciliation]:
        """Return the pending targets whose watermark has passed the delay."""
        watermark = now_ms - self.delay_ms
        pending = []
        for partition_key in partition_keys:
            pending.extend(
                target
                for target in self.store.query_pending(partition_key, watermark)
                if target.is_eligible(now_ms, self.delay_ms)
            )
        return pending

    def _should_evict(self, target: PendingReconciliation, now_ms: int) -> bool:
        if self.max_attempts is not None and target.attempts + 1 >= self.max_attempts:
            return True
        return self.max_age_ms is not None and now_ms - target.last_call > self.max_age_ms

    def _evict(self, target: PendingReconciliation) -> bool:
        stats = compute_stats([record.duration_ms for record in target.records], None, target.metadata)
        if not self.store.put_abandoned(stats, target.partition_key, target.sort_key, target.date):
            logger.info("%s was resolved by another run, not abandoning it", target.sort_key)
            return False
        logger.warning(
            "Abandoned %s after %d attempts without complete logs",
            target.sort_key,
            target.attempts + 1,
        )
        return True

    def resolve_target(
        self,
        target: PendingReconciliation,
        index: dict[tuple[str, str], list[LogEvent]],
        now_ms: int,
        outcome: ReconciliationOutcome,
        unavailable: Collection[str] = (),
    ) -> None:
        if any(record.log_group in unavailable for record in target.records):
            resolved = None
        else:
            resolved = match_records(target.records, index, self.buffer_ms)

        if resolved is None:
            if self._should_evict(target, now_ms):
                if self._evict(target):
                    outcome.evicted.append(target.sort_key)
            else:
                self.store.record_miss(target)
                outcome.still_pending.append(target.sort_key)
            return

        stats = compute_stats(
            [record.duration_ms for record in resolved],
            [record.init_duration_ms for record in resolved],
            target.metadata,
        )
        self.store.put_stats(stats, target.partition_key, target.sort_key, target.date)
        outcome.resolved.append(target.sort_key)
        logger.info(
            "Resolved %s: %d invocations, %s cold starts",
            target.sort_key,
            len(resolved),
            stats.cold_starts.cold_start_percent,
        )

    def run(self, partition_keys: Iterable[str]) -> ReconciliationOutcome:
        """
        Run one reconciliation cycle over the given partitions.

        A target is written only when all its records matched. Targets with
        misses stay pending for the next cycle, as do targets whose log group
        could not be read.

        Raises:
            StoreError: If the pending targets can't be read
        """
        now_ms = self._now_ms()
        outcome = ReconciliationOutcome()

        pending = self.select_pending(partition_keys, now_ms)
        if not pending:
            logger.info("Nothing to reconcile")
            return outcome

        queries = plan_queries(pending, self.buffer_ms)
        logger.info(
            "Reconciling %d targets across %d log groups",
            len(pending),
            len(queries),
        )
        events, unavailable = collect_events(self.logs, queries.values())
        index = index_events(events)

        for target in pending:
            try:
                self.resolve_target(target, index, now_ms, outcome, unavailable)
            except StoreError as e:
                logger.error("Could not update %s: %s", target.sort_key, e)
                outcome.failed.append(target.sort_key)

        return outcome
