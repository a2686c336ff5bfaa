"""Data models for benchmark targets, invocations and statistics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

SOURCE_MAPS_FLAG = "--enable-source-maps"


@dataclass(frozen=True)
class Target:
    """A benchmarked function variant reached through one invocation path."""

    identifier: str  # Function name or ARN, used for the metadata lookup
    endpoint: str  # ARN for direct invocation, URL for HTTP
    group: str = ""  # Front end label, e.g. "rest-api" or "http-api"

    @property
    def name(self) -> str:
        """Return a short display name for the target."""
        name = self.identifier
        parts = self.identifier.split(":")
        if "function" in parts[:-1]:
            # arn:aws:lambda:<region>:<account>:function:<name>[:<qualifier>]
            name = parts[parts.index("function") + 1]
        return f"{self.group}-{name}" if self.group else name

    @property
    def is_http(self) -> bool:
        return self.endpoint.startswith(("http://", "https://"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Target:
        """
        Build a Target from a registry entry.

        Accepts both ``{"arn", "url", "apiG"}`` and
        ``{"identifier", "endpoint", "group"}`` shaped entries.
        """
        identifier = data.get("identifier") or data.get("arn")
        endpoint = data.get("endpoint") or data.get("url") or identifier
        if not identifier:
            raise ValueError(f"Target entry has no function identifier: {data!r}")
        return cls(identifier=identifier, endpoint=endpoint, group=data.get("group") or data.get("apiG") or "")


@dataclass
class InvocationReport:
    """The contents of a single REPORT line."""

    request_id: str
    duration_ms: float
    init_duration_ms: float = 0.0  # Zero when warm
    billed_duration_ms: int | None = None
    memory_size_mb: int | None = None
    max_memory_used_mb: int | None = None

    @property
    def is_cold_start(self) -> bool:
        """Return True if this invocation was a cold start."""
        return self.init_duration_ms != 0


@dataclass
class InvocationRecord:
    """One measured call against a target."""

    duration_ms: float
    init_duration_ms: float = 0.0
    log_group: str | None = None
    log_stream: str | None = None
    request_id: str | None = None
    start_time: int | None = None  # Epoch milliseconds
    end_time: int | None = None
    resolved: bool = False

    @property
    def is_cold_start(self) -> bool:
        return self.init_duration_ms != 0

    def resolve(self, init_duration_ms: float) -> None:
        """Record the init duration found for this call. Allowed only once."""
        if self.resolved:
            raise ValueError(f"Invocation {self.request_id} is already resolved")
        self.init_duration_ms = init_duration_ms
        self.resolved = True

    def to_lookup_info(self) -> dict[str, Any]:
        """Return the correlation data kept while the record is pending."""
        return {
            "duration": self.duration_ms,
            "logGroupName": self.log_group,
            "logStreamName": self.log_stream,
            "requestId": self.request_id,
            "startTime": self.start_time,
            "endTime": self.end_time,
        }

    @classmethod
    def from_lookup_info(cls, data: dict[str, Any]) -> InvocationRecord:
        """
        Rebuild a pending record from stored correlation data.

        Raises:
            ValueError: If a correlation field is missing
        """
        missing = [
            key
            for key in ("duration", "logGroupName", "logStreamName", "requestId", "startTime", "endTime")
            if data.get(key) is None
        ]
        if missing:
            raise ValueError(f"Lookup info is missing {', '.join(missing)}")

        return cls(
            duration_ms=float(data["duration"]),
            log_group=str(data["logGroupName"]),
            log_stream=str(data["logStreamName"]),
            request_id=str(data["requestId"]),
            start_time=int(data["startTime"]),
            end_time=int(data["endTime"]),
        )


@dataclass(frozen=True)
class LogEvent:
    """A raw CloudWatch Logs event."""

    log_group: str
    log_stream: str
    message: str
    timestamp: int  # Epoch milliseconds

    @classmethod
    def from_cloudwatch(cls, event: dict[str, Any], log_group: str, log_stream: str | None = None) -> LogEvent:
        return cls(
            log_group=log_group,
            log_stream=event.get("logStreamName") or log_stream or "",
            message=event.get("message", ""),
            timestamp=int(event.get("timestamp", 0)),
        )


@dataclass
class FunctionMetadata:
    """Snapshot of a Lambda function configuration."""

    function_name: str
    runtime: str | None = None
    architectures: list[str] = field(default_factory=list)
    memory_size: int | None = None
    code_size: int | None = None
    description: str | None = None
    layers: list[dict[str, Any]] = field(default_factory=list)
    environment: dict[str, str] = field(default_factory=dict)

    @property
    def source_maps_enabled(self) -> bool:
        """Return True if NODE_OPTIONS turns on source map symbolication."""
        return SOURCE_MAPS_FLAG in self.environment.get("NODE_OPTIONS", "")

    @classmethod
    def from_configuration(cls, config: dict[str, Any]) -> FunctionMetadata:
        """Build metadata from a Lambda FunctionConfiguration dict."""
        if not config.get("FunctionName"):
            raise ValueError("Function configuration has no FunctionName")

        return cls(
            function_name=config["FunctionName"],
            runtime=config.get("Runtime"),
            architectures=list(config.get("Architectures") or []),
            memory_size=config.get("MemorySize"),
            code_size=config.get("CodeSize"),
            description=config.get("Description"),
            layers=list(config.get("Layers") or []),
            environment=dict((config.get("Environment") or {}).get("Variables") or {}),
        )

    def to_configuration(self) -> dict[str, Any]:
        """Return the snapshot in FunctionConfiguration form."""
        return {
            "FunctionName": self.function_name,
            "Runtime": self.runtime,
            "Architectures": self.architectures,
            "MemorySize": self.memory_size,
            "CodeSize": self.code_size,
            "Description": self.description,
            "Layers": self.layers,
            "Environment": {"Variables": self.environment},
        }


@dataclass
class DurationSummary:
    """Mean, median and p90 of a set of durations."""

    mean: float
    median: float
    p90: float


@dataclass
class ColdStartSummary:
    """Cold start rate and, when any occurred, their init duration summary."""

    cold_start_percent: str
    mean: float | None = None
    median: float | None = None
    p90: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"coldStartPercent": self.cold_start_percent}
        if self.mean is not None:
            data.update(mean=self.mean, median=self.median, p90=self.p90)
        return data


@dataclass
class Stats:
    """Aggregated benchmark statistics for one target."""

    durations: DurationSummary
    cold_starts: ColdStartSummary | None  # None until init durations are known
    metadata: FunctionMetadata

    @property
    def function_name(self) -> str:
        return self.metadata.function_name

    @property
    def runtime(self) -> str | None:
        return self.metadata.runtime

    @property
    def source_maps_enabled(self) -> bool:
        return self.metadata.source_maps_enabled

    def to_item(self) -> dict[str, Any]:
        """Return the stats as stored in the benchmark table."""
        item: dict[str, Any] = {
            "Architectures": self.metadata.architectures,
            "CodeSize": self.metadata.code_size,
            "Description": self.metadata.description,
            "Durations": {
                "mean": self.durations.mean,
                "median": self.durations.median,
                "p90": self.durations.p90,
            },
            "FunctionName": self.metadata.function_name,
            "Layers": self.metadata.layers,
            "MemorySize": self.metadata.memory_size,
            "Runtime": self.metadata.runtime,
            "SourceMapsEnabled": self.source_maps_enabled,
        }
        if self.cold_starts is not None:
            item["ColdStarts"] = self.cold_starts.to_dict()
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any]) -> Stats:
        """Rebuild stats from a stored item."""
        durations = item.get("Durations") or {}
        cold = item.get("ColdStarts")

        metadata = FunctionMetadata(
            function_name=item.get("FunctionName", ""),
            runtime=item.get("Runtime"),
            architectures=list(item.get("Architectures") or []),
            memory_size=item.get("MemorySize"),
            code_size=item.get("CodeSize"),
            description=item.get("Description"),
            layers=list(item.get("Layers") or []),
            environment={"NODE_OPTIONS": SOURCE_MAPS_FLAG} if item.get("SourceMapsEnabled") else {},
        )

        return cls(
            durations=DurationSummary(
                mean=durations.get("mean", 0.0),
                median=durations.get("median", 0.0),
                p90=durations.get("p90", 0.0),
            ),
            cold_starts=ColdStartSummary(
                cold_start_percent=cold.get("coldStartPercent", "0%"),
                mean=cold.get("mean"),
                median=cold.get("median"),
                p90=cold.get("p90"),
            )
            if cold
            else None,
            metadata=metadata,
        )


@dataclass
class PendingReconciliation:
    """A target's HTTP measurements waiting for their init durations."""

    partition_key: str
    sort_key: str
    date: str
    last_call: int  # Watermark, epoch milliseconds of the latest call end
    records: list[InvocationRecord]
    metadata: FunctionMetadata
    attempts: int = 0

    def is_eligible(self, now_ms: int, delay_ms: int) -> bool:
        """Return True once the watermark is older than the delay."""
        return self.last_call < now_ms - delay_ms


@dataclass
class BenchmarkEntry:
    """A stored benchmark result as listed from the table."""

    partition_key: str
    sort_key: str
    date: str | None
    stats: Stats
    pending: bool = False
    status: str | None = None
