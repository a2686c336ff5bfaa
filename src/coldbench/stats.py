"""Statistical calculations for benchmark results."""

import math
import sys
from collections.abc import Sequence

from coldbench.models import ColdStartSummary, DurationSummary, FunctionMetadata, Stats


def two_decimals(value: float) -> float:
    """Round half up to two decimals."""
    return math.floor((value + sys.float_info.epsilon) * 100 + 0.5) / 100


def mean(values: Sequence[float]) -> float:
    """
    Calculate the mean of a list of values, rounded to two decimals.

    Raises:
        ValueError: If the list is empty
    """
    if not values:
        raise ValueError("mean requires at least one value")
    return two_decimals(sum(values) / len(values))


def quantile(values: Sequence[float], q: float) -> float:
    """
    Calculate a quantile using linear interpolation between closest ranks.

    When the rank falls exactly on an element that element is returned
    unchanged, otherwise the interpolated value is rounded to two decimals.

    Raises:
        ValueError: If the list is empty or q is outside [0, 1]
    """
    if not values:
        raise ValueError("quantile requires at least one value")
    if not 0 <= q <= 1:
        raise ValueError(f"quantile must be between 0 and 1, got {q}")

    sorted_values = sorted(values)
    rank = (len(sorted_values) - 1) * q
    lower_idx = math.floor(rank)
    fraction = rank - lower_idx

    if fraction == 0 or lower_idx + 1 >= len(sorted_values):
        return sorted_values[lower_idx]

    lower = sorted_values[lower_idx]
    upper = sorted_values[lower_idx + 1]
    return two_decimals(lower + fraction * (upper - lower))


def median(values: Sequence[float]) -> float:
    return quantile(values, 0.5)


def p90(values: Sequence[float]) -> float:
    return quantile(values, 0.9)


def format_percent(value: float) -> str:
    """Format a percentage the way it is stored, e.g. "40%" or "33.33333333333333%"."""
    if float(value).is_integer():
        return f"{int(value)}%"
    return f"{value!r}%"


def summarize_durations(durations: Sequence[float]) -> DurationSummary:
    return DurationSummary(mean=mean(durations), median=median(durations), p90=p90(durations))


def summarize_cold_starts(inits: Sequence[float]) -> ColdStartSummary:
    """
    Summarize init durations, where zero marks a warm invocation.

    Returns a "0%" summary without mean/median/p90 when there were no cold starts.
    """
    cold_starts = [init for init in inits if init != 0]
    if not cold_starts:
        return ColdStartSummary(cold_start_percent="0%")

    return ColdStartSummary(
        cold_start_percent=format_percent(len(cold_starts) / len(inits) * 100),
        mean=mean(cold_starts),
        median=median(cold_starts),
        p90=p90(cold_starts),
    )


def compute_stats(
    durations: Sequence[float],
    inits: Sequence[float] | None,
    metadata: FunctionMetadata,
) -> Stats:
    """
    Aggregate one target's measurements.

    Args:
        durations: Duration of every invocation
        inits: Init duration of every invocation (0 when warm), or None when
            they are not known yet
        metadata: Configuration snapshot of the benchmarked function

    Returns:
        Stats for the target
    """
    return Stats(
        durations=summarize_durations(durations),
        cold_starts=summarize_cold_starts(inits) if inits is not None else None,
        metadata=metadata,
    )
