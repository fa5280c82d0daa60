"""
Statistics and measurement math for speed test trials.

Every statistic returns NaN for an empty series so that a tier in which all
trials failed still produces a (degenerate) figure instead of aborting the run.
"""

from __future__ import annotations

import math
import statistics
from dataclasses import dataclass, asdict
from typing import TYPE_CHECKING, Any, Sequence

from speedprobe.errors import DegenerateInputError

if TYPE_CHECKING:
    from speedprobe.timing import TimedTransaction

NAN = float("nan")


def average(series: Sequence[float]) -> float:
    """Arithmetic mean."""
    if not series:
        return NAN
    return statistics.mean(series)


def median(series: Sequence[float]) -> float:
    """Middle value of a sorted copy; mean of the two middle values for even lengths."""
    if not series:
        return NAN
    return statistics.median(series)


def jitter(series: Sequence[float]) -> float:
    """Mean absolute difference between consecutive samples, in original order."""
    if not series:
        return NAN
    if len(series) == 1:
        return 0.0
    deltas = [abs(b - a) for a, b in zip(series, series[1:])]
    return statistics.mean(deltas)


def quantile(series: Sequence[float], q: float) -> float:
    """Linearly interpolated quantile, with q in [0, 1]."""
    if not 0 <= q <= 1:
        raise ValueError(f"quantile must be between 0 and 1, got {q}")
    if not series:
        return NAN

    data = sorted(series)
    k = (len(data) - 1) * q
    f = int(k)
    c = f + 1 if f + 1 < len(data) else f
    return data[f] + (k - f) * (data[c] - data[f]) if c != f else data[f]


@dataclass(frozen=True)
class LatencyStats:
    """Summary of a latency series in milliseconds."""

    min: float
    max: float
    average: float
    median: float
    jitter: float

    @classmethod
    def from_series(cls, series: Sequence[float]) -> LatencyStats:
        if not series:
            return cls(min=NAN, max=NAN, average=NAN, median=NAN, jitter=NAN)

        return cls(
            min=min(series),
            max=max(series),
            average=average(series),
            median=median(series),
            jitter=jitter(series),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def throughput_mbps(byte_count: int, duration_ms: float) -> float:
    """Convert a byte count moved in duration_ms into megabits per second."""
    if not math.isfinite(duration_ms) or duration_ms <= 0:
        raise DegenerateInputError(f"cannot derive throughput from a duration of {duration_ms}ms")
    return (byte_count * 8) / (duration_ms / 1000) / 1_000_000


def latency_ms(transaction: TimedTransaction) -> float:
    """Time to first byte minus the time the server spent generating the response."""
    value = transaction.first_byte_at - transaction.started - transaction.server_processing_ms
    if not math.isfinite(value) or value < 0:
        raise DegenerateInputError(
            f"server processing time ({transaction.server_processing_ms}ms) exceeds "
            f"observed time to first byte ({transaction.ttfb_ms}ms)"
        )
    return value


def download_mbps(transaction: TimedTransaction, byte_count: int) -> float:
    """Throughput over the body transfer only, excluding connection setup."""
    return throughput_mbps(byte_count, transaction.transfer_ms)


def upload_mbps(transaction: TimedTransaction, byte_count: int) -> float:
    """Throughput over the server's own receive time for the request body."""
    return throughput_mbps(byte_count, transaction.server_processing_ms)
