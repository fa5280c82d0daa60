"""
Core timing primitives for a single speed test transaction.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable

from speedprobe.errors import ProtocolError

Clock = Callable[[], float]

# Trace events emitted by httpcore, mapped to the phase they complete
_TRACE_PHASES = {
    "connection.start_tls.complete": "tls_handshake",
    "http11.receive_response_headers.complete": "first_byte",
    "http2.receive_response_headers.complete": "first_byte",
}

# Trace events that move the transaction into a new phase
_TRACE_PROGRESS = {
    "connection.start_tls.started": "tls",
    "http11.send_request_headers.started": "request",
    "http2.send_request_headers.started": "request",
    "http11.receive_response_headers.started": "response",
    "http2.receive_response_headers.started": "response",
    "http11.receive_response_body.started": "body",
    "http2.receive_response_body.started": "body",
}


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.perf_counter_ns() / 1_000_000


@dataclass(frozen=True)
class TimedTransaction:
    """Phase timestamps of one request/response cycle, in monotonic milliseconds.

    dns_lookup_at, tcp_connect_at and tls_handshake_at are None when the phase
    did not happen on this transaction.
    """

    started: float
    first_byte_at: float
    completed_at: float
    server_processing_ms: float
    dns_lookup_at: float | None = None
    tcp_connect_at: float | None = None
    tls_handshake_at: float | None = None

    @property
    def ttfb_ms(self) -> float:
        """Time to first byte."""
        return self.first_byte_at - self.started

    @property
    def transfer_ms(self) -> float:
        """Time from first byte to end of body."""
        return self.completed_at - self.first_byte_at

    @property
    def total_ms(self) -> float:
        return self.completed_at - self.started

    def phases(self) -> list[tuple[str, float]]:
        """Timestamps of the phases that happened, in order."""
        ordered = [
            ("started", self.started),
            ("dns_lookup", self.dns_lookup_at),
            ("tcp_connect", self.tcp_connect_at),
            ("tls_handshake", self.tls_handshake_at),
            ("first_byte", self.first_byte_at),
            ("completed", self.completed_at),
        ]
        return [(name, at) for name, at in ordered if at is not None]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        data["ttfb_ms"] = self.ttfb_ms
        data["transfer_ms"] = self.transfer_ms
        return data


class PhaseRecorder:
    """Collects phase timestamps for exactly one transaction.

    The network backend and the httpcore trace hook both write into the same
    recorder; finalize() freezes the result into a TimedTransaction.
    """

    def __init__(self, clock: Clock | None = None):
        self.clock = clock or monotonic_ms
        self.phase = "connect"
        self._marks: dict[str, float] = {}

    def mark(self, name: str) -> float:
        """Record the current time for a phase, keeping the first value seen."""
        if name not in self._marks:
            self._marks[name] = self.clock()
        return self._marks[name]

    def get(self, name: str) -> float | None:
        return self._marks.get(name)

    def trace(self, event: str, info: dict[str, Any]) -> None:
        """httpcore trace extension callback."""
        if event in _TRACE_PROGRESS:
            self.phase = _TRACE_PROGRESS[event]
        if event in _TRACE_PHASES:
            self.mark(_TRACE_PHASES[event])

    def finalize(self, server_processing_ms: float) -> TimedTransaction:
        return TimedTransaction(
            started=self._marks["started"],
            first_byte_at=self._marks["first_byte"],
            completed_at=self._marks["completed"],
            server_processing_ms=server_processing_ms,
            dns_lookup_at=self._marks.get("dns_lookup"),
            tcp_connect_at=self._marks.get("tcp_connect"),
            tls_handshake_at=self._marks.get("tls_handshake"),
        )


def _split_params(metric: str) -> tuple[str, dict[str, str]]:
    """Split `name;key=value;flag` into its name and parameters."""
    name, *raw_params = (part.strip() for part in metric.split(";"))
    params = {}
    for raw in raw_params:
        key, sep, value = raw.partition("=")
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] == '"':
            value = value[1:-1]
        params[key.strip().lower()] = value if sep else ""
    return name, params


def parse_server_timing(header: str | None, metric: str = "cfRequestDuration") -> float:
    """Extract the `dur` of one metric from a Server-Timing header, in milliseconds.

    Example:
        >>> parse_server_timing("cfRequestDuration;dur=12.5")
        12.5
    """
    if header is None:
        raise ProtocolError("response has no Server-Timing header")

    for entry in header.split(","):
        if not entry.strip():
            continue
        name, params = _split_params(entry)
        if name != metric:
            continue
        if "dur" not in params:
            raise ProtocolError(f"Server-Timing metric {metric!r} has no dur parameter", header)
        try:
            duration = float(params["dur"])
        except ValueError:
            raise ProtocolError(f"Server-Timing metric {metric!r} has a non-numeric dur", header) from None
        if not math.isfinite(duration) or duration < 0:
            raise ProtocolError(f"Server-Timing metric {metric!r} has an invalid dur", header)
        return duration

    raise ProtocolError(f"Server-Timing header lacks metric {metric!r}", header)
