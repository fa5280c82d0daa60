"""
Network speed test against the Cloudflare speed test service.

This package measures round-trip latency, jitter and download/upload
throughput, separating network time from server-side processing time
reported in the Server-Timing header.

Usage:
    python -m speedprobe
    python -m speedprobe --json
"""

from speedprobe.errors import SpeedTestError, TransportError, ProtocolError, DegenerateInputError
from speedprobe.timing import TimedTransaction, PhaseRecorder, parse_server_timing
from speedprobe.metrics import (
    LatencyStats,
    average,
    median,
    jitter,
    quantile,
    throughput_mbps,
)
from speedprobe.client import SpeedTestClient, TimedTransport
from speedprobe.report import BenchmarkReport, SpeedEntry, ConsoleReporter, JsonReporter
from speedprobe.session import BenchmarkConfig, BenchmarkSession, run_trials

__all__ = [
    # Errors
    "SpeedTestError",
    "TransportError",
    "ProtocolError",
    "DegenerateInputError",
    # Timing primitives
    "TimedTransaction",
    "PhaseRecorder",
    "parse_server_timing",
    # Statistics
    "LatencyStats",
    "average",
    "median",
    "jitter",
    "quantile",
    "throughput_mbps",
    # HTTP client
    "SpeedTestClient",
    "TimedTransport",
    # Reporting
    "BenchmarkReport",
    "SpeedEntry",
    "ConsoleReporter",
    "JsonReporter",
    # Session management
    "BenchmarkConfig",
    "BenchmarkSession",
    "run_trials",
]
