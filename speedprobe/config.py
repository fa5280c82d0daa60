import os
from dataclasses import dataclass

# Read from environment, default to the public Cloudflare endpoint
SPEEDPROBE_HOST = os.environ.get("SPEEDPROBE_HOST", "speed.cloudflare.com")
SPEEDPROBE_TIMEOUT = os.environ.get("SPEEDPROBE_TIMEOUT")
SPEEDPROBE_SERVER_TIMING_METRIC = os.environ.get("SPEEDPROBE_SERVER_TIMING_METRIC", "cfRequestDuration")


@dataclass(frozen=True)
class Tier:
    """One payload size and how many times to measure it."""

    label: str
    byte_count: int
    trials: int


LATENCY_TIER = Tier("latency", 1000, 20)

# Larger payloads get fewer trials to keep the run time bounded
DOWNLOAD_TIERS = (
    Tier("100kB", 101_000, 10),
    Tier("1MB", 1_001_000, 8),
    Tier("10MB", 10_001_000, 6),
    Tier("25MB", 25_001_000, 4),
    Tier("100MB", 100_001_000, 1),
)

UPLOAD_TIERS = (
    Tier("11kB", 11_000, 10),
    Tier("100kB", 101_000, 10),
    Tier("1MB", 1_001_000, 8),
)


def get_host() -> str:
    """Get the configured speed test host."""
    return SPEEDPROBE_HOST


def get_timeout() -> float | None:
    """Get the per-transaction deadline in seconds, or None for no deadline."""
    if not SPEEDPROBE_TIMEOUT:
        return None
    return float(SPEEDPROBE_TIMEOUT)


def get_server_timing_metric() -> str:
    """Get the Server-Timing metric name that carries the processing duration."""
    return SPEEDPROBE_SERVER_TIMING_METRIC
