"""
Benchmark session orchestrator.

Runs the full test plan: latency probe, download sweep, upload sweep.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Sequence

from speedprobe import config
from speedprobe.client import SpeedTestClient
from speedprobe.config import Tier
from speedprobe.errors import DegenerateInputError, ProtocolError, SpeedTestError, TransportError
from speedprobe.metrics import LatencyStats, download_mbps, latency_ms, median, quantile, upload_mbps
from speedprobe.report import BenchmarkReport, Reporter, SpeedEntry

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"


def _check_tiers(name: str, tiers: Sequence[Tier]) -> None:
    for smaller, larger in zip(tiers, tiers[1:]):
        if larger.byte_count < smaller.byte_count:
            raise ValueError(f"{name}: tier {larger.label} is smaller than {smaller.label}")
        if larger.trials > smaller.trials:
            raise ValueError(f"{name}: tier {larger.label} runs more trials than {smaller.label}")
    for tier in tiers:
        if tier.byte_count <= 0 or tier.trials <= 0:
            raise ValueError(f"{name}: tier {tier.label} needs a positive size and trial count")


@dataclass
class BenchmarkConfig:
    """Configuration for a benchmark run."""

    host: str = field(default_factory=config.get_host)
    timeout: float | None = field(default_factory=config.get_timeout)
    server_timing_metric: str = field(default_factory=config.get_server_timing_metric)

    latency: Tier = config.LATENCY_TIER
    download_tiers: tuple[Tier, ...] = config.DOWNLOAD_TIERS
    upload_tiers: tuple[Tier, ...] = config.UPLOAD_TIERS

    # Quantile used for the overall download/upload figure
    overall_quantile: float = 0.9

    def __post_init__(self) -> None:
        """Validate tier tables: larger payloads must not run more trials."""
        self.download_tiers = tuple(self.download_tiers)
        self.upload_tiers = tuple(self.upload_tiers)
        _check_tiers("download_tiers", self.download_tiers)
        _check_tiers("upload_tiers", self.upload_tiers)
        _check_tiers("latency", (self.latency,))
        if not 0 <= self.overall_quantile <= 1:
            raise ValueError(f"overall_quantile must be between 0 and 1, got {self.overall_quantile}")


def run_trials(benchmark_fn: Callable[[], float], trial_count: int, label: str = "") -> list[float]:
    """Run benchmark_fn trial_count times in sequence and collect its measurements.

    Failed trials are logged and left out, so the result may be shorter than
    trial_count (or empty).
    """
    measurements: list[float] = []

    for i in range(trial_count):
        trial = f"{label} trial {i + 1}/{trial_count}".strip()
        try:
            value = benchmark_fn()
        except TransportError as e:
            logger.warning(f"{trial} failed: network error during {e.phase}: {e.cause}")
            continue
        except ProtocolError as e:
            logger.warning(f"{trial} failed: server contract violation: {e}")
            continue
        except DegenerateInputError as e:
            logger.warning(f"{trial} discarded: {e}")
            continue

        measurements.append(value)
        logger.debug(f"{trial}: {value:.2f}")

    return measurements


class BenchmarkSession:
    """Manages a complete speed test run.

    Orchestrates:
    - Latency probe, run alongside the location and trace lookups
    - Download tiers, one after another
    - Upload tiers, one after another
    - Report assembly
    """

    def __init__(
        self,
        config: BenchmarkConfig,
        reporter: Reporter | None = None,
        client: SpeedTestClient | None = None,
    ):
        self.config = config
        self.reporter = reporter or Reporter()
        self.client = client or SpeedTestClient(
            host=config.host,
            timeout=config.timeout,
            server_timing_metric=config.server_timing_metric,
        )

    def measure_latency(self) -> list[float]:
        tier = self.config.latency
        return run_trials(
            lambda: latency_ms(self.client.download(tier.byte_count)),
            tier.trials,
            "latency",
        )

    def measure_download(self, tier: Tier) -> list[float]:
        return run_trials(
            lambda: download_mbps(self.client.download(tier.byte_count), tier.byte_count),
            tier.trials,
            f"download {tier.label}",
        )

    def measure_upload(self, tier: Tier) -> list[float]:
        return run_trials(
            lambda: upload_mbps(self.client.upload(tier.byte_count), tier.byte_count),
            tier.trials,
            f"upload {tier.label}",
        )

    def _lookup(self, name: str, fn: Callable[[], dict[str, str]]) -> dict[str, str]:
        try:
            return fn()
        except SpeedTestError as e:
            logger.warning(f"{name} lookup failed: {e}")
            return {}

    def _sweep(
        self,
        direction: str,
        tiers: Sequence[Tier],
        measure: Callable[[Tier], list[float]],
    ) -> tuple[SpeedEntry, ...]:
        entries = []
        combined: list[float] = []

        for tier in tiers:
            series = measure(tier)
            combined.extend(series)
            entry = SpeedEntry(tier.label, median(series))
            entries.append(entry)
            logger.info(f"{direction} {tier.label}: {len(series)}/{tier.trials} trials succeeded")
            self.reporter.tier_speed(direction, entry)

        overall = SpeedEntry("overall", quantile(combined, self.config.overall_quantile))
        entries.append(overall)
        self.reporter.overall_speed(direction, overall)
        return tuple(entries)

    def run(self) -> BenchmarkReport:
        """Execute the full benchmark.

        Returns:
            BenchmarkReport with latency stats and per-tier speeds.
        """
        logger.info(f"Starting speed test against {self.config.host}")

        with ThreadPoolExecutor(max_workers=3) as pool:
            latency_future = pool.submit(self.measure_latency)
            locations_future = pool.submit(self._lookup, "server location", self.client.fetch_server_locations)
            trace_future = pool.submit(self._lookup, "trace", self.client.fetch_trace)

            latency_series = latency_future.result()
            locations = locations_future.result()
            trace = trace_future.result()

        colo = trace.get("colo", UNKNOWN)
        server_location = f"{locations.get(colo, UNKNOWN)} ({colo})"
        your_ip = f"{trace.get('ip', UNKNOWN)} ({trace.get('loc', UNKNOWN)})"
        latency = LatencyStats.from_series(latency_series)
        logger.debug(f"latency over {len(latency_series)} trials: {latency.to_dict()}")

        self.reporter.info("Server Location", server_location)
        self.reporter.info("Your IP", your_ip)
        self.reporter.latency(latency)

        download_speeds = self._sweep("download", self.config.download_tiers, self.measure_download)
        upload_speeds = self._sweep("upload", self.config.upload_tiers, self.measure_upload)

        report = BenchmarkReport(
            server_location=server_location,
            your_ip=your_ip,
            latency=latency,
            download_speeds=download_speeds,
            upload_speeds=upload_speeds,
        )
        self.reporter.finish(report)

        logger.info("Speed test complete")
        return report
