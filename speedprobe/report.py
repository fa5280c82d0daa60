"""
Report structures and output rendering for speed test results.
"""

from __future__ import annotations

import json
import sys
from dataclasses import dataclass
from typing import IO, Any

from rich.console import Console
from rich.text import Text

from speedprobe.metrics import LatencyStats

LATENCY_FIELDS = ("min", "max", "average", "median", "jitter")


def format_value(value: float) -> str:
    """Two-decimal string used throughout the JSON report."""
    return f"{value:.2f}"


@dataclass(frozen=True)
class SpeedEntry:
    """Representative speed in Mbps for one tier, or "overall"."""

    size: str
    speed: float

    def to_dict(self) -> dict[str, str]:
        return {"size": self.size, "speed": format_value(self.speed)}


@dataclass(frozen=True)
class BenchmarkReport:
    """Final result of a speed test run."""

    server_location: str
    your_ip: str
    latency: LatencyStats
    download_speeds: tuple[SpeedEntry, ...]
    upload_speeds: tuple[SpeedEntry, ...]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the JSON report schema. Numbers are rounded to two decimals."""
        return {
            "server_location": self.server_location,
            "your_ip": self.your_ip,
            "latency": {name: format_value(getattr(self.latency, name)) for name in LATENCY_FIELDS},
            "download_speeds": [entry.to_dict() for entry in self.download_speeds],
            "upload_speeds": [entry.to_dict() for entry in self.upload_speeds],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkReport:
        """Rebuild a report from its JSON form (precision stays at two decimals)."""
        latency = LatencyStats(**{name: float(data["latency"][name]) for name in LATENCY_FIELDS})
        return cls(
            server_location=data["server_location"],
            your_ip=data["your_ip"],
            latency=latency,
            download_speeds=tuple(SpeedEntry(e["size"], float(e["speed"])) for e in data["download_speeds"]),
            upload_speeds=tuple(SpeedEntry(e["size"], float(e["speed"])) for e in data["upload_speeds"]),
        )


class Reporter:
    """Receives results as the session produces them. The base class stays silent."""

    def info(self, label: str, value: str) -> None:
        pass

    def latency(self, stats: LatencyStats) -> None:
        pass

    def tier_speed(self, direction: str, entry: SpeedEntry) -> None:
        pass

    def overall_speed(self, direction: str, entry: SpeedEntry) -> None:
        pass

    def finish(self, report: BenchmarkReport) -> None:
        pass


class ConsoleReporter(Reporter):
    """Prints each result as soon as it is known."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console(highlight=False)

    def _line(self, label: str, value: str, style: str, width: int = 22) -> None:
        text = Text(f"{label:>{width}}: ", style="bold")
        text.append(value, style=f"bold {style}")
        self.console.print(text)

    def info(self, label: str, value: str) -> None:
        self._line(label, value, "blue")

    def latency(self, stats: LatencyStats) -> None:
        self._line("Latency", f"{format_value(stats.median)} ms", "magenta")
        self._line("Jitter", f"{format_value(stats.jitter)} ms", "magenta")

    def tier_speed(self, direction: str, entry: SpeedEntry) -> None:
        label = f"{entry.size} {direction} speed"
        self._line(label, f"{format_value(entry.speed)} Mbps", "yellow")

    def overall_speed(self, direction: str, entry: SpeedEntry) -> None:
        self._line(f"{direction.capitalize()} speed", f"{format_value(entry.speed)} Mbps", "green")


class JsonReporter(Reporter):
    """Stays quiet during the run and writes one JSON document at the end."""

    def __init__(self, stream: IO[str] | None = None):
        self.stream = stream or sys.stdout

    def finish(self, report: BenchmarkReport) -> None:
        self.stream.write(report.to_json() + "\n")
        self.stream.flush()
