#!/usr/bin/env python3
"""
CLI entry point for the speed test.

Usage:
    python -m speedprobe
    python -m speedprobe --json
    python -m speedprobe --timeout 30 -v
"""

from __future__ import annotations

import argparse
import logging
import sys

from speedprobe.report import ConsoleReporter, JsonReporter
from speedprobe.session import BenchmarkConfig, BenchmarkSession

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the speed test run."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="speedprobe",
        description="Measure latency, jitter and throughput against speed.cloudflare.com",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        allow_abbrev=False,
        epilog="""
Examples:
    # Human-readable output, printed as each phase completes
    python -m speedprobe

    # One JSON document at the end
    python -m speedprobe --json

    # Give up on any single request after 30 seconds
    python -m speedprobe --timeout 30
        """,
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print a single JSON report instead of incremental output",
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-request deadline in seconds (default: no deadline)",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse known flags; unknown --flags are accepted and ignored."""
    args, unknown = build_parser().parse_known_args(argv)
    args.ignored = unknown
    return args


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the speed test CLI."""
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.ignored:
        logger.debug(f"Ignoring unrecognized arguments: {' '.join(args.ignored)}")

    config = BenchmarkConfig()
    if args.timeout is not None:
        config.timeout = args.timeout

    reporter = JsonReporter() if args.json else ConsoleReporter()

    try:
        BenchmarkSession(config, reporter=reporter).run()
        return 0

    except KeyboardInterrupt:
        print("\nSpeed test interrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logging.exception("Speed test failed with error")
        print(f"\nError: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
