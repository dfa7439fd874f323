# layerscan/cli.py
"""
Command-line entry point.

Usage:
    layerscan [--tcp | --udp] [--discover] [--timeout MS] [--concurrency N]
              [--no-corroborate] [--json] [-v] TARGET [PORT ...]

    # Plain port scan of one host, all 65535 TCP and UDP ports
    layerscan 10.0.0.5

    # TCP only, a few ports, identify what is listening
    layerscan --tcp --discover 10.0.0.5 22 80,443 2379 6379 10250

    # Range of addresses, JSON out
    layerscan --tcp --json 10.0.0.1-10.0.0.20 80 443

Exit codes: 0 ok, 1 the only target could not be resolved, 2 usage error.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional, Sequence

from layerscan.config import ScanConfig
from layerscan.errors import ResolutionError, UsageError
from layerscan.report import render_discovery, render_json, render_ports
from layerscan.scanner.base import Transport
from layerscan.scanner.orchestrator import Scanner
from layerscan.targets import expand_targets, parse_ports

logger = logging.getLogger("layerscan.cli")

EXIT_OK = 0
EXIT_RESOLUTION = 1
EXIT_USAGE = 2

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that raises UsageError instead of exiting."""

    def error(self, message: str):
        raise UsageError(message)


def build_parser() -> argparse.ArgumentParser:
    parser = _Parser(
        prog="layerscan",
        description="Find open ports and identify the services behind them.",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--tcp", action="store_true", help="scan only TCP ports")
    mode.add_argument("--udp", action="store_true", help="scan only UDP ports")
    parser.add_argument("--discover", action="store_true",
                        help="identify session/presentation/application protocols on open ports")
    parser.add_argument("--timeout", type=int, metavar="MS",
                        help="per-attempt connect timeout in milliseconds (default: 100)")
    parser.add_argument("--concurrency", type=int, metavar="N",
                        help="maximum probes in flight")
    parser.add_argument("--no-corroborate", action="store_true",
                        help="skip vulnerability corroboration probes")
    parser.add_argument("--json", action="store_true", help="emit JSON instead of text")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    parser.add_argument("target", help="hostname, IPv4 address or start-end IPv4 range")
    parser.add_argument("ports", nargs="*", help="ports, comma lists or a-b ranges (default: 1-65535)")
    return parser


def setup_logging(verbose: bool) -> None:
    level_name = "DEBUG" if verbose else os.getenv("LAYERSCAN_LOG_LEVEL", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S", stream=sys.stderr)
    # Quieten noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def _transports(args: argparse.Namespace) -> List[Transport]:
    if args.tcp:
        return [Transport.TCP]
    if args.udp:
        return [Transport.UDP]
    return [Transport.TCP, Transport.UDP]


def main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        print(build_parser().format_usage(), file=sys.stderr, end="")
        return EXIT_USAGE

    setup_logging(args.verbose)

    try:
        config = ScanConfig.from_env().replace(
            connect_timeout=args.timeout / 1000.0 if args.timeout is not None else None,
            concurrency=args.concurrency,
            corroborate=False if args.no_corroborate else None,
        )
        if config.read_timeout < config.connect_timeout:
            config = config.replace(read_timeout=config.connect_timeout)
        config.validate()
        ports = parse_ports(args.ports)
        targets = expand_targets(args.target, max_targets=config.max_targets)
    except UsageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ResolutionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_RESOLUTION

    logger.info(f"Scanning {len(targets)} target(s), {len(ports)} port(s)")
    scanner = Scanner(config)
    reports = scanner.scan(targets, ports, _transports(args), discover=args.discover)

    if args.json:
        print(render_json(reports))
    else:
        render = render_discovery if args.discover else render_ports
        for line in render(reports):
            print(line)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
