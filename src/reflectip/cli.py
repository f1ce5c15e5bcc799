"""Command-line interface for reflectip.

Prints the public address of this host as seen by the configured oracles.
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys
from typing import Optional

from .__about__ import __version__
from .config import Config
from .network import parse_family
from .oracles import IFCONFIG, oracle_group
from .reflector import ORACLE_ERRORS, Reflector
from .robustness import InvalidArgumentError, NoConsensusError, ReflectionError, setup_logging
from .wildcard import to_sslip_domain

EXIT_OK = 0
EXIT_NO_ADDRESS = 1
EXIT_BAD_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="reflectip", description="Discover the public IP address of this host")
    p.add_argument("--config", default=None, help="Path to config YAML")
    p.add_argument("--family", choices=["4", "6"], default=None, help="Address family to reflect")
    p.add_argument("--timeout", type=float, default=None, help="Per-oracle timeout in seconds (0 = none)")
    p.add_argument("--oracles", choices=["all", "http", "stun"], default=None, help="Built-in oracle group")
    p.add_argument("--consensus", action="store_true", help="Wait for every oracle and take the majority answer")
    p.add_argument("--sslip", action="store_true", help="Print an sslip.io name instead of the bare address")
    p.add_argument(
        "--loglevel",
        default=None,
        help="Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)",
    )
    p.add_argument("--logfile", default=None, help="Optional log file path")

    sub = p.add_subparsers(dest="command")
    sub.add_parser("version", help="Print the version and exit")
    sub.add_parser("info", help="Print detailed information about the public address")
    return p


def _print_info(info) -> None:
    for name, value in dataclasses.asdict(info).items():
        if value is not None:
            print(f"{name}: {value}")


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if args.command == "version":
        print(__version__)
        return EXIT_OK

    try:
        config = Config(args.config)
    except ReflectionError as e:
        print(f"reflectip: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    settings = config.settings

    setup_logging(args.loglevel or settings.logging.level, args.logfile or settings.logging.file)

    reflector = Reflector(
        buffer_size=settings.http.buffer_size,
        stun_send_timeout=settings.stun.send_timeout,
        stun_receive_timeout=settings.stun.receive_timeout,
        user_agent=settings.http.user_agent,
    )
    timeout = args.timeout if args.timeout is not None else settings.reflection.per_query_timeout

    try:
        family = parse_family(args.family or settings.reflection.family)

        if args.command == "info":
            info = asyncio.run(reflector.reflect_info(IFCONFIG, family, timeout))
            _print_info(info)
            return EXIT_OK

        oracles = oracle_group(args.oracles or settings.reflection.oracles)
        if args.consensus or settings.reflection.consensus:
            address = asyncio.run(reflector.reflect_consensus(oracles, family, timeout))
        else:
            address = asyncio.run(reflector.reflect(oracles, family, timeout))
    except InvalidArgumentError as e:
        print(f"reflectip: {e}", file=sys.stderr)
        return EXIT_BAD_INPUT
    except NoConsensusError as e:
        print(f"reflectip: {e}", file=sys.stderr)
        return EXIT_NO_ADDRESS
    except ORACLE_ERRORS as e:
        print(f"reflectip: {e}", file=sys.stderr)
        return EXIT_NO_ADDRESS

    print(to_sslip_domain(address) if args.sslip else address)
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
