"""Command line of the guest agent."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
import threading
import time
from datetime import timedelta
from importlib.metadata import PackageNotFoundError, version
from typing import Iterator, Sequence

from .guestagent import Agent
from .server import Backend, make_server

__all__ = ["parse_duration", "build_parser", "main"]

log = logging.getLogger(__name__)

SOCKET_PATH = "/run/lima-guestagent.sock"

_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"3s"``, ``"1m30s"`` or ``"250ms"``."""
    rest = text
    sign = 1
    if rest and rest[0] in "+-":
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f'invalid duration "{text}"')
    seconds = 0.0
    pos = 0
    while pos < len(rest):
        match = _PART.match(rest, pos)
        if match is None:
            raise ValueError(f'invalid duration "{text}"')
        seconds += float(match.group(1)) * _UNITS[match.group(2)]
        pos = match.end()
    return timedelta(seconds=sign * seconds)


def _duration_arg(text: str) -> timedelta:
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from None


def _version() -> str:
    try:
        return version("limakit").removeprefix("v")
    except PackageNotFoundError:
        return "unknown"


def _daemon(args: argparse.Namespace) -> None:
    tick: timedelta = args.tick
    if tick == timedelta(0):
        raise ValueError("tick must be specified")
    if tick < timedelta(0):
        raise ValueError("non-positive interval for ticker")
    if os.geteuid() != 0:
        raise PermissionError("must run as the root")
    interval = tick.total_seconds()
    log.info("event tick: %ss", interval)

    def new_ticker() -> Iterator[None]:
        while True:
            time.sleep(interval)
            yield None

    idle = tick * 20
    agent = Agent(new_ticker, idle)
    # Without a netfilter change feed, read the NAT table once at start and
    # then keep the reading until the idle period clears the mark.
    agent.mark_iptables_changed()

    def expire_loop() -> None:
        while True:
            time.sleep(idle.total_seconds())
            agent.expire_iptables_flag()

    threading.Thread(target=expire_loop, name="iptables-idle", daemon=True).start()

    server = make_server(SOCKET_PATH, Backend(agent))
    try:
        os.chmod(SOCKET_PATH, 0o777)
        log.info("serving the guest agent on %r", SOCKET_PATH)
        server.serve_forever()
    finally:
        server.server_close()


def build_parser() -> argparse.ArgumentParser:
    """Build the ``lima-guestagent`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="lima-guestagent", description="Do not launch manually"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s version {_version()}")
    parser.add_argument("--debug", action="store_true", default=False, help="debug mode")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    daemon = sub.add_parser("daemon", help="run the daemon")
    daemon.add_argument(
        "--debug", action="store_true", default=argparse.SUPPRESS, help="debug mode"
    )
    daemon.add_argument(
        "--tick",
        type=_duration_arg,
        default=timedelta(seconds=3),
        help="tick for polling events",
    )
    daemon.set_defaults(func=_daemon)
    return parser


def _setup_logging(debug: bool) -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(message)s")
    root.setLevel(logging.DEBUG if debug else logging.INFO)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the guest agent command line; return the exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.debug)
    if args.command is None:
        parser.print_help()
        return 0
    try:
        args.func(args)
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        log.critical("%s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())