"""The guest agent: watches listening TCP ports and reports changes."""

from __future__ import annotations

import logging
import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Iterator

from . import iptables, procnettcp
from .api import Event, Info, IPPort

__all__ = ["Agent", "compare_ports"]

log = logging.getLogger(__name__)

TickerFactory = Callable[[], Iterable[object]]


class _LookupFailed(Exception):
    """A port lookup failed; carries the ports gathered before the failure."""

    def __init__(self, cause: BaseException, partial: list[IPPort]) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.partial = partial


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def compare_ports(
    old: Iterable[IPPort], new: Iterable[IPPort]
) -> tuple[list[IPPort], list[IPPort]]:
    """Return the ports added in ``new`` and the ports of ``old`` no longer present."""
    old_by_key = {str(port): port for port in old}
    new_keys: set[str] = set()
    added: list[IPPort] = []
    for port in new:
        key = str(port)
        if key not in old_by_key:
            added.append(port)
        new_keys.add(key)
    removed = [port for key, port in old_by_key.items() if key not in new_keys]
    return added, removed


class Agent:
    """Collects the guest's listening ports from the socket tables and iptables.

    ``new_ticker`` returns an iterable whose every item is one tick; the event
    stream ends when it is exhausted. The iptables NAT table is only read after
    :meth:`mark_iptables_changed`, until :meth:`expire_iptables_flag` finds the
    mark older than ``iptables_idle``; meanwhile the last reading is reused.
    """

    def __init__(
        self,
        new_ticker: TickerFactory,
        iptables_idle: float | timedelta,
        port_source: Callable[[], Iterable[procnettcp.Entry]] = procnettcp.parse_files,
        iptables_source: Callable[[], Iterable[iptables.Entry]] = iptables.get_ports,
    ) -> None:
        self._new_ticker = new_ticker
        self._iptables_idle = _seconds(iptables_idle)
        self._port_source = port_source
        self._iptables_source = iptables_source
        self._lock = threading.Lock()
        self._worth_checking_iptables = False
        self._latest_true: float | None = None
        self._latest_iptables: list[iptables.Entry] = []

    def mark_iptables_changed(self) -> None:
        """Record that the netfilter configuration has just changed."""
        with self._lock:
            log.debug("mark_iptables_changed(): setting to true")
            self._worth_checking_iptables = True
            self._latest_true = time.monotonic()

    def expire_iptables_flag(self) -> bool:
        """Clear the change mark if it is older than the idle time; return the mark."""
        with self._lock:
            elapsed = (
                float("inf")
                if self._latest_true is None
                else time.monotonic() - self._latest_true
            )
            if elapsed >= self._iptables_idle:
                log.debug("expire_iptables_flag(): setting to false")
                self._worth_checking_iptables = False
            return self._worth_checking_iptables

    def _lookup(self) -> list[IPPort]:
        if sys.byteorder == "big":
            raise _LookupFailed(
                RuntimeError(
                    "big endian architecture is unsupported, "
                    "the layout of /proc/net/tcp on big endian hosts is unknown"
                ),
                [],
            )
        try:
            entries = list(self._port_source())
        except Exception as exc:
            raise _LookupFailed(exc, []) from exc

        ports = [
            IPPort(ip=entry.ip, port=entry.port)
            for entry in entries
            if entry.kind in (procnettcp.Kind.TCP, procnettcp.Kind.TCP6)
            and entry.state == procnettcp.State.LISTEN
        ]

        with self._lock:
            worth_checking = self._worth_checking_iptables
        log.debug("local_ports(): worth_checking_iptables=%s", worth_checking)

        if worth_checking:
            try:
                rules = list(self._iptables_source())
            except Exception as exc:
                raise _LookupFailed(exc, ports) from exc
            with self._lock:
                self._latest_iptables = rules
        else:
            with self._lock:
                rules = list(self._latest_iptables)

        known = {port.port for port in ports}
        for rule in rules:
            # Skip ports already reported by the socket tables.
            if rule.port not in known:
                ports.append(IPPort(ip=rule.ip, port=rule.port))
                known.add(rule.port)
        return ports

    def local_ports(self) -> list[IPPort]:
        """Return the listening TCP ports of the guest."""
        try:
            return self._lookup()
        except _LookupFailed as failure:
            raise failure.cause from None

    def info(self) -> Info:
        """Return a snapshot of the listening ports."""
        return Info(local_ports=self.local_ports())

    def collect_event(self, ports: Iterable[IPPort]) -> tuple[Event, list[IPPort]]:
        """Compare the current ports with ``ports``; return the event and the new ports."""
        try:
            new_ports = self._lookup()
        except _LookupFailed as failure:
            return Event(time=_now(), errors=[str(failure.cause)]), failure.partial
        added, removed = compare_ports(ports, new_ports)
        event = Event(time=_now(), local_ports_added=added, local_ports_removed=removed)
        return event, new_ports

    def events(self, stop: threading.Event | None = None) -> Iterator[Event]:
        """Yield non-empty port events, checking again on every tick.

        The first event lists every port as added. The stream ends when the
        ticker is exhausted or ``stop`` is set.
        """
        ticker = iter(self._new_ticker())
        ports: list[IPPort] = []
        try:
            while True:
                event, ports = self.collect_event(ports)
                if not event.is_empty():
                    yield event
                if stop is not None and stop.is_set():
                    return
                try:
                    next(ticker)
                except StopIteration:
                    return
                if stop is not None and stop.is_set():
                    return
                log.debug("tick!")
        finally:
            close = getattr(ticker, "close", None)
            if close is not None:
                close()