"""Data types exchanged with the guest agent over its HTTP API."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

__all__ = ["IPV4_LOOPBACK1", "IPPort", "Info", "Event"]

IPV4_LOOPBACK1 = ipaddress.IPv4Address("127.0.0.1")

_ZERO_TIME = "0001-01-01T00:00:00Z"
_TIME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


def _ip_string(ip: ipaddress.IPv4Address | ipaddress.IPv6Address) -> str:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def _format_time(value: datetime | None) -> str:
    if value is None:
        return _ZERO_TIME
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.strftime("%Y-%m-%dT%H:%M:%S")
    if value.microsecond:
        text += f".{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "+" if minutes >= 0 else "-"
    hours, mins = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{mins:02d}"


def _parse_time(text: str) -> datetime | None:
    match = _TIME_RE.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid time {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    micro = int((fraction or "").ljust(6, "0")[:6])
    value = datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )
    if value == datetime(1, 1, 1, tzinfo=timezone.utc):
        return None
    return value


@dataclass(frozen=True)
class IPPort:
    """An IP address and a port."""

    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int

    def __str__(self) -> str:
        host = _ip_string(self.ip)
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        return {"ip": _ip_string(self.ip), "port": self.port}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> IPPort:
        return cls(ip=ipaddress.ip_address(data["ip"]), port=int(data["port"]))


@dataclass
class Info:
    """Snapshot of the guest's listening ports.

    ``local_ports`` holds 127.0.0.1 and 0.0.0.0 addresses, not addresses such
    as 127.0.0.53 or the guest's own interface addresses.
    """

    local_ports: list[IPPort] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"localPorts": [p.to_dict() for p in self.local_ports]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Info:
        ports = data.get("localPorts") or []
        return cls(local_ports=[IPPort.from_dict(p) for p in ports])


@dataclass
class Event:
    """A change in the guest's listening ports.

    The first event of a stream holds every port in ``local_ports_added``.
    """

    time: datetime | None = None
    local_ports_added: list[IPPort] = field(default_factory=list)
    local_ports_removed: list[IPPort] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"time": _format_time(self.time)}
        if self.local_ports_added:
            data["localPortsAdded"] = [p.to_dict() for p in self.local_ports_added]
        if self.local_ports_removed:
            data["localPortsRemoved"] = [p.to_dict() for p in self.local_ports_removed]
        if self.errors:
            data["errors"] = list(self.errors)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        time_text = data.get("time")
        return cls(
            time=_parse_time(time_text) if time_text else None,
            local_ports_added=[IPPort.from_dict(p) for p in data.get("localPortsAdded") or []],
            local_ports_removed=[IPPort.from_dict(p) for p in data.get("localPortsRemoved") or []],
            errors=[str(e) for e in data.get("errors") or []],
        )

    def is_empty(self) -> bool:
        """True when the event carries nothing besides its time."""
        return not (self.local_ports_added or self.local_ports_removed or self.errors)