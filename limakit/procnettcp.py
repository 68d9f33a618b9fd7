"""Parsing of the kernel's /proc/net/tcp and /proc/net/tcp6 tables."""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Iterable

__all__ = ["Kind", "State", "Entry", "parse", "parse_address", "parse_files"]

_HEX = re.compile(r"[0-9A-Fa-f]+")
_QUARTET = re.compile(r"[0-9A-Fa-f]{8}")

_PROC_FILES = {
    "/proc/net/tcp": "tcp",
    "/proc/net/tcp6": "tcp6",
}


class Kind(str, Enum):
    """Kind of socket table."""

    TCP = "tcp"
    TCP6 = "tcp6"


class State(IntEnum):
    """Well-known TCP socket states as they appear in the ``st`` column."""

    ESTABLISHED = 0x1
    LISTEN = 0xA


IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


@dataclass(frozen=True)
class Entry:
    """One socket row of a /proc/net/tcp{,6} table."""

    kind: Kind
    ip: IPAddress
    port: int
    state: int


def _as_kind(kind: Kind | str) -> Kind:
    try:
        return Kind(kind)
    except ValueError:
        raise ValueError(f"unexpected kind {kind!r}") from None


def parse(stream: Iterable[str], kind: Kind | str) -> list[Entry]:
    """Parse the lines of a /proc/net/tcp{,6} table into entries."""
    kind = _as_kind(kind)
    entries: list[Entry] = []
    field_names: dict[str, int] = {}
    for index, raw in enumerate(stream):
        line = raw.strip()
        if not line:
            continue
        fields = line.split()
        if index == 0:
            field_names = {name: pos for pos, name in enumerate(fields)}
            for required in ("local_address", "st"):
                if required not in field_names:
                    raise ValueError(f'field "{required}" not found')
            continue
        try:
            local_address = fields[field_names.get("local_address", 0)]
            st_text = fields[field_names.get("st", 0)]
        except IndexError:
            raise ValueError(f"truncated line {line!r}") from None
        ip, port = parse_address(local_address)
        if not _HEX.fullmatch(st_text) or int(st_text, 16) > 0xFF:
            raise ValueError(f"unparsable state {st_text!r}")
        entries.append(Entry(kind=kind, ip=ip, port=port, state=int(st_text, 16)))
    return entries


def parse_address(s: str) -> tuple[IPAddress, int]:
    """Parse an address such as ``"0100007F:0050"`` into ``(ip, port)``.

    Each group of four bytes in the address is stored little endian.
    """
    host, sep, port_text = s.partition(":")
    if not sep:
        raise ValueError(f"unparsable address {s!r}")
    if len(host) not in (8, 32):
        raise ValueError(
            f"unparsable address {s!r}, expected length of {host!r} to be 8 or 32, got {len(host)}"
        )
    ip_bytes = bytearray()
    for start in range(0, len(host), 8):
        quartet = host[start:start + 8]
        if not _QUARTET.fullmatch(quartet):
            raise ValueError(f"unparsable address {s!r}: unparsable quartet {quartet!r}")
        ip_bytes.extend(reversed(bytes.fromhex(quartet)))
    ip: IPAddress
    if len(ip_bytes) == 4:
        ip = ipaddress.IPv4Address(bytes(ip_bytes))
    else:
        ip = ipaddress.IPv6Address(bytes(ip_bytes))
    if not _HEX.fullmatch(port_text) or int(port_text, 16) > 0xFFFF:
        raise ValueError(f"unparsable address {s!r}: unparsable port {port_text!r}")
    return ip, int(port_text, 16)


def parse_files() -> list[Entry]:
    """Parse /proc/net/tcp and /proc/net/tcp6, skipping missing files."""
    result: list[Entry] = []
    for path, kind in _PROC_FILES.items():
        try:
            with open(path, encoding="ascii") as stream:
                result.extend(parse(stream, kind))
        except FileNotFoundError:
            continue
    return result