"""Discovery of ports forwarded by CNI portmap rules in the iptables NAT table."""

from __future__ import annotations

import ipaddress
import re
import shutil
import socket
import subprocess
from dataclasses import dataclass
from typing import Iterable

__all__ = ["Entry", "get_ports", "parse_ports_from_rules", "list_nat_rules", "check_ports_open"]

# Matches a portmap DNAT rule for an individual container, e.g.
#   -A CNI-DN-2e2f8d5b91929ef9fc152 -d 127.0.0.1/32 -p tcp -m tcp --dport 8081 -j DNAT --to-destination 10.4.0.7:80
# capturing the optional destination address, the protocol and the port.
_FIND_PORT = re.compile(
    r"-A\s+CNI-DN-\w*\s+"
    r"(?:-d ((?:\b25[0-5]|\b2[0-4][0-9]|\b[01]?[0-9][0-9]?)"
    r"(?:\.(?:25[0-5]|2[0-4][0-9]|[01]?[0-9][0-9]?)){3}))?"
    r"(?:/32\s+)?-p (tcp)?.*--dport (\d+) -j DNAT"
)


@dataclass(frozen=True)
class Entry:
    """A forwarded port."""

    tcp: bool
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address
    port: int


def get_ports() -> list[Entry]:
    """Return the forwarded ports that are open; empty if iptables is absent."""
    path = shutil.which("iptables")
    if path is None:
        return []
    rules = list_nat_rules(path)
    return check_ports_open(parse_ports_from_rules(rules))


def parse_ports_from_rules(rules: Iterable[str]) -> list[Entry]:
    """Extract forwarded ports from lines of ``iptables -t nat -S`` output."""
    entries: list[Entry] = []
    for rule in rules:
        found = _FIND_PORT.search(rule)
        if found is None:
            continue
        ip_text, proto, port_text = found.groups()
        # With no destination the rule applies to all interfaces.
        ip = ipaddress.ip_address(ip_text or "0.0.0.0")
        entries.append(Entry(tcp=proto == "tcp", ip=ip, port=int(port_text)))
    return entries


def list_nat_rules(path: str) -> list[str]:
    """Run ``iptables -t nat -S`` and return its output as a list of rules."""
    completed = subprocess.run(
        [path, "-t", "nat", "-S"],
        capture_output=True,
        text=True,
        check=True,
    )
    rules = completed.stdout.split("\n")
    if rules and rules[-1] == "":
        rules.pop()
    return rules


def check_ports_open(entries: Iterable[Entry]) -> list[Entry]:
    """Keep non-TCP entries and the TCP entries that accept a connection."""
    result: list[Entry] = []
    for entry in entries:
        if not entry.tcp:
            result.append(entry)
            continue
        try:
            with socket.create_connection((str(entry.ip), entry.port), timeout=1):
                pass
        except OSError:
            continue
        result.append(entry)
    return result