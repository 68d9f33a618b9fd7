import ipaddress
import os
import socket
import subprocess
import sys

import pytest

from limakit.iptables import (
    Entry,
    check_ports_open,
    list_nat_rules,
    parse_ports_from_rules,
)

# A condensed `iptables -t nat -S` listing with two forwarded container ports,
# 8082 on all interfaces and 8081 bound to 127.0.0.1.
_DATA_LINES = [
    "# Warning: iptables-legacy tables present, use iptables-legacy to see them",
    "-P PREROUTING ACCEPT",
    "-P INPUT ACCEPT",
    "-N CNI-aaaa0000",
    "-N CNI-DN-aaaa",
    "-N CNI-DN-bbbb",
    "-N CNI-HOSTPORT-DNAT",
    "-A PREROUTING -m addrtype --dst-type LOCAL -j CNI-HOSTPORT-DNAT",
    '-A POSTROUTING -m comment --comment "CNI portfwd requiring masquerade" -j CNI-HOSTPORT-MASQ',
    "-A POSTROUTING -s 10.4.0.10/32 -m comment --comment \"name: \\\"bridge\\\"\" -j CNI-aaaa0000",
    "-A CNI-aaaa0000 -d 10.4.0.0/24 -m comment --comment \"name: \\\"bridge\\\"\" -j ACCEPT",
    "-A CNI-aaaa0000 ! -d 224.0.0.0/4 -m comment --comment \"name: \\\"bridge\\\"\" -j MASQUERADE",
    "-A CNI-DN-aaaa -s 10.4.0.0/24 -p tcp -m tcp --dport 8082 -j CNI-HOSTPORT-SETMARK",
    "-A CNI-DN-aaaa -s 127.0.0.1/32 -p tcp -m tcp --dport 8082 -j CNI-HOSTPORT-SETMARK",
    "-A CNI-DN-aaaa -p tcp -m tcp --dport 8082 -j DNAT --to-destination 10.4.0.10:80",
    "-A CNI-DN-bbbb -s 10.4.0.0/24 -d 127.0.0.1/32 -p tcp -m tcp --dport 8081 -j CNI-HOSTPORT-SETMARK",
    "-A CNI-DN-bbbb -d 127.0.0.1/32 -p tcp -m tcp --dport 8081 -j DNAT --to-destination 10.4.0.7:80",
    '-A CNI-HOSTPORT-DNAT -p tcp -m comment --comment "dnat" -m multiport --dports 8081 -j CNI-DN-bbbb',
    "-A CNI-HOSTPORT-MASQ -m mark --mark 0x2000/0x2000 -j MASQUERADE",
]
DATA = "\n".join(_DATA_LINES) + "\n"


def _rules():
    rules = DATA.split("\n")
    if rules and rules[-1] == "":
        rules.pop()
    return rules


def test_parse_ports_from_rules():
    res = parse_ports_from_rules(_rules())
    assert len(res) == 2
    assert str(res[0].ip) == "0.0.0.0"
    assert res[0].port == 8082
    assert res[0].tcp is True
    assert str(res[1].ip) == "127.0.0.1"
    assert res[1].port == 8081
    assert res[1].tcp is True


def test_parse_ports_ignores_non_dnat_rules():
    rules = [
        "-A CNI-DN-aaaa -s 10.4.0.0/24 -p tcp -m tcp --dport 8082 -j CNI-HOSTPORT-SETMARK",
        "-P PREROUTING ACCEPT",
    ]
    assert parse_ports_from_rules(rules) == []


def _write_script(tmp_path, body):
    script = tmp_path / "fake-iptables"
    script.write_text(f"#!{sys.executable}\n{body}\n")
    os.chmod(script, 0o755)
    return str(script)


def test_list_nat_rules_splits_output(tmp_path):
    path = _write_script(
        tmp_path,
        "import sys\n"
        "assert sys.argv[1:] == ['-t', 'nat', '-S']\n"
        "print('-P INPUT ACCEPT')\n"
        "print('-P OUTPUT ACCEPT')",
    )
    assert list_nat_rules(path) == ["-P INPUT ACCEPT", "-P OUTPUT ACCEPT"]


def test_list_nat_rules_failure_raises(tmp_path):
    path = _write_script(tmp_path, "import sys\nsys.exit(3)")
    with pytest.raises(subprocess.CalledProcessError):
        list_nat_rules(path)


def test_check_ports_open():
    loopback = ipaddress.ip_address("127.0.0.1")
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as listener:
        listener.bind(("127.0.0.1", 0))
        listener.listen()
        open_port = listener.getsockname()[1]

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.bind(("127.0.0.1", 0))
            closed_port = probe.getsockname()[1]

        open_entry = Entry(tcp=True, ip=loopback, port=open_port)
        closed_entry = Entry(tcp=True, ip=loopback, port=closed_port)
        udp_entry = Entry(tcp=False, ip=loopback, port=closed_port)
        result = check_ports_open([open_entry, closed_entry, udp_entry])
    assert result == [open_entry, udp_entry]