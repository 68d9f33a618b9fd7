# limakit

Building blocks for running Linux virtual machines from a host:

- a **guest agent** (`limakit.guestagent`, `limakit.server`) that runs inside
  the VM, finds the listening TCP ports (from `/proc/net/tcp`,
  `/proc/net/tcp6` and CNI port-forwarding rules in the iptables NAT table)
  and streams changes over HTTP on a UNIX socket;
- a **client** for that agent (`limakit.client`);
- a **downloader** for VM images with a cache keyed by the SHA-256 of the URL
  and digest checks (`limakit.downloader`);
- helpers for a host-side command line: SSH option formatting
  (`limakit.sshformat`), argument and instance-name handling
  (`limakit.templates`) and listing of example templates (`limakit.catalog`).

## Installation

```console
pip install limakit
```

Python 3.10 or newer is required. The only runtime dependency is `tqdm`,
used for download progress bars.

## Running the guest agent

Inside the guest, as root:

```console
lima-guestagent daemon --tick 3s
```

The agent removes whatever is at `/run/lima-guestagent.sock`, serves there
(with mode 0777) and answers two requests:

- `GET /v1/info` returns `{"localPorts": [{"ip": ..., "port": ...}, ...]}`;
- `GET /v1/events` streams newline-delimited JSON events. The first event
  lists every listening port under `localPortsAdded`; later events carry only
  what was added (`localPortsAdded`) or removed (`localPortsRemoved`), or
  `errors` when a lookup failed.

`--tick` sets how often the port tables are polled. It takes durations such
as `3s`, `250ms` or `1m30s` (default `3s`) and must not be zero or negative.
`--debug` turns on debug logging, `--version` prints the version and
`lima-guestagent --help` shows every option. The daemon refuses to run unless
it is root.

The iptables NAT table is read when the daemon starts; the reading is then
reused, and the table is read again only after
`Agent.mark_iptables_changed()` has been called and until
`Agent.expire_iptables_flag()` finds that mark older than twenty ticks.

## Using the agent from Python

```python
import itertools
from limakit.guestagent import Agent

agent = Agent(lambda: itertools.repeat(None, 3), iptables_idle=60)
print(agent.info().local_ports)
for event in agent.events():
    print(event.to_dict())
```

`Agent` takes a ticker factory (an iterable per stream, one item per tick),
the iptables idle time in seconds or as a `timedelta`, and optionally the
functions it reads socket entries and iptables entries from.
`limakit.guestagent.compare_ports(old, new)` returns the added and removed
ports between two lists. `limakit.server.make_server(path, Backend(agent))`
binds the HTTP API on any UNIX socket path.

## Talking to the agent

```python
from limakit.client import GuestAgentClient

client = GuestAgentClient("/run/lima-guestagent.sock")
print(client.info().local_ports)

def on_event(event):
    for port in event.local_ports_added:
        print("new", port)
    for port in event.local_ports_removed:
        print("gone", port)

client.events(on_event)  # blocks while the stream is open
```

A response other than 200 raises `RuntimeError` with the server's message.

## Parsing port tables yourself

```python
from limakit.procnettcp import Kind, parse, parse_address

ip, port = parse_address("0100007F:0050")   # 127.0.0.1, 80

with open("/proc/net/tcp") as stream:
    for entry in parse(stream, Kind.TCP):
        print(entry.ip, entry.port, entry.state)
```

`limakit.procnettcp.parse_files()` reads both `/proc/net/tcp` and
`/proc/net/tcp6`, skipping a file that does not exist.

```python
from limakit.iptables import parse_ports_from_rules

rules = [
    "-A CNI-DN-2e2f8d5b91929ef9fc152 -d 127.0.0.1/32 -p tcp -m tcp "
    "--dport 8081 -j DNAT --to-destination 10.4.0.7:80",
]
for entry in parse_ports_from_rules(rules):
    print(entry.ip, entry.port, entry.tcp)
```

`limakit.iptables.get_ports()` runs `iptables -t nat -S`, parses the rules
and keeps the TCP ports that accept a connection; it returns an empty list
when `iptables` is not installed.

## Downloading images

```python
from limakit.downloader import Status, default_cache_dir, download

result = download(
    "~/images/guest.qcow2",
    "https://example.com/images/guest.qcow2",
    cache_dir=default_cache_dir(),
    expected_digest="sha256:" + "0" * 64,
)
if result.status is Status.USED_CACHE:
    print("served from", result.cache_path)
```

If the local file already exists, nothing is fetched and the status is
`Status.SKIPPED`. Passing an empty local path with a cache directory fills the
cache only. Local paths and `file://` URLs as the remote are copied, not
cached. Digests must be `sha256`, `sha384` or `sha512`; a malformed digest
raises `ValueError`, and a mismatch or an HTTP status other than 200 raises
`DownloadError`.

## Host-side helpers

```python
import sys
from limakit.sshformat import format_ssh
from limakit.templates import inst_name_from_yaml_path

opts = ["User=example", "Hostname=127.0.0.1", "Port=60022"]
format_ssh(sys.stdout, "default", "config", opts)
# Host lima-default
#   User example
#   Hostname 127.0.0.1
#   Port 60022

print(inst_name_from_yaml_path("examples/Fedora.yaml"))  # fedora
```

`format_ssh` also writes the `cmd`, `args` and `options` formats
(`SSHFormat`). `limakit.templates` tells template, http(s) and file URLs and
YAML paths apart (`arg_seems_template_url`, `arg_seems_http_url`,
`arg_seems_file_url`, `arg_seems_yaml_path`), validates instance names
(`validate_identifier`) and reads a stream up to a size limit
(`read_at_maximum`, raising `LimitExceededError`).

`limakit.catalog.list_template_yamls(examples_dir)` walks a directory of
example YAML files and returns their names (such as `default` or
`deprecated/centos-7`) and locations. `file_warning` and
`editor_warning_header` build the commented warning that quotes the settings
of `default.yaml` and `override.yaml` in a config directory;
`instance_matches` picks instance names equal to an argument.

## What this package does not do

There is no host-side command for creating, starting, stopping, listing or
editing virtual machines, no instance store and no VM launcher; the helpers
above are pieces such a command would use. The guest agent does not follow
netfilter changes by itself and does not install a service unit; it has only
the `daemon` command.

## Development

```console
pip install -e ".[test]"
pytest
```