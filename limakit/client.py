"""Client for the guest agent's HTTP API over a UNIX socket."""

from __future__ import annotations

import http.client
import json
import socket
from pathlib import Path
from typing import Callable

from .api import Event, Info

__all__ = ["GuestAgentClient"]


class _UnixHTTPConnection(http.client.HTTPConnection):
    def __init__(self, socket_path: str, host: str) -> None:
        super().__init__(host)
        self._socket_path = socket_path

    def connect(self) -> None:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self._socket_path)
        except OSError:
            sock.close()
            raise
        self.sock = sock


class GuestAgentClient:
    """Talks to a guest agent listening on ``socket_path`` (no ``unix://`` prefix)."""

    def __init__(self, socket_path: str | Path) -> None:
        self.socket_path = str(socket_path)
        self.version = "v1"
        self.dummy_host = "lima-guestagent"

    def _connection(self) -> _UnixHTTPConnection:
        return _UnixHTTPConnection(self.socket_path, self.dummy_host)

    def _get(self, conn: _UnixHTTPConnection, endpoint: str) -> http.client.HTTPResponse:
        conn.request("GET", f"/{self.version}/{endpoint}")
        resp = conn.getresponse()
        if resp.status != 200:
            raw = resp.read()
            try:
                message = json.loads(raw)["message"]
            except (ValueError, KeyError, TypeError):
                message = raw.decode(errors="replace").strip()
            raise RuntimeError(f"unexpected HTTP status {resp.status} {resp.reason}: {message}")
        return resp

    def info(self) -> Info:
        """Fetch a snapshot of the guest's listening ports."""
        conn = self._connection()
        try:
            data = json.load(self._get(conn, "info"))
        finally:
            conn.close()
        return Info.from_dict(data)

    def events(self, on_event: Callable[[Event], None]) -> None:
        """Call ``on_event`` for every event until the server ends the stream."""
        conn = self._connection()
        try:
            resp = self._get(conn, "events")
            for line in resp:
                line = line.strip()
                if not line:
                    continue
                on_event(Event.from_dict(json.loads(line)))
        finally:
            conn.close()