"""HTTP API of the guest agent, served on a UNIX socket."""

from __future__ import annotations

import json
import logging
import shutil
import socket
import socketserver
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Iterable, Iterator
from urllib.parse import urlsplit

__all__ = ["Backend", "UnixHTTPServer", "make_server"]

log = logging.getLogger(__name__)

Response = tuple[int, str, Iterable[bytes]]

_JSON = "application/json"
_NDJSON = "application/x-ndjson"


def _encode(data: Any) -> bytes:
    return json.dumps(data, separators=(",", ":")).encode()


class Backend:
    """Routes API requests to an agent.

    :meth:`handle` returns ``(status, content_type, body)``. Fixed bodies are
    lists of bytes; the event stream is an iterator that produces one JSON
    line per event.
    """

    def __init__(self, agent: Any) -> None:
        self.agent = agent
        self._routes = {
            "/v1/info": self._get_info,
            "/v1/events": self._get_events,
        }

    def handle(self, method: str, path: str) -> Response:
        route = self._routes.get(urlsplit(path).path)
        if route is None:
            return 404, "text/plain; charset=utf-8", [b"404 page not found\n"]
        if method != "GET":
            return 405, "", []
        return route()

    @staticmethod
    def _error(exc: BaseException, status: int) -> Response:
        body = _encode({"message": str(exc)}) + b"\n"
        return status, _JSON, [body]

    def _get_info(self) -> Response:
        try:
            info = self.agent.info()
        except Exception as exc:
            return self._error(exc, 500)
        return 200, _JSON, [_encode(info.to_dict())]

    def _get_events(self) -> Response:
        return 200, _NDJSON, self._stream_events()

    def _stream_events(self) -> Iterator[bytes]:
        stop = threading.Event()
        events = self.agent.events(stop)
        try:
            for event in events:
                yield _encode(event.to_dict()) + b"\n"
        finally:
            stop.set()
            close = getattr(events, "close", None)
            if close is not None:
                close()


class _Handler(BaseHTTPRequestHandler):
    server: UnixHTTPServer

    def address_string(self) -> str:
        return "unix"

    def log_message(self, format: str, *args: Any) -> None:
        log.debug("%s %s", self.address_string(), format % args)

    def _dispatch(self) -> None:
        status, content_type, body = self.server.backend.handle(self.command, self.path)
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        if isinstance(body, list):
            payload = b"".join(body)
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(payload)
            return
        self.end_headers()
        try:
            for chunk in body:
                self.wfile.write(chunk)
                self.wfile.flush()
        except (BrokenPipeError, ConnectionResetError) as exc:
            log.warning("event stream ended: %s", exc)
        finally:
            close = getattr(body, "close", None)
            if close is not None:
                close()

    do_GET = do_HEAD = do_POST = do_PUT = do_DELETE = do_PATCH = _dispatch


class UnixHTTPServer(socketserver.ThreadingMixIn, HTTPServer):
    """Threaded HTTP server listening on a UNIX socket."""

    address_family = socket.AF_UNIX
    allow_reuse_address = False
    daemon_threads = True

    def __init__(self, socket_path: str, backend: Backend) -> None:
        self.backend = backend
        self.socket_path = str(socket_path)
        super().__init__(self.socket_path, _Handler)

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        self.server_name = "localhost"
        self.server_port = 0

    def server_close(self) -> None:
        super().server_close()
        Path(self.socket_path).unlink(missing_ok=True)


def make_server(socket_path: str | Path, backend: Backend) -> UnixHTTPServer:
    """Remove whatever is at ``socket_path`` and bind a server there."""
    path = Path(socket_path)
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)
    return UnixHTTPServer(str(path), backend)