import hashlib
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pytest

from limakit.downloader import (
    DownloadError,
    Status,
    canonical_local_path,
    default_cache_dir,
    download,
    is_local,
    validate_digest,
)

CONTENT = b"# Lima: Linux virtual machines\n\nSample README content for tests.\n" * 50
DUMMY_DIGEST = "sha256:" + hashlib.sha256(CONTENT).hexdigest()
WRONG_DIGEST = "sha256:8313944efb4f38570c689813f288058b674ea6c487017a5a4738dc674b65f9d9"


class _Server:
    def __init__(self):
        self.hits = 0
        outer = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self):
                outer.hits += 1
                if self.path == "/README.md":
                    self.send_response(200)
                    self.send_header("Content-Length", str(len(CONTENT)))
                    self.end_headers()
                    self.wfile.write(CONTENT)
                else:
                    self.send_response(404)
                    self.send_header("Content-Length", "0")
                    self.end_headers()

            def log_message(self, format, *args):
                pass

        self.httpd = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self.base = f"http://127.0.0.1:{self.httpd.server_address[1]}"
        self.url = self.base + "/README.md"
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)
        self.thread.start()

    def close(self):
        self.httpd.shutdown()
        self.httpd.server_close()


@pytest.fixture
def server(monkeypatch):
    for name in ("http_proxy", "https_proxy", "HTTP_PROXY", "HTTPS_PROXY", "all_proxy", "ALL_PROXY"):
        monkeypatch.delenv(name, raising=False)
    srv = _Server()
    yield srv
    srv.close()


def test_without_cache_without_digest(server, tmp_path):
    local = str(tmp_path / "out")
    r = download(local, server.url)
    assert r.status == Status.DOWNLOADED
    assert Path(local).read_bytes() == CONTENT
    assert not os.path.exists(local + ".tmp")

    r = download(local, server.url)
    assert r.status == Status.SKIPPED
    assert server.hits == 1


def test_without_cache_with_digest(server, tmp_path):
    local = str(tmp_path / "out")
    with pytest.raises(DownloadError, match="expected digest"):
        download(local, server.url, expected_digest=WRONG_DIGEST)
    assert not os.path.exists(local)

    r = download(local, server.url, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.DOWNLOADED
    assert r.validated_digest is True

    r = download(local, server.url, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.SKIPPED
    assert r.validated_digest is False


def test_with_cache(server, tmp_path):
    cache_dir = tmp_path / "cache"
    local = str(tmp_path / "out")
    r = download(local, server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.DOWNLOADED
    assert r.cache_path.endswith("data")

    r = download(local, server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.SKIPPED

    local2 = local + "-2"
    r = download(local2, server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.USED_CACHE
    assert Path(local2).read_bytes() == CONTENT
    assert server.hits == 1


def test_cache_layout(server, tmp_path):
    cache_dir = tmp_path / "cache"
    r = download("", server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    shad = Path(r.cache_path).parent
    assert shad.parent == cache_dir / "download" / "by-url-sha256"
    assert (shad / "url").read_text() == server.url
    assert (shad / "sha256.digest").read_text() == DUMMY_DIGEST


def test_caching_only_mode(server, tmp_path):
    with pytest.raises(DownloadError, match="cache directory to be specified"):
        download("", server.url, expected_digest=DUMMY_DIGEST)

    cache_dir = tmp_path / "cache"
    r = download("", server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.DOWNLOADED

    r = download("", server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.USED_CACHE

    local = str(tmp_path / "out")
    r = download(local, server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    assert r.status == Status.USED_CACHE
    assert Path(local).read_bytes() == CONTENT
    assert server.hits == 1


def test_cached_digest_mismatch(server, tmp_path):
    cache_dir = tmp_path / "cache"
    download("", server.url, cache_dir=cache_dir, expected_digest=DUMMY_DIGEST)
    with pytest.raises(DownloadError, match="does not match the cached digest"):
        download(str(tmp_path / "out"), server.url, cache_dir=cache_dir, expected_digest=WRONG_DIGEST)


def test_http_error_status(server, tmp_path):
    with pytest.raises(DownloadError, match="expected HTTP status 200"):
        download(str(tmp_path / "out"), server.base + "/missing")


def test_local_copy(tmp_path):
    src = tmp_path / "src"
    src.write_bytes(CONTENT)
    dst = tmp_path / "sub" / "dst"
    r = download(str(dst), str(src), expected_digest=DUMMY_DIGEST)
    assert r.status == Status.DOWNLOADED
    assert r.validated_digest is True
    assert dst.read_bytes() == CONTENT


def test_local_copy_file_url(tmp_path):
    src = tmp_path / "src"
    src.write_bytes(CONTENT)
    dst = tmp_path / "dst"
    r = download(str(dst), "file://" + str(src))
    assert r.status == Status.DOWNLOADED
    assert r.validated_digest is False
    assert dst.read_bytes() == CONTENT


def test_local_copy_wrong_digest(tmp_path):
    src = tmp_path / "src"
    src.write_bytes(CONTENT)
    with pytest.raises(DownloadError, match="expected digest"):
        download(str(tmp_path / "dst"), str(src), expected_digest=WRONG_DIGEST)
    assert not (tmp_path / "dst").exists()


@pytest.mark.parametrize(
    "value,expected",
    [
        ("/tmp/foo", True),
        ("foo.img", True),
        ("file:///tmp/foo", True),
        ("https://example.com/foo", False),
        ("http://example.com/foo", False),
    ],
)
def test_is_local(value, expected):
    assert is_local(value) is expected


def test_canonical_local_path_errors():
    with pytest.raises(ValueError, match="empty"):
        canonical_local_path("")
    with pytest.raises(ValueError, match="non-local"):
        canonical_local_path("https://example.com/x")
    with pytest.raises(ValueError, match="non-absolute"):
        canonical_local_path("file://relative/x")


def test_canonical_local_path_expands(tmp_path):
    assert canonical_local_path("~/x") == os.path.join(str(Path.home()), "x")
    assert canonical_local_path("file:///abs/x") == "/abs/x"
    assert os.path.isabs(canonical_local_path("rel"))


def test_validate_digest():
    assert validate_digest(DUMMY_DIGEST) == DUMMY_DIGEST
    with pytest.raises(ValueError, match="not available"):
        validate_digest("md5:" + "0" * 32)
    with pytest.raises(ValueError):
        validate_digest("sha256:1234")
    with pytest.raises(ValueError):
        validate_digest("nocolon")
    with pytest.raises(ValueError):
        validate_digest("sha256:" + "Z" * 64)


def test_invalid_digest_rejected_before_download(tmp_path):
    with pytest.raises(ValueError):
        download(str(tmp_path / "out"), "https://example.com/x", expected_digest="sha256:bad")


def test_default_cache_dir():
    d = default_cache_dir()
    assert d.name == "lima"