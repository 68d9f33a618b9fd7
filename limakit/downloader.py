"""Download of remote files, with an optional cache keyed by the URL."""

from __future__ import annotations

import hashlib
import os
import re
import shutil
import sys
import urllib.error
import urllib.request
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from tqdm import tqdm

__all__ = [
    "Status",
    "Result",
    "DownloadError",
    "default_cache_dir",
    "validate_digest",
    "download",
    "is_local",
    "canonical_local_path",
]

_ALGORITHMS = {"sha256": 64, "sha384": 96, "sha512": 128}
_ENCODED = re.compile(r"[a-f0-9]+")
_CHUNK = 64 * 1024


class Status(str, Enum):
    """Outcome of a download."""

    UNKNOWN = ""
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"
    USED_CACHE = "used-cache"


@dataclass(frozen=True)
class Result:
    """What :func:`download` did.

    ``cache_path`` is the ``data`` file inside the cache, when the cache was used.
    """

    status: Status
    cache_path: str = ""
    validated_digest: bool = False


class DownloadError(Exception):
    """A download could not be completed or did not match its digest."""


def default_cache_dir() -> Path:
    """Return the per-user cache directory for downloads."""
    if sys.platform == "darwin":
        home = os.environ.get("HOME", "")
        if not home:
            raise DownloadError("$HOME is not defined")
        base = Path(home) / "Library" / "Caches"
    elif os.name == "nt":
        local_app_data = os.environ.get("LocalAppData", "")
        if not local_app_data:
            raise DownloadError("%LocalAppData% is not defined")
        base = Path(local_app_data)
    else:
        xdg = os.environ.get("XDG_CACHE_HOME", "")
        if xdg:
            base = Path(xdg)
        else:
            home = os.environ.get("HOME", "")
            if not home:
                raise DownloadError("neither $XDG_CACHE_HOME nor $HOME are defined")
            base = Path(home) / ".cache"
    return base / "lima"


def validate_digest(expected_digest: str) -> str:
    """Check that ``expected_digest`` looks like ``sha256:<hex>`` and return it."""
    algo, sep, encoded = expected_digest.partition(":")
    if not sep or not algo or not encoded:
        raise ValueError(f'invalid checksum digest format "{expected_digest}"')
    if algo not in _ALGORITHMS:
        raise ValueError(f'expected digest algorithm "{algo}" is not available')
    if len(encoded) != _ALGORITHMS[algo]:
        raise ValueError(f'invalid checksum digest length "{expected_digest}"')
    if not _ENCODED.fullmatch(encoded):
        raise ValueError(f'invalid checksum digest format "{expected_digest}"')
    return expected_digest


def is_local(s: str) -> bool:
    """True when ``s`` has no scheme or the ``file://`` scheme."""
    return "://" not in s or s.startswith("file://")


def _expand(s: str) -> str:
    if not s:
        raise ValueError("got empty path")
    if s == "~" or s.startswith("~/"):
        s = str(Path.home()) + s[1:]
    return os.path.abspath(s)


def canonical_local_path(s: str) -> str:
    """Turn a local path or ``file://`` URL into an absolute path.

    A leading ``~`` is expanded; ``file://`` paths must already be absolute.
    """
    if not s:
        raise ValueError("got empty path")
    if not is_local(s):
        raise ValueError(f'got non-local path: "{s}"')
    if s.startswith("file://"):
        res = s[len("file://"):]
        if not os.path.isabs(res):
            raise ValueError(f'got non-absolute path "{res}"')
        return res
    return _expand(s)


def _remove_all(path: str | Path) -> None:
    p = Path(path)
    if p.is_dir() and not p.is_symlink():
        shutil.rmtree(p)
    else:
        p.unlink(missing_ok=True)


def _file_digest(path: str, algo: str) -> str:
    hasher = hashlib.new(algo)
    with open(path, "rb") as stream:
        for chunk in iter(lambda: stream.read(_CHUNK), b""):
            hasher.update(chunk)
    return f"{algo}:{hasher.hexdigest()}"


def _validate_local_file_digest(local_path: str, expected_digest: str) -> None:
    if not local_path:
        raise ValueError("validate_local_file_digest: got empty local path")
    if not expected_digest:
        return
    algo = expected_digest.partition(":")[0]
    actual = _file_digest(local_path, algo)
    if actual != expected_digest:
        raise DownloadError(f'expected digest "{expected_digest}", got "{actual}"')


def _copy_local(dst: str, src: str, expected_digest: str) -> None:
    src_path = canonical_local_path(src)
    _validate_local_file_digest(src_path, expected_digest)
    if not dst:
        # An empty destination means caching-only mode.
        return
    dst_path = canonical_local_path(dst)
    shutil.copyfile(src_path, dst_path)
    shutil.copymode(src_path, dst_path)


def _progress(total: int | None) -> tqdm:
    interactive = sys.stderr.isatty()
    return tqdm(
        total=total,
        unit="B",
        unit_scale=True,
        unit_divisor=1024,
        ncols=80,
        mininterval=0.2 if interactive else 5.0,
        leave=interactive,
    )


def _download_http(local_path: str, url: str, expected_digest: str) -> None:
    if not local_path:
        raise ValueError("download_http: got empty local path")
    tmp_path = local_path + ".tmp"
    _remove_all(tmp_path)
    hasher = hashlib.new(expected_digest.partition(":")[0]) if expected_digest else None
    with open(tmp_path, "wb") as out:
        try:
            resp = urllib.request.urlopen(url)
        except urllib.error.HTTPError as exc:
            exc.close()
            raise DownloadError(
                f"expected HTTP status 200, got {exc.code} {exc.reason}"
            ) from None
        with resp:
            if resp.status != 200:
                raise DownloadError(f"expected HTTP status 200, got {resp.status} {resp.reason}")
            length = resp.headers.get("Content-Length")
            total = int(length) if length and length.isdigit() else None
            with _progress(total) as bar:
                for chunk in iter(lambda: resp.read(_CHUNK), b""):
                    out.write(chunk)
                    if hasher is not None:
                        hasher.update(chunk)
                    bar.update(len(chunk))
        if hasher is not None:
            actual = f"{hasher.name}:{hasher.hexdigest()}"
            if actual != expected_digest:
                raise DownloadError(f'expected digest "{expected_digest}", got "{actual}"')
        out.flush()
        os.fsync(out.fileno())
    _remove_all(local_path)
    os.replace(tmp_path, local_path)


def download(
    local: str,
    remote: str,
    cache_dir: str | Path | None = None,
    expected_digest: str | None = None,
) -> Result:
    """Download ``remote`` into ``local``.

    An existing ``local`` is left untouched and reported as skipped. With
    ``cache_dir`` remote files are cached there; ``local`` may then be empty
    to only fill the cache. Local sources are copied, never cached.
    """
    digest = validate_digest(expected_digest) if expected_digest else ""
    cache = str(cache_dir) if cache_dir else ""

    local_path = ""
    if not local:
        if not cache:
            raise DownloadError("caching-only mode requires the cache directory to be specified")
    else:
        local_path = canonical_local_path(local)
        try:
            os.stat(local_path)
        except FileNotFoundError:
            pass
        else:
            return Result(status=Status.SKIPPED, validated_digest=False)
        os.makedirs(os.path.dirname(local_path), mode=0o755, exist_ok=True)

    if is_local(remote):
        _copy_local(local_path, remote, digest)
        return Result(status=Status.DOWNLOADED, validated_digest=bool(digest))

    if not cache:
        _download_http(local_path, remote, digest)
        return Result(status=Status.DOWNLOADED, validated_digest=bool(digest))

    shad = os.path.join(
        cache, "download", "by-url-sha256", hashlib.sha256(remote.encode()).hexdigest()
    )
    shad_data = os.path.join(shad, "data")
    shad_digest = ""
    if digest:
        algo = digest.partition(":")[0]
        shad_digest = os.path.join(shad, algo + ".digest")

    if os.path.exists(shad_data):
        cached_digest: str | None = None
        if shad_digest:
            try:
                cached_digest = Path(shad_digest).read_text().strip()
            except OSError:
                cached_digest = None
        if cached_digest is not None:
            # The cached digest file stands in for hashing the cached data.
            if digest != cached_digest:
                raise DownloadError(
                    f'expected digest "{digest}" does not match the cached digest "{cached_digest}"'
                )
            _copy_local(local_path, shad_data, "")
        else:
            _copy_local(local_path, shad_data, digest)
        return Result(
            status=Status.USED_CACHE, cache_path=shad_data, validated_digest=bool(digest)
        )

    _remove_all(shad)
    os.makedirs(shad, mode=0o700)
    Path(shad, "url").write_text(remote)
    _download_http(shad_data, remote, digest)
    # The digest was verified while downloading.
    _copy_local(local_path, shad_data, "")
    if shad_digest:
        Path(shad_digest).write_text(digest)
    return Result(status=Status.DOWNLOADED, cache_path=shad_data, validated_digest=bool(digest))