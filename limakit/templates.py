"""Interpretation of the argument that names an instance, a YAML file or a URL."""

from __future__ import annotations

import re
from typing import BinaryIO
from urllib.parse import SplitResult, urlsplit

__all__ = [
    "LimitExceededError",
    "validate_identifier",
    "arg_seems_template_url",
    "arg_seems_http_url",
    "arg_seems_file_url",
    "arg_seems_yaml_path",
    "inst_name_from_url",
    "inst_name_from_yaml_path",
    "read_at_maximum",
]

_MAX_IDENTIFIER_LENGTH = 76
_IDENTIFIER_PATTERN = r"^[A-Za-z0-9]+(?:[._-](?:[A-Za-z0-9]+))*$"
_IDENTIFIER = re.compile(_IDENTIFIER_PATTERN)


class LimitExceededError(ValueError):
    """A stream held more bytes than allowed."""


def validate_identifier(s: str) -> str:
    """Check that ``s`` is a valid instance identifier and return it."""
    if not s:
        raise ValueError("identifier must not be empty")
    if len(s) > _MAX_IDENTIFIER_LENGTH:
        raise ValueError(
            f"identifier {s!r} greater than maximum length ({_MAX_IDENTIFIER_LENGTH} characters)"
        )
    if not _IDENTIFIER.fullmatch(s):
        raise ValueError(f"identifier {s!r} must match pattern {_IDENTIFIER_PATTERN!r}")
    return s


def _split(arg: str) -> SplitResult | None:
    try:
        return urlsplit(arg)
    except ValueError:
        return None


def arg_seems_template_url(arg: str) -> tuple[bool, SplitResult | None]:
    """Tell whether ``arg`` is a ``template://`` URL; also return the parsed URL."""
    parsed = _split(arg)
    if parsed is None:
        return False, None
    return parsed.scheme == "template", parsed


def arg_seems_http_url(arg: str) -> bool:
    """Tell whether ``arg`` is an http or https URL."""
    parsed = _split(arg)
    return parsed is not None and parsed.scheme in ("http", "https")


def arg_seems_file_url(arg: str) -> bool:
    """Tell whether ``arg`` is a ``file://`` URL."""
    parsed = _split(arg)
    return parsed is not None and parsed.scheme == "file"


def arg_seems_yaml_path(arg: str) -> bool:
    """Tell whether ``arg`` looks like a path to a YAML file."""
    if "/" in arg:
        return True
    lower = arg.lower()
    return lower.endswith(".yml") or lower.endswith(".yaml")


def _base(path: str) -> str:
    if not path:
        return "."
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    return stripped.rsplit("/", 1)[-1]


def inst_name_from_url(url: str) -> str:
    """Derive an instance name from the last element of a URL's path."""
    parsed = _split(url)
    if parsed is None:
        raise ValueError(f"invalid URL {url!r}")
    return inst_name_from_yaml_path(_base(parsed.path))


def inst_name_from_yaml_path(yaml_path: str) -> str:
    """Derive an instance name from a YAML file name, e.g. ``fedora.yaml``."""
    name = _base(yaml_path).lower()
    name = name.removesuffix(".yml").removesuffix(".yaml")
    name = name.replace(".", "-")
    try:
        validate_identifier(name)
    except ValueError as exc:
        raise ValueError(f"filename {yaml_path!r} is invalid: {exc}") from None
    return name


def read_at_maximum(stream: BinaryIO, limit: int) -> bytes:
    """Read the whole stream, failing if it holds more than ``limit`` bytes."""
    data = stream.read(limit + 1)
    if len(data) > limit:
        raise LimitExceededError(f"exceeded the limit ({limit} bytes)")
    return data