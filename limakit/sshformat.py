"""Rendering of the ssh options of an instance in several output formats."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, TextIO

__all__ = ["SSHFormat", "quote_option", "format_ssh"]


class SSHFormat(str, Enum):
    """Output formats for ssh options.

    ``cmd`` is a full ssh command line, ``args`` the same without ``ssh`` and
    the destination, ``options`` one ``key=value`` pair per line and
    ``config`` an ``~/.ssh/config`` host block.
    """

    CMD = "cmd"
    ARGS = "args"
    OPTIONS = "options"
    CONFIG = "config"


def quote_option(option: str) -> str:
    """Wrap an option in single quotes when it holds a double quote.

    This keeps a shell from swallowing the quotes inside option values.
    """
    if '"' in option:
        return f"'{option}'"
    return option


def _as_format(fmt: SSHFormat | str) -> SSHFormat:
    try:
        return SSHFormat(fmt)
    except ValueError:
        raise ValueError(f"unknown format: {str(fmt)!r}") from None


def _option_args(opts: Iterable[str]) -> list[str]:
    args: list[str] = []
    for option in opts:
        args.extend(("-o", quote_option(option)))
    return args


def format_ssh(out: TextIO, inst_name: str, fmt: SSHFormat | str, opts: Iterable[str]) -> None:
    """Write ``opts`` for instance ``inst_name`` to ``out`` in format ``fmt``."""
    kind = _as_format(fmt)
    opts = list(opts)
    # Matches the default hostname of the guest.
    fake_hostname = f"lima-{inst_name}"
    if kind is SSHFormat.CMD:
        args = ["ssh", *_option_args(opts), fake_hostname]
        out.write(" ".join(args) + "\n")
    elif kind is SSHFormat.ARGS:
        out.write(" ".join(_option_args(opts)) + "\n")
    elif kind is SSHFormat.OPTIONS:
        for option in opts:
            out.write(option + "\n")
    else:
        pairs = []
        for option in opts:
            key, sep, value = option.partition("=")
            if not sep:
                raise ValueError(f"unexpected option {option!r}")
            pairs.append((key, value))
        out.write(f"Host {fake_hostname}\n")
        for key, value in pairs:
            out.write(f"  {key} {value}\n")