"""Instance templates on disk, editor warning headers and instance name matching."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator

__all__ = [
    "DEFAULT_YAML",
    "OVERRIDE_YAML",
    "TemplateYAML",
    "file_warning",
    "editor_warning_header",
    "list_template_yamls",
    "instance_matches",
]

DEFAULT_YAML = "default.yaml"
OVERRIDE_YAML = "override.yaml"


@dataclass(frozen=True)
class TemplateYAML:
    """A template file; ``name`` is like ``default`` or ``deprecated/centos-7``."""

    name: str
    location: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "location": self.location}


def file_warning(filename: str | Path) -> str:
    """Return a commented warning quoting the settings held in ``filename``.

    An unreadable or empty file gives an empty string.
    """
    try:
        content = Path(filename).read_bytes()
    except OSError:
        return ""
    if not content:
        return ""
    text = content.decode("utf-8", errors="replace").removesuffix("\n")
    parts = [
        f"# WARNING: {filename} includes the following settings,\n",
        "# which are applied before applying this YAML:\n",
        "# -----------\n",
    ]
    for line in text.split("\n"):
        parts.append(f"# {line}\n" if line else "#\n")
    parts.append("# -----------\n")
    parts.append("\n")
    return "".join(parts)


def editor_warning_header(config_dir: str | Path | None) -> str:
    """Return the warnings about config files that apply before an edited YAML.

    ``config_dir`` is None when the config directory could not be determined.
    """
    if config_dir is None:
        return "# WARNING: failed to load the config dir\n\n"
    return file_warning(os.path.join(config_dir, DEFAULT_YAML)) + file_warning(
        os.path.join(config_dir, OVERRIDE_YAML)
    )


def _walk(path: str) -> Iterator[str]:
    yield path
    if not os.path.isdir(path) or os.path.islink(path):
        return
    with os.scandir(path) as entries:
        names = sorted(entry.name for entry in entries)
    for name in names:
        yield from _walk(os.path.join(path, name))


def list_template_yamls(examples_dir: str | Path) -> list[TemplateYAML]:
    """List the ``*.yaml`` templates under ``examples_dir`` in lexical walk order.

    Entries whose base name starts with a dot are left out.
    """
    root = str(examples_dir)
    if not os.path.exists(root):
        raise FileNotFoundError(f"no such directory: {root!r}")
    prefix = root + "/"
    result: list[TemplateYAML] = []
    for path in _walk(root):
        base = os.path.basename(path)
        if base.startswith(".") or not base.endswith(".yaml"):
            continue
        name = path.removeprefix(prefix).removesuffix(".yaml")
        result.append(TemplateYAML(name=name, location=path))
    return result


def instance_matches(arg: str, instances: Iterable[str]) -> list[str]:
    """Return the instances whose name equals ``arg``."""
    return [instance for instance in instances if instance == arg]