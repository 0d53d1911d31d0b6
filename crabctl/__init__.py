"""crabctl: monitor and drive agent sessions running in tmux."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

_PYPROJECT = Path(__file__).resolve().parent.parent / "pyproject.toml"


def _source_tree_version() -> str:
    """Version declared in pyproject.toml, for runs from a source checkout."""
    try:
        project = tomllib.loads(_PYPROJECT.read_text(encoding="utf-8")).get("project", {})
    except (OSError, tomllib.TOMLDecodeError):
        return "0.0.0"
    declared = project.get("version") if isinstance(project, dict) else None
    return declared if isinstance(declared, str) else "0.0.0"


try:
    __version__ = version("crabctl")
except PackageNotFoundError:
    __version__ = _source_tree_version()

__all__ = ["__version__"]
