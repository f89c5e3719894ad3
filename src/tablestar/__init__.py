"""tablestar: multiplication table practice with a timed quiz."""

from __future__ import annotations

import tomllib
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

__all__ = ["__version__"]


def _source_version() -> str | None:
    """Read [project].version from a pyproject.toml above this file, for source runs."""
    for base in Path(__file__).resolve().parents:
        pyproject = base / "pyproject.toml"
        if not pyproject.exists():
            continue
        with pyproject.open("rb") as handle:
            data = tomllib.load(handle)
        project = data.get("project", {})
        if project.get("name") == "tablestar" and isinstance(project.get("version"), str):
            return project["version"]
    return None


def _installed_version() -> str:
    try:
        return version("tablestar")
    except PackageNotFoundError:
        return "0+unknown"


__version__ = _source_version() or _installed_version()
