"""Version lookup for the CLI ``--version`` flag."""

from __future__ import annotations

from functools import lru_cache
from importlib import metadata, resources


@lru_cache(maxsize=1)
def get_version() -> str:
    """Installed distribution version, else the bundled VERSION file."""
    try:
        return metadata.version("repodocs")
    except metadata.PackageNotFoundError:
        pass
    try:
        return resources.files("repodocs").joinpath("VERSION").read_text(encoding="utf-8").strip()
    except (FileNotFoundError, ModuleNotFoundError):
        return "unknown"


__all__ = ["get_version", "__version__"]

__version__ = get_version()
