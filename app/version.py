"""Version string reported by the velly command line."""

from __future__ import annotations

import os
import subprocess
from functools import lru_cache
from importlib import metadata
from pathlib import Path
from typing import Callable

_DISTRIBUTION = "velly"
_VERSION_ENV = "VELLY_VERSION"
_FALLBACK_VERSION = "0.0.0-dev"
_SOURCE_ROOT = Path(__file__).resolve().parent.parent


def _strip_tag_prefix(raw: str) -> str:
    value = raw.strip()
    return value[1:] if value.startswith("v") else value


def _from_environment() -> str | None:
    return _strip_tag_prefix(os.environ.get(_VERSION_ENV, "")) or None


def _from_installed_distribution() -> str | None:
    try:
        return metadata.version(_DISTRIBUTION)
    except metadata.PackageNotFoundError:
        return None


def _from_source_checkout() -> str | None:
    if not (_SOURCE_ROOT / ".git").exists():
        return None
    try:
        described = subprocess.run(
            ["git", "describe", "--tags", "--dirty"],
            cwd=_SOURCE_ROOT,
            capture_output=True,
            text=True,
            check=True,
        ).stdout
    except (OSError, subprocess.CalledProcessError):
        return None
    return _strip_tag_prefix(described) or None


_RESOLVERS: tuple[Callable[[], str | None], ...] = (
    _from_environment,
    _from_installed_distribution,
    _from_source_checkout,
)


@lru_cache(maxsize=1)
def get_app_version() -> str:
    """Return the velly version.

    ``VELLY_VERSION`` wins, then the installed distribution metadata, then
    ``git describe`` when running from a source checkout, and finally a
    development placeholder.
    """

    for resolve in _RESOLVERS:
        version = resolve()
        if version:
            return version
    return _FALLBACK_VERSION


__all__ = ["get_app_version"]
