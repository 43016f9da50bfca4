"""Data models and errors used by the hatch service."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Tuple


@dataclass(frozen=True)
class Artifact:
    """A downloadable archive attached to a release."""

    name: str
    download_url: str | None = None
    source_path: Path | None = None
    size: int | None = None


@dataclass(frozen=True)
class Release:
    """Metadata describing a published release and its artifacts."""

    tag: str
    artifacts: Tuple[Artifact, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class ProvisionedComponent:
    """An extracted component whose dependencies have been installed."""

    name: str
    root: Path
    entry_point: Path

    def relocate(self, old_base: Path, new_base: Path) -> "ProvisionedComponent":
        """Return a copy whose paths live under ``new_base`` instead of ``old_base``."""

        root = new_base / self.root.relative_to(old_base)
        entry_point = new_base / self.entry_point.relative_to(old_base)
        return ProvisionedComponent(self.name, root, entry_point)


@dataclass(frozen=True)
class ProcessHandle:
    """Describe how a provisioned component should be launched."""

    name: str
    command: Tuple[str, ...]
    working_directory: Path
    environment: Mapping[str, str] = field(default_factory=dict)
    detached: bool = False
    log_path: Path | None = None


@dataclass(frozen=True)
class InstallManifest:
    """Record of the release that populated an installation root."""

    tag: str
    installed_at: str
    components: Tuple[str, ...] = ()


class HatchError(RuntimeError):
    """Base class for failures that abort a bootstrap attempt."""


class ConfigurationError(HatchError):
    """Raised when required configuration or credentials are missing."""


class ResolutionError(HatchError):
    """Raised when the release or its artifacts cannot be resolved."""


class ArtifactNotFoundError(ResolutionError):
    """Raised when no release artifact matches a required name prefix."""

    def __init__(self, prefix: str, tag: str) -> None:
        super().__init__(f"Release {tag} has no artifact starting with '{prefix}'")
        self.prefix = prefix
        self.tag = tag


class AuthenticationError(ResolutionError):
    """Raised when the source host rejects the application credentials."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class DownloadError(HatchError):
    """Base class for download failures."""


class PermanentDownloadError(DownloadError):
    """Raised for non-retryable HTTP responses."""

    def __init__(self, url: str, status: int, reason: str = "") -> None:
        detail = f" {reason}" if reason else ""
        super().__init__(f"Request to {url} failed with HTTP {status}{detail}")
        self.url = url
        self.status = status

    @property
    def not_found(self) -> bool:
        return self.status == 404


class TransientDownloadError(DownloadError):
    """Raised once retryable failures exhaust the attempt budget."""

    def __init__(self, url: str, attempts: int, status: int | None = None) -> None:
        cause = f"HTTP {status}" if status is not None else "network errors"
        super().__init__(f"Giving up on {url} after {attempts} attempts ({cause})")
        self.url = url
        self.attempts = attempts
        self.status = status


class ExtractionError(HatchError):
    """Raised when an artifact archive cannot be unpacked safely."""


class DependencyProvisionError(HatchError):
    """Raised when installing a component's dependencies fails."""


class ProcessStartError(HatchError):
    """Raised when a component process fails to start or become ready."""


class RecoveryError(HatchError):
    """Raised when the remote recovery procedure fails."""


class BootstrapInProgressError(HatchError):
    """Raised when another bootstrap holds the installation lock."""
