"""Public API for the hatch service package."""

from __future__ import annotations

from services.hatch.builder import build_hatch_service, load_app_credentials
from services.hatch.constants import (
    API_URL,
    APP_ID_ENV,
    ASSISTANT_COMPONENT,
    GATEWAY_COMPONENT,
    GITHUB_REPO,
    MAX_ARCHIVE_ENTRIES,
    MAX_ARCHIVE_FILE_SIZE,
    MAX_ARCHIVE_TOTAL_BYTES,
    MAX_COMPRESSION_RATIO,
    MAX_DOWNLOAD_ATTEMPTS,
    PRIVATE_KEY_ENV,
    REQUIRED_COMPONENTS,
)
from services.hatch.downloader import Downloader
from services.hatch.install_root import InstallationRoot
from services.hatch.models import (
    Artifact,
    ArtifactNotFoundError,
    AuthenticationError,
    BootstrapInProgressError,
    ConfigurationError,
    DependencyProvisionError,
    DownloadError,
    ExtractionError,
    HatchError,
    PermanentDownloadError,
    ProcessHandle,
    ProcessStartError,
    ProvisionedComponent,
    RecoveryError,
    Release,
    ResolutionError,
    TransientDownloadError,
)
from services.hatch.providers import (
    GitHubReleaseProvider,
    LocalFolderReleaseProvider,
    ReleaseProvider,
    find_artifact,
)
from services.hatch.service import HatchService

__all__ = [
    "API_URL",
    "APP_ID_ENV",
    "ASSISTANT_COMPONENT",
    "GATEWAY_COMPONENT",
    "GITHUB_REPO",
    "MAX_ARCHIVE_ENTRIES",
    "MAX_ARCHIVE_FILE_SIZE",
    "MAX_ARCHIVE_TOTAL_BYTES",
    "MAX_COMPRESSION_RATIO",
    "MAX_DOWNLOAD_ATTEMPTS",
    "PRIVATE_KEY_ENV",
    "REQUIRED_COMPONENTS",
    "Artifact",
    "ArtifactNotFoundError",
    "AuthenticationError",
    "BootstrapInProgressError",
    "ConfigurationError",
    "DependencyProvisionError",
    "DownloadError",
    "Downloader",
    "ExtractionError",
    "GitHubReleaseProvider",
    "HatchError",
    "HatchService",
    "InstallationRoot",
    "LocalFolderReleaseProvider",
    "PermanentDownloadError",
    "ProcessHandle",
    "ProcessStartError",
    "ProvisionedComponent",
    "RecoveryError",
    "Release",
    "ReleaseProvider",
    "ResolutionError",
    "TransientDownloadError",
    "build_hatch_service",
    "find_artifact",
    "load_app_credentials",
]
