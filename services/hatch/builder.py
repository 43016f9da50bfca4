"""Helpers for constructing the hatch service from configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping

from app.config import HatchConfig, get_hatch_config
from app.version import get_app_version
from services.hatch.app_auth import GitHubAppAuthenticator
from services.hatch.checkout import SourceCheckout
from services.hatch.constants import (
    APP_ID_ENV,
    GITHUB_API_ROOT,
    PRIVATE_KEY_ENV,
    SOURCE_CHECKOUT,
)
from services.hatch.downloader import Downloader
from services.hatch.install_root import InstallationRoot
from services.hatch.linker import Linker
from services.hatch.models import ConfigurationError
from services.hatch.orchestrator import (
    ExitCodeReadiness,
    HttpReadinessProbe,
    ProcessOrchestrator,
    ReadinessProbe,
)
from services.hatch.providers import GitHubReleaseProvider, LocalFolderReleaseProvider, ReleaseProvider
from services.hatch.provisioner import Provisioner, RuntimeDependencyInstaller
from services.hatch.recovery import RecoveryCoordinator
from services.hatch.service import HatchService


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppCredentials:
    """GitHub App identity used for checkout installs."""

    app_id: str
    private_key: str


def load_app_credentials(environ: Mapping[str, str] | None = None) -> AppCredentials:
    """Read the GitHub App id and private key, failing fast when either is missing."""

    env = os.environ if environ is None else environ
    app_id = (env.get(APP_ID_ENV) or "").strip()
    if not app_id:
        raise ConfigurationError(f"{APP_ID_ENV} environment variable is required")
    private_key = env.get(PRIVATE_KEY_ENV) or ""
    if not private_key.strip():
        raise ConfigurationError(f"{PRIVATE_KEY_ENV} environment variable is required")
    if "\\n" in private_key and "\n" not in private_key:
        private_key = private_key.replace("\\n", "\n")
    return AppCredentials(app_id=app_id, private_key=private_key)


def build_downloader() -> Downloader:
    return Downloader(user_agent=f"velly/{get_app_version()}")


def _build_provider(config: HatchConfig, downloader: Downloader) -> ReleaseProvider:
    local_dir = config.local_release_dir
    if local_dir is not None:
        if local_dir.exists():
            _LOGGER.info("Using local release source at %s", local_dir)
            return LocalFolderReleaseProvider(local_dir)
        _LOGGER.warning("Configured local release directory does not exist: %s", local_dir)
    api_url = f"{GITHUB_API_ROOT}/repos/{config.repository}/releases/latest"
    return GitHubReleaseProvider(downloader, api_url=api_url)


def build_readiness_probe(config: HatchConfig) -> ReadinessProbe:
    readiness = config.readiness
    if readiness.mode == "http":
        url = f"http://127.0.0.1:{config.ports.assistant}{readiness.health_path}"
        _LOGGER.debug("Assistant readiness will poll %s", url)
        return HttpReadinessProbe(url, timeout=readiness.timeout_seconds)
    return ExitCodeReadiness()


def build_hatch_service(
    config: HatchConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> HatchService:
    """Construct a :class:`HatchService` for the current environment."""

    config = config or get_hatch_config()
    downloader = build_downloader()
    runtime = config.runtime

    authenticator: GitHubAppAuthenticator | None = None
    checkout: SourceCheckout | None = None
    if config.source == SOURCE_CHECKOUT:
        credentials = load_app_credentials(environ)
        authenticator = GitHubAppAuthenticator(
            downloader,
            app_id=credentials.app_id,
            private_key=credentials.private_key,
            organization=config.checkout.organization,
            repository=config.repository_name,
        )
        checkout = SourceCheckout(config.repository)

    return HatchService(
        config,
        provider=_build_provider(config, downloader),
        provisioner=Provisioner(
            RuntimeDependencyInstaller(runtime.executable, runtime.install_args),
            config.entry_points,
        ),
        installation=InstallationRoot(config.install_root),
        linker=Linker(config.bin_dir, cli_name=config.cli_name, launch_args=runtime.launch_args),
        orchestrator_factory=lambda: ProcessOrchestrator(build_readiness_probe(config)),
        recovery=RecoveryCoordinator(
            config.recovery.host,
            remote_path=config.recovery.remote_path,
            ssh_options=config.recovery.ssh_options,
        ),
        authenticator=authenticator,
        checkout=checkout,
    )


__all__ = [
    "AppCredentials",
    "build_downloader",
    "build_hatch_service",
    "build_readiness_probe",
    "load_app_credentials",
]
