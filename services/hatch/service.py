"""Service responsible for acquiring, installing and launching a release."""

from __future__ import annotations

import datetime as _datetime_module
import logging
from functools import partial
from pathlib import Path
from typing import Callable, Mapping

from app.config import HatchConfig
from services.hatch.app_auth import GitHubAppAuthenticator
from services.hatch.checkout import SourceCheckout
from services.hatch.constants import (
    ASSISTANT_COMPONENT,
    GATEWAY_COMPONENT,
    REQUIRED_COMPONENTS,
    SOURCE_CHECKOUT,
)
from services.hatch.install_root import InstallationRoot, StagedInstallation, read_manifest
from services.hatch.linker import Linker
from services.hatch.models import (
    Artifact,
    ConfigurationError,
    InstallManifest,
    PermanentDownloadError,
    ProcessHandle,
    ProvisionedComponent,
    Release,
)
from services.hatch.orchestrator import ProcessOrchestrator, run_foreground
from services.hatch.providers import ReleaseProvider, find_artifact
from services.hatch.provisioner import Provisioner, provision_all
from services.hatch.recovery import RecoveryCoordinator, is_recoverable
from services.hatch.versioning import describe_transition

# ``datetime`` stays in the module namespace so tests can pin the install timestamp.
datetime = _datetime_module


_LOGGER = logging.getLogger(__name__)


class HatchService:
    """Coordinate release resolution, provisioning, linking and startup."""

    def __init__(
        self,
        config: HatchConfig,
        *,
        provider: ReleaseProvider,
        provisioner: Provisioner,
        installation: InstallationRoot,
        linker: Linker,
        orchestrator_factory: Callable[[], ProcessOrchestrator],
        recovery: RecoveryCoordinator,
        authenticator: GitHubAppAuthenticator | None = None,
        checkout: SourceCheckout | None = None,
        foreground_runner: Callable[[ProcessHandle], int] = run_foreground,
    ) -> None:
        self._config = config
        self._provider = provider
        self._provisioner = provisioner
        self._installation = installation
        self._linker = linker
        self._orchestrator_factory = orchestrator_factory
        self._recovery = recovery
        self._authenticator = authenticator
        self._checkout = checkout
        self._foreground_runner = foreground_runner

    def hatch(self) -> int:
        """Run one bootstrap attempt and return the process exit status."""

        try:
            if self._config.source == SOURCE_CHECKOUT:
                return self._hatch_from_checkout()
            return self._hatch_from_release()
        except PermanentDownloadError as exc:
            if not is_recoverable(exc):
                raise
            _LOGGER.warning("Release source reported not-found (%s); attempting recovery", exc)
            self._recovery.recover()
            return 0

    def _hatch_from_release(self) -> int:
        release = self._provider.fetch_latest()
        artifacts = {name: find_artifact(release, name) for name in REQUIRED_COMPONENTS}
        self._log_transition(release)

        with self._installation.transaction() as staged:
            jobs = {
                name: partial(self._fetch_and_provision, artifact, staged.component_dir(name))
                for name, artifact in artifacts.items()
            }
            components = self._commit(staged, provision_all(jobs))
            staged.write_manifest(
                InstallManifest(
                    tag=release.tag,
                    installed_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
                    components=tuple(components),
                )
            )
            self._link(components[ASSISTANT_COMPONENT])
            orchestrator = self._orchestrator_factory()
            pid = orchestrator.start(
                self._assistant_handle(components[ASSISTANT_COMPONENT]),
                self._gateway_handle(components[GATEWAY_COMPONENT]),
            )

        _LOGGER.info("Release %s is running (gateway PID %s)", release.tag, pid)
        return 0

    def _hatch_from_checkout(self) -> int:
        if self._authenticator is None or self._checkout is None:
            raise ConfigurationError("Checkout installs require GitHub App credentials")
        names = self._config.checkout.components
        token = self._authenticator.installation_token()

        with self._installation.transaction() as staged:
            copied = self._checkout.materialize(token, names, staged.stage)
            provisioned = {name: self._provisioner.prepare(name, path) for name, path in copied.items()}
            components = self._commit(staged, provisioned)
            if ASSISTANT_COMPONENT in components:
                self._link(components[ASSISTANT_COMPONENT])

            if len(components) == 1:
                (component,) = components.values()
                handle = self._handle_for(component, port=self._config.ports.assistant)
                return self._foreground_runner(handle)

            orchestrator = self._orchestrator_factory()
            orchestrator.start(
                self._assistant_handle(components[ASSISTANT_COMPONENT]),
                self._gateway_handle(components[GATEWAY_COMPONENT]),
            )
        return 0

    def _fetch_and_provision(self, artifact: Artifact, dest: Path) -> ProvisionedComponent:
        payload = self._provider.fetch_artifact(artifact)
        return self._provisioner.provision(
            dest.name, payload, dest, archive_name=artifact.name
        )

    def _commit(
        self, staged: StagedInstallation, components: Mapping[str, ProvisionedComponent]
    ) -> dict[str, ProvisionedComponent]:
        root = staged.commit()
        return {name: component.relocate(staged.stage, root) for name, component in components.items()}

    def _link(self, assistant: ProvisionedComponent) -> None:
        runtime_link = self._linker.link_runtime(self._config.runtime.executable)
        self._linker.link_entry_point(assistant, runtime_link)

    def _assistant_handle(self, component: ProvisionedComponent) -> ProcessHandle:
        return self._handle_for(component, port=self._config.ports.assistant)

    def _gateway_handle(self, component: ProvisionedComponent) -> ProcessHandle:
        handle = self._handle_for(component, port=self._config.ports.gateway)
        environment = dict(handle.environment)
        environment["ASSISTANT_PORT"] = str(self._config.ports.assistant)
        return ProcessHandle(
            name=handle.name,
            command=handle.command,
            working_directory=handle.working_directory,
            environment=environment,
            detached=True,
            log_path=self._config.gateway_log,
        )

    def _handle_for(self, component: ProvisionedComponent, *, port: int) -> ProcessHandle:
        runtime = self._config.runtime
        return ProcessHandle(
            name=component.name,
            command=(runtime.executable, *runtime.launch_args, str(component.entry_point)),
            working_directory=component.root,
            environment={"PORT": str(port)},
        )

    def _log_transition(self, release: Release) -> None:
        previous = read_manifest(self._installation.path)
        previous_tag = previous.tag if previous is not None else None
        transition = describe_transition(previous_tag, release.tag)
        if previous_tag is None:
            _LOGGER.info("Installing release %s", release.tag)
        else:
            _LOGGER.info("Release %s -> %s (%s)", previous_tag, release.tag, transition)
        if transition == "downgrade":
            _LOGGER.warning(
                "Latest published release %s is older than installed %s", release.tag, previous_tag
            )
