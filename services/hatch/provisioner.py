"""Turn downloaded archives into provisioned components."""

from __future__ import annotations

import logging
import subprocess
import tempfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Mapping, Protocol, Sequence

from services.hatch.archive import extract_archive, flatten_single_root, resolve_entry_point
from services.hatch.models import (
    DependencyProvisionError,
    ExtractionError,
    ProvisionedComponent,
)


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "DependencyInstaller",
    "Provisioner",
    "RuntimeDependencyInstaller",
    "provision_all",
]


class DependencyInstaller(Protocol):
    """Protocol describing the dependency-provisioning step."""

    def __call__(self, directory: Path) -> None:
        """Install runtime dependencies for the component in ``directory``."""


class RuntimeDependencyInstaller:
    """Run the runtime's package manager inside a component directory."""

    def __init__(self, runtime: str, install_args: Sequence[str]) -> None:
        self._command = (runtime, *install_args)

    def __call__(self, directory: Path) -> None:
        _LOGGER.info("Installing dependencies in %s", directory)
        try:
            subprocess.run(self._command, cwd=directory, check=True)
        except FileNotFoundError as exc:
            raise DependencyProvisionError(f"Runtime not found: {self._command[0]}") from exc
        except (OSError, subprocess.CalledProcessError) as exc:
            raise DependencyProvisionError(
                f"Dependency installation failed in {directory.name}: {exc}"
            ) from exc


class Provisioner:
    """Extract an artifact payload and provision its dependencies."""

    def __init__(
        self,
        install_dependencies: DependencyInstaller,
        entry_points: Mapping[str, str],
    ) -> None:
        self._install_dependencies = install_dependencies
        self._entry_points = dict(entry_points)

    def provision(
        self, name: str, payload: bytes, dest_dir: Path, *, archive_name: str = "artifact"
    ) -> ProvisionedComponent:
        _LOGGER.info("Provisioning %s into %s", name, dest_dir)
        try:
            dest_dir.mkdir(parents=True, exist_ok=False)
        except OSError as exc:
            raise ExtractionError(f"Cannot create directory for {name}: {exc}") from exc

        self.unpack(payload, dest_dir, archive_name=archive_name)
        return self.prepare(name, dest_dir)

    def unpack(self, payload: bytes, dest_dir: Path, *, archive_name: str) -> None:
        try:
            handle, raw_path = tempfile.mkstemp(prefix=".download-", suffix=f"-{archive_name}", dir=dest_dir)
            with open(handle, "wb") as archive_file:
                archive_file.write(payload)
        except OSError as exc:
            raise ExtractionError(f"Failed to store {archive_name}: {exc}") from exc

        archive_path = Path(raw_path)
        try:
            extract_archive(archive_path, dest_dir)
        finally:
            archive_path.unlink(missing_ok=True)
        flatten_single_root(dest_dir)

    def prepare(self, name: str, component_dir: Path) -> ProvisionedComponent:
        """Locate the entry point in ``component_dir`` and install dependencies."""

        entry_point = self._locate_entry_point(name, component_dir)
        self._install_dependencies(component_dir)
        _LOGGER.info("Provisioned %s with entry point %s", name, entry_point.name)
        return ProvisionedComponent(name=name, root=component_dir, entry_point=entry_point)

    def _locate_entry_point(self, name: str, component_dir: Path) -> Path:
        configured = self._entry_points.get(name)
        if not configured:
            raise ExtractionError(f"No entry point configured for component {name}")
        resolved = resolve_entry_point(component_dir, configured)
        if resolved is None:
            raise ExtractionError(f"{name} archive did not contain {configured}")
        return component_dir / resolved.relative_to(component_dir.resolve())


def provision_all(
    jobs: Mapping[str, Callable[[], ProvisionedComponent]],
) -> dict[str, ProvisionedComponent]:
    """Run each provisioning job concurrently and wait for all of them.

    The first failure (in submission order) is re-raised once every job has
    settled; results of the other jobs are discarded.
    """

    if not jobs:
        return {}
    with ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="velly-provision") as pool:
        futures = {name: pool.submit(job) for name, job in jobs.items()}

    results: dict[str, ProvisionedComponent] = {}
    for name, future in futures.items():
        error = future.exception()
        if error is not None:
            _LOGGER.error("Provisioning %s failed: %s", name, error)
            raise error
        results[name] = future.result()
    return results
