"""Lifecycle management for the on-disk installation root."""

from __future__ import annotations

import datetime
import json
import logging
import shutil
import tempfile
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Iterator

from filelock import FileLock, Timeout

from services.hatch.constants import INSTALL_MANIFEST_NAME, PREVIOUS_MARKER, STAGING_MARKER
from services.hatch.models import BootstrapInProgressError, HatchError, InstallManifest


_LOGGER = logging.getLogger(__name__)

__all__ = ["InstallationRoot", "StagedInstallation", "read_manifest"]


class StagedInstallation:
    """A new installation being assembled beside the live root."""

    def __init__(self, root: Path, stage: Path) -> None:
        self.root = root
        self.stage = stage
        self.committed = False

    def component_dir(self, name: str) -> Path:
        return self.stage / name

    def commit(self) -> Path:
        """Move the staged tree into place, replacing any previous root."""

        if self.committed:
            return self.root

        previous: Path | None = None
        if self.root.exists():
            previous = self.root.with_name(
                f".{self.root.name}{PREVIOUS_MARKER}{datetime.datetime.now():%Y%m%d%H%M%S%f}"
            )
            _LOGGER.debug("Moving previous installation aside to %s", previous)
            try:
                self.root.rename(previous)
            except OSError as exc:
                raise HatchError(f"Failed to move previous installation aside: {exc}") from exc

        try:
            self.stage.rename(self.root)
        except OSError as exc:
            if previous is not None:
                _LOGGER.error("Restoring previous installation after failed swap: %s", exc)
                previous.rename(self.root)
            raise HatchError(f"Failed to move new installation into place: {exc}") from exc

        self.committed = True
        if previous is not None:
            shutil.rmtree(previous, ignore_errors=True)
            _LOGGER.info("Removed previous installation")
        _LOGGER.info("Installation committed at %s", self.root)
        return self.root

    def write_manifest(self, manifest: InstallManifest) -> Path:
        base = self.root if self.committed else self.stage
        path = base / INSTALL_MANIFEST_NAME
        payload = asdict(manifest)
        payload["components"] = list(manifest.components)
        try:
            path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        except OSError as exc:
            raise HatchError(f"Failed to write install manifest {path}: {exc}") from exc
        return path

    def discard(self) -> None:
        if self.stage.exists():
            _LOGGER.info("Removing staged installation %s", self.stage)
            shutil.rmtree(self.stage, ignore_errors=True)
        if self.committed and self.root.exists():
            _LOGGER.info("Removing installation root %s after failure", self.root)
            shutil.rmtree(self.root, ignore_errors=True)


class InstallationRoot:
    """Own the well-known installation path for one bootstrap at a time."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f".{self.path.name}.lock")

    @contextmanager
    def transaction(self) -> Iterator[StagedInstallation]:
        """Yield a :class:`StagedInstallation`, cleaning up if the body raises."""

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise HatchError(f"Cannot create {self.path.parent}: {exc}") from exc
        lock = FileLock(str(self.lock_path))
        try:
            lock.acquire(timeout=0)
        except Timeout as exc:
            raise BootstrapInProgressError(
                f"Another bootstrap is already in progress (lock held on {self.lock_path})"
            ) from exc
        except OSError as exc:
            raise HatchError(f"Cannot lock {self.lock_path}: {exc}") from exc

        try:
            self._sweep_leftovers()
            try:
                stage = Path(
                    tempfile.mkdtemp(prefix=f".{self.path.name}{STAGING_MARKER}", dir=self.path.parent)
                )
            except OSError as exc:
                raise HatchError(f"Cannot stage a new installation in {self.path.parent}: {exc}") from exc
            staged = StagedInstallation(self.path, stage)
            _LOGGER.debug("Staging new installation in %s", stage)
            try:
                yield staged
            except BaseException:
                staged.discard()
                raise
            if not staged.committed:
                staged.discard()
        finally:
            lock.release()

    def _sweep_leftovers(self) -> None:
        for marker in (STAGING_MARKER, PREVIOUS_MARKER):
            for leftover in self.path.parent.glob(f".{self.path.name}{marker}*"):
                _LOGGER.info("Removing leftover directory %s from an interrupted run", leftover)
                shutil.rmtree(leftover, ignore_errors=True)


def read_manifest(root: Path) -> InstallManifest | None:
    """Return the manifest recorded in ``root`` or ``None`` when unavailable."""

    path = root / INSTALL_MANIFEST_NAME
    if not path.exists():
        return None
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        _LOGGER.debug("Unable to parse install manifest at %s", path, exc_info=True)
        return None
    tag = payload.get("tag")
    if not isinstance(tag, str) or not tag.strip():
        return None
    components = payload.get("components") or ()
    return InstallManifest(
        tag=tag,
        installed_at=str(payload.get("installed_at") or ""),
        components=tuple(str(component) for component in components),
    )
