"""Delegate the bootstrap to a remote host when the release source is missing."""

from __future__ import annotations

import logging
import subprocess
from importlib import resources
from pathlib import Path
from typing import Callable, Sequence

from services.hatch.constants import BOOTSTRAP_SCRIPT_RESOURCE
from services.hatch.models import PermanentDownloadError, RecoveryError


_LOGGER = logging.getLogger(__name__)

__all__ = ["RecoveryCoordinator", "is_recoverable"]

CommandRunner = Callable[[Sequence[str]], None]


def is_recoverable(error: BaseException) -> bool:
    """Return ``True`` when ``error`` is a not-found response from the release source."""

    return isinstance(error, PermanentDownloadError) and error.not_found


def _run_checked(command: Sequence[str]) -> None:
    subprocess.run(list(command), check=True)


class RecoveryCoordinator:
    """Copy the bootstrap script to a remote host and run it there."""

    def __init__(
        self,
        host: str | None,
        *,
        remote_path: str,
        ssh_options: Sequence[str] = (),
        script_path: Path | None = None,
        runner: CommandRunner = _run_checked,
    ) -> None:
        self._host = host
        self._remote_path = remote_path
        self._ssh_options = tuple(ssh_options)
        self._script_path = script_path
        self._runner = runner

    def recover(self) -> None:
        if not self._host:
            raise RecoveryError(
                "Release source not found and no recovery host is configured "
                "(set VELLY_RECOVERY_HOST or recovery.host to enable remote recovery)"
            )

        _LOGGER.warning("Delegating bootstrap to recovery host %s", self._host)
        if self._script_path is not None:
            self._copy_and_execute(self._script_path)
            return
        script = resources.files("services.hatch").joinpath("resources", BOOTSTRAP_SCRIPT_RESOURCE)
        with resources.as_file(script) as script_path:
            self._copy_and_execute(script_path)

    def _copy_and_execute(self, script_path: Path) -> None:
        destination = f"{self._host}:{self._remote_path}"
        self._run(("scp", *self._ssh_options, str(script_path), destination), "copy")
        self._run(("ssh", *self._ssh_options, self._host, "sh", self._remote_path), "execute")
        _LOGGER.info("Recovery bootstrap completed on %s", self._host)

    def _run(self, command: Sequence[str], step: str) -> None:
        _LOGGER.debug("Recovery %s step: %s", step, " ".join(command))
        try:
            self._runner(command)
        except FileNotFoundError as exc:
            raise RecoveryError(f"Recovery {step} failed: {command[0]} is not installed") from exc
        except (OSError, subprocess.CalledProcessError) as exc:
            raise RecoveryError(f"Recovery {step} on {self._host} failed: {exc}") from exc
