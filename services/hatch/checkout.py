"""Shallow source checkout used in place of prebuilt release archives."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Iterable, Sequence

from services.hatch.models import ResolutionError


_LOGGER = logging.getLogger(__name__)

__all__ = ["SourceCheckout", "redact_credentials"]

_CREDENTIAL_PATTERN = re.compile(r"(x-access-token:)[^@\s]+(@)")

CommandRunner = Callable[[Sequence[str]], None]


def redact_credentials(text: str) -> str:
    """Mask access tokens embedded in clone URLs."""

    return _CREDENTIAL_PATTERN.sub(r"\1***\2", text)


def _run_git(command: Sequence[str]) -> None:
    subprocess.run(list(command), check=True)


class SourceCheckout:
    """Clone a repository and copy component subdirectories out of it."""

    def __init__(
        self,
        repository: str,
        *,
        host: str = "github.com",
        runner: CommandRunner = _run_git,
    ) -> None:
        self._repository = repository
        self._host = host
        self._runner = runner

    def clone_url(self, token: str) -> str:
        return f"https://x-access-token:{token}@{self._host}/{self._repository}.git"

    def materialize(self, token: str, components: Iterable[str], dest: Path) -> dict[str, Path]:
        """Copy each of ``components`` from a fresh clone into ``dest/<component>``."""

        work_dir = Path(tempfile.mkdtemp(prefix="velly-checkout-"))
        clone_dir = work_dir / self._repository.rsplit("/", 1)[-1]
        try:
            self._clone(token, clone_dir)
            copied: dict[str, Path] = {}
            for component in components:
                source = clone_dir / component
                if not source.is_dir():
                    raise ResolutionError(
                        f"Repository {self._repository} has no {component} directory"
                    )
                target = dest / component
                _LOGGER.info("Extracting %s directory", component)
                shutil.copytree(source, target, symlinks=True)
                copied[component] = target
            return copied
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    def _clone(self, token: str, clone_dir: Path) -> None:
        _LOGGER.info("Cloning %s", self._repository)
        command = ("git", "clone", "--depth", "1", self.clone_url(token), str(clone_dir))
        try:
            self._runner(command)
        except FileNotFoundError as exc:
            raise ResolutionError("git is required for checkout installs") from exc
        except (OSError, subprocess.CalledProcessError) as exc:
            raise ResolutionError(
                f"Failed to clone {self._repository}: {redact_credentials(str(exc))}"
            ) from exc
