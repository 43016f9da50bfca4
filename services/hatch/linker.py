"""Expose provisioned entry points as stable commands in a user bin directory."""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import tempfile
import textwrap
from pathlib import Path
from typing import Sequence

from services.hatch.models import ConfigurationError, ProvisionedComponent


_LOGGER = logging.getLogger(__name__)

__all__ = ["Linker", "render_wrapper"]


def render_wrapper(runtime_link: Path, launch_args: Sequence[str], entry_point: Path) -> str:
    command = " ".join(
        shlex.quote(part) for part in (str(runtime_link), *launch_args, str(entry_point))
    )
    return textwrap.dedent(
        f"""\
        #!/bin/sh
        exec {command} "$@"
        """
    )


class Linker:
    """Materialise the runtime link and the CLI wrapper."""

    def __init__(self, bin_dir: Path, *, cli_name: str, launch_args: Sequence[str] = ()) -> None:
        self._bin_dir = Path(bin_dir)
        self._cli_name = cli_name
        self._launch_args = tuple(launch_args)

    @property
    def bin_dir(self) -> Path:
        return self._bin_dir

    def link_runtime(self, runtime: str) -> Path:
        """Point ``<bin_dir>/<runtime name>`` at the resolved runtime executable."""

        located = shutil.which(runtime)
        if located is None:
            raise ConfigurationError(f"Runtime executable not found: {runtime}")
        target = Path(located).resolve()
        link = self._bin_dir / Path(runtime).name
        try:
            self._bin_dir.mkdir(parents=True, exist_ok=True)
            if link.is_symlink() or link.exists():
                if link.resolve() == target:
                    _LOGGER.debug("Runtime link %s already points at %s", link, target)
                    return link
                link.unlink()
            link.symlink_to(target)
        except OSError as exc:
            raise ConfigurationError(f"Cannot link runtime into {self._bin_dir}: {exc}") from exc
        _LOGGER.info("Linked runtime %s -> %s", link, target)
        return link

    def link_entry_point(self, component: ProvisionedComponent, runtime_link: Path) -> Path:
        """Write a shell wrapper that runs ``component`` through ``runtime_link``.

        The wrapper is written beside its final path and renamed over it, so a
        concurrent invocation never sees a partial script.
        """

        wrapper = self._bin_dir / self._cli_name
        script = render_wrapper(runtime_link, self._launch_args, component.entry_point)
        try:
            self._bin_dir.mkdir(parents=True, exist_ok=True)
            handle, raw_path = tempfile.mkstemp(prefix=f".{self._cli_name}-", dir=self._bin_dir)
            pending = Path(raw_path)
            try:
                with open(handle, "w", encoding="utf-8") as stream:
                    stream.write(script)
                pending.chmod(0o755)
                os.replace(pending, wrapper)
            except BaseException:
                pending.unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise ConfigurationError(f"Cannot write {self._cli_name} wrapper in {self._bin_dir}: {exc}") from exc
        _LOGGER.info("Wrote %s wrapper at %s", component.name, wrapper)
        if str(self._bin_dir) not in os.environ.get("PATH", "").split(os.pathsep):
            _LOGGER.warning("%s is not on PATH; add it to run %s directly", self._bin_dir, self._cli_name)
        return wrapper
