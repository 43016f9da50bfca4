from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path

import pytest

from services.hatch.linker import Linker, render_wrapper
from services.hatch.models import ConfigurationError, ProvisionedComponent


def _component(tmp_path: Path, source: str = "print('hello from assistant')\n") -> ProvisionedComponent:
    root = tmp_path / "installation" / "assistant"
    (root / "src").mkdir(parents=True)
    entry = root / "src" / "index.py"
    entry.write_text(source)
    return ProvisionedComponent("assistant", root, entry)


def test_render_wrapper_quotes_paths() -> None:
    wrapper = render_wrapper(Path("/home/me/bin/bun"), ("run",), Path("/opt/my install/index.ts"))

    assert wrapper.splitlines() == [
        "#!/bin/sh",
        "exec /home/me/bin/bun run '/opt/my install/index.ts' \"$@\"",
    ]


def test_link_runtime_points_at_resolved_executable(tmp_path: Path) -> None:
    linker = Linker(tmp_path / "bin", cli_name="vellum")

    link = linker.link_runtime(sys.executable)

    assert link.parent == tmp_path / "bin"
    assert link.is_symlink()
    assert link.resolve() == Path(sys.executable).resolve()


def test_link_runtime_replaces_stale_links(tmp_path: Path) -> None:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    stale = bin_dir / Path(sys.executable).name
    stale.symlink_to(tmp_path / "gone")

    link = Linker(bin_dir, cli_name="vellum").link_runtime(sys.executable)

    assert link == stale
    assert link.resolve() == Path(sys.executable).resolve()


def test_link_runtime_is_idempotent(tmp_path: Path) -> None:
    linker = Linker(tmp_path / "bin", cli_name="vellum")

    first = linker.link_runtime(sys.executable)
    second = linker.link_runtime(sys.executable)

    assert first == second
    assert second.resolve() == Path(sys.executable).resolve()


def test_link_runtime_requires_installed_runtime(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError, match="velly-missing-runtime"):
        Linker(tmp_path / "bin", cli_name="vellum").link_runtime("velly-missing-runtime")


def test_entry_point_wrapper_runs_component(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", os.pathsep.join([str(tmp_path / "bin"), os.environ.get("PATH", "")]))
    component = _component(tmp_path, "import sys\nprint('args', sys.argv[1:])\n")
    linker = Linker(tmp_path / "bin", cli_name="vellum")
    runtime_link = linker.link_runtime(sys.executable)

    wrapper = linker.link_entry_point(component, runtime_link)

    assert wrapper == tmp_path / "bin" / "vellum"
    assert os.access(wrapper, os.X_OK)
    result = subprocess.run([str(wrapper), "hatch"], capture_output=True, text=True, check=True)
    assert result.stdout.strip() == "args ['hatch']"


def test_entry_point_wrapper_is_rewritten_on_rerun(tmp_path: Path) -> None:
    component = _component(tmp_path)
    linker = Linker(tmp_path / "bin", cli_name="vellum", launch_args=("-u",))
    runtime_link = linker.link_runtime(sys.executable)
    (tmp_path / "bin" / "vellum").write_text("#!/bin/sh\necho stale\n")

    wrapper = linker.link_entry_point(component, runtime_link)

    assert "stale" not in wrapper.read_text()
    assert f"-u {component.entry_point}" in wrapper.read_text()


def test_missing_bin_dir_on_path_is_reported(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("PATH", "/usr/bin")
    component = _component(tmp_path)
    linker = Linker(tmp_path / "bin", cli_name="vellum")

    with caplog.at_level(logging.WARNING, logger="services.hatch.linker"):
        linker.link_entry_point(component, Path(sys.executable))

    assert "not on PATH" in caplog.text


def test_rewritten_wrapper_leaves_no_temporary_files(tmp_path: Path) -> None:
    component = _component(tmp_path)
    linker = Linker(tmp_path / "bin", cli_name="vellum")
    runtime_link = linker.link_runtime(sys.executable)

    linker.link_entry_point(component, runtime_link)
    wrapper = linker.link_entry_point(component, runtime_link)

    assert sorted(path.name for path in wrapper.parent.iterdir()) == sorted(
        [runtime_link.name, "vellum"]
    )
    assert os.access(wrapper, os.X_OK)


def test_wrapper_replaces_symlink_without_touching_its_target(tmp_path: Path) -> None:
    component = _component(tmp_path)
    elsewhere = tmp_path / "elsewhere.sh"
    elsewhere.write_text("#!/bin/sh\necho untouched\n")
    (tmp_path / "bin").mkdir()
    (tmp_path / "bin" / "vellum").symlink_to(elsewhere)
    linker = Linker(tmp_path / "bin", cli_name="vellum")

    wrapper = linker.link_entry_point(component, Path(sys.executable))

    assert not wrapper.is_symlink()
    assert elsewhere.read_text() == "#!/bin/sh\necho untouched\n"


def test_bin_dir_that_is_a_file_is_a_configuration_error(tmp_path: Path) -> None:
    bin_file = tmp_path / "bin"
    bin_file.write_text("not a directory")
    linker = Linker(bin_file, cli_name="vellum")

    with pytest.raises(ConfigurationError, match="Cannot link runtime"):
        linker.link_runtime(sys.executable)
    with pytest.raises(ConfigurationError, match="Cannot write vellum wrapper"):
        linker.link_entry_point(_component(tmp_path), Path(sys.executable))
