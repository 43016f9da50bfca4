from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

from services.hatch.models import (
    DependencyProvisionError,
    ExtractionError,
    ProvisionedComponent,
)
from services.hatch.provisioner import (
    Provisioner,
    RuntimeDependencyInstaller,
    provision_all,
)

from tests.unit.hatch_test_utils import RecordingInstaller, build_component_archive

ENTRY_POINTS = {"assistant": "src/index.py", "gateway": "src/index.py"}


def test_provision_extracts_flattens_and_installs(tmp_path: Path) -> None:
    payload = build_component_archive(tmp_path, "assistant").read_bytes()
    installer = RecordingInstaller()
    dest = tmp_path / "stage" / "assistant"

    component = Provisioner(installer, ENTRY_POINTS).provision(
        "assistant", payload, dest, archive_name="assistant-linux.tar.gz"
    )

    assert component.name == "assistant"
    assert component.root == dest
    assert component.entry_point == dest / "src" / "index.py"
    assert component.entry_point.is_file()
    assert installer.directories == [dest]
    assert not list(dest.glob(".download-*"))


def test_provision_accepts_zip_payloads(tmp_path: Path) -> None:
    payload = build_component_archive(tmp_path, "gateway", fmt="zip").read_bytes()
    dest = tmp_path / "gateway"

    component = Provisioner(RecordingInstaller(), ENTRY_POINTS).provision(
        "gateway", payload, dest, archive_name="gateway.zip"
    )

    assert component.entry_point == dest / "src" / "index.py"


def test_provision_refuses_existing_directory(tmp_path: Path) -> None:
    dest = tmp_path / "assistant"
    dest.mkdir()

    with pytest.raises(ExtractionError):
        Provisioner(RecordingInstaller(), ENTRY_POINTS).provision("assistant", b"", dest)


def test_provision_reports_missing_entry_point(tmp_path: Path) -> None:
    payload = build_component_archive(tmp_path, "assistant", {"README.md": b"docs"}).read_bytes()
    installer = RecordingInstaller()

    with pytest.raises(ExtractionError, match="src/index.py"):
        Provisioner(installer, ENTRY_POINTS).provision("assistant", payload, tmp_path / "assistant")
    assert installer.directories == []


def test_prepare_requires_configured_entry_point(tmp_path: Path) -> None:
    with pytest.raises(ExtractionError, match="No entry point"):
        Provisioner(RecordingInstaller(), {}).prepare("assistant", tmp_path)


def test_runtime_installer_runs_in_component_directory(tmp_path: Path) -> None:
    installer = RuntimeDependencyInstaller(
        sys.executable, ("-c", "open('installed.txt', 'w').write('ok')")
    )

    installer(tmp_path)

    assert (tmp_path / "installed.txt").read_text() == "ok"


def test_runtime_installer_wraps_failures(tmp_path: Path) -> None:
    with pytest.raises(DependencyProvisionError, match="failed"):
        RuntimeDependencyInstaller(sys.executable, ("-c", "raise SystemExit(3)"))(tmp_path)


def test_runtime_installer_reports_missing_runtime(tmp_path: Path) -> None:
    with pytest.raises(DependencyProvisionError, match="Runtime not found"):
        RuntimeDependencyInstaller("velly-missing-runtime", ("install",))(tmp_path)


def test_provision_all_runs_jobs_concurrently(tmp_path: Path) -> None:
    barrier = threading.Barrier(2, timeout=5)

    def job(name: str):
        def run() -> ProvisionedComponent:
            barrier.wait()
            return ProvisionedComponent(name, tmp_path / name, tmp_path / name / "index.py")

        return run

    results = provision_all({"assistant": job("assistant"), "gateway": job("gateway")})

    assert list(results) == ["assistant", "gateway"]
    assert results["gateway"].root == tmp_path / "gateway"


def test_provision_all_waits_for_every_job_before_raising(tmp_path: Path) -> None:
    finished: list[str] = []
    gate = threading.Event()

    def failing() -> ProvisionedComponent:
        raise ExtractionError("assistant archive is corrupt")

    def slow() -> ProvisionedComponent:
        gate.wait(0.2)
        finished.append("gateway")
        return ProvisionedComponent("gateway", tmp_path, tmp_path / "index.py")

    with pytest.raises(ExtractionError, match="corrupt"):
        provision_all({"assistant": failing, "gateway": slow})

    assert finished == ["gateway"]


def test_provision_all_with_no_jobs_returns_empty() -> None:
    assert provision_all({}) == {}
