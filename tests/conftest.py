from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_project_root_on_path() -> None:
    """Guarantee the repository root is discoverable for absolute imports."""

    root = Path(__file__).resolve().parent.parent
    root_str = str(root)
    if root_str not in sys.path:
        sys.path.insert(0, root_str)


_ensure_project_root_on_path()


@pytest.fixture(autouse=True)
def _isolated_velly_home(monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory):
    """Keep installs, links and logs out of the real home directory."""

    home = tmp_path_factory.mktemp("velly-home")
    monkeypatch.setenv("VELLY_HOME", str(home / ".vellum"))
    monkeypatch.setenv("VELLY_BIN_DIR", str(home / "bin"))
    monkeypatch.setenv("VELLY_LOG_DIR", str(home / "logs"))
    for name in (
        "VELLY_CONFIG",
        "VELLY_SOURCE",
        "VELLY_LOCAL_RELEASE_DIR",
        "VELLY_RECOVERY_HOST",
        "VELLY_LOG_FILE",
        "VELLY_LOG_LEVEL",
        "GITHUB_APP_ID",
        "GITHUB_PRIVATE_KEY",
    ):
        monkeypatch.delenv(name, raising=False)

    from app.config import reset_hatch_config_cache

    reset_hatch_config_cache()
    yield home
    reset_hatch_config_cache()
