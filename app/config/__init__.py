"""Bootstrap configuration loaded from JSON resources and the environment."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, replace
from importlib import resources
from math import isfinite
from pathlib import Path
from typing import Any, Mapping

_CONFIG_RESOURCE = "hatch.json"
_CONFIG_FILE_ENV = "VELLY_CONFIG"
_HATCH_CONFIG_CACHE: HatchConfig | None = None

_DEFAULT_REPOSITORY = "vellum-ai/vellum-assistant"
_DEFAULT_HOME = "~/.vellum"
_DEFAULT_BIN_DIR = "~/.local/bin"
_DEFAULT_ENTRY_POINT = "src/index.ts"
_READINESS_MODES = ("exit", "http")
_SOURCES = ("release", "checkout")


@dataclass(frozen=True)
class RuntimeSettings:
    """The language runtime used to install and launch components."""

    executable: str = "bun"
    install_args: tuple[str, ...] = ("install",)
    launch_args: tuple[str, ...] = ("run",)


@dataclass(frozen=True)
class PortSettings:
    """Fixed ports handed to the components through their environment."""

    assistant: int = 7821
    gateway: int = 7830


@dataclass(frozen=True)
class ReadinessSettings:
    """How the orchestrator decides the assistant is ready."""

    mode: str = "exit"
    health_path: str = "/healthz"
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class RecoverySettings:
    """Remote host used when the release source reports not-found."""

    host: str | None = None
    remote_path: str = "/tmp/velly-bootstrap.sh"
    ssh_options: tuple[str, ...] = ("-o", "BatchMode=yes")


@dataclass(frozen=True)
class CheckoutSettings:
    """Options for the authenticated source checkout."""

    organization: str = "vellum-ai"
    components: tuple[str, ...] = ("assistant",)


@dataclass(frozen=True)
class HatchConfig:
    """Structured configuration for one bootstrap invocation."""

    source: str
    repository: str
    home: Path
    bin_dir: Path
    cli_name: str
    entry_points: Mapping[str, str]
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    ports: PortSettings = field(default_factory=PortSettings)
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)
    recovery: RecoverySettings = field(default_factory=RecoverySettings)
    checkout: CheckoutSettings = field(default_factory=CheckoutSettings)
    local_release_dir: Path | None = None

    @property
    def install_root(self) -> Path:
        return self.home / "installation"

    @property
    def log_dir(self) -> Path:
        return self.home / "logs"

    @property
    def gateway_log(self) -> Path:
        return self.log_dir / "gateway.log"

    @property
    def repository_name(self) -> str:
        return self.repository.rsplit("/", 1)[-1]


def get_hatch_config() -> HatchConfig:
    """Return the cached bootstrap configuration."""

    global _HATCH_CONFIG_CACHE
    if _HATCH_CONFIG_CACHE is None:
        _HATCH_CONFIG_CACHE = load_hatch_config()
    return _HATCH_CONFIG_CACHE


def reset_hatch_config_cache() -> None:
    """Reset the cached configuration for subsequent reloads."""

    global _HATCH_CONFIG_CACHE
    _HATCH_CONFIG_CACHE = None


def load_hatch_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> HatchConfig:
    """Load configuration from ``path`` (or the bundled JSON) plus ``VELLY_*`` overrides."""

    env = os.environ if environ is None else environ
    if path is None and env.get(_CONFIG_FILE_ENV):
        path = env[_CONFIG_FILE_ENV]
    data = _read_config_data(path)
    config = HatchConfig(
        source=_coerce_choice(data.get("source"), _SOURCES, default="release"),
        repository=_coerce_text(data.get("repository"), default=_DEFAULT_REPOSITORY),
        home=_coerce_path(data.get("home"), default=_DEFAULT_HOME),
        bin_dir=_coerce_path(data.get("bin_dir"), default=_DEFAULT_BIN_DIR),
        cli_name=_coerce_text(data.get("cli_name"), default="vellum"),
        entry_points=_parse_entry_points(data.get("entry_points")),
        runtime=_parse_runtime_section(data.get("runtime")),
        ports=_parse_ports_section(data.get("ports")),
        readiness=_parse_readiness_section(data.get("readiness")),
        recovery=_parse_recovery_section(data.get("recovery")),
        checkout=_parse_checkout_section(data.get("checkout")),
    )
    return _apply_environment(config, env)


def _apply_environment(config: HatchConfig, env: Mapping[str, str]) -> HatchConfig:
    overrides: dict[str, Any] = {}
    source = env.get("VELLY_SOURCE")
    if source:
        overrides["source"] = _coerce_choice(source, _SOURCES, default=config.source)
    if env.get("VELLY_HOME"):
        overrides["home"] = Path(env["VELLY_HOME"]).expanduser()
    if env.get("VELLY_BIN_DIR"):
        overrides["bin_dir"] = Path(env["VELLY_BIN_DIR"]).expanduser()
    if env.get("VELLY_LOCAL_RELEASE_DIR"):
        overrides["local_release_dir"] = Path(env["VELLY_LOCAL_RELEASE_DIR"]).expanduser()
    if env.get("VELLY_RECOVERY_HOST"):
        overrides["recovery"] = replace(config.recovery, host=env["VELLY_RECOVERY_HOST"].strip())
    if not overrides:
        return config
    return replace(config, **overrides)


def _read_config_data(path: str | Path | None) -> Mapping[str, Any]:
    if path is not None:
        return _load_json_from_path(Path(path).expanduser())
    return _load_default_config_data()


def _load_json_from_path(path: Path) -> Mapping[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    return _parse_json(raw)


def _load_default_config_data() -> Mapping[str, Any]:
    try:
        resource = resources.files(__package__).joinpath(_CONFIG_RESOURCE)
        raw = resource.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError):
        return {}
    return _parse_json(raw)


def _parse_json(raw: str) -> Mapping[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    if isinstance(parsed, Mapping):
        return parsed
    return {}


def _parse_entry_points(section: Any) -> Mapping[str, str]:
    defaults = {"assistant": _DEFAULT_ENTRY_POINT, "gateway": _DEFAULT_ENTRY_POINT}
    if not isinstance(section, Mapping):
        return defaults
    for name, value in section.items():
        if isinstance(value, str) and value.strip():
            defaults[str(name)] = value.strip()
    return defaults


def _parse_runtime_section(section: Any) -> RuntimeSettings:
    if not isinstance(section, Mapping):
        return RuntimeSettings()
    defaults = RuntimeSettings()
    return RuntimeSettings(
        executable=_coerce_text(section.get("executable"), default=defaults.executable),
        install_args=_coerce_args(section.get("install_args"), default=defaults.install_args),
        launch_args=_coerce_args(section.get("launch_args"), default=defaults.launch_args),
    )


def _parse_ports_section(section: Any) -> PortSettings:
    if not isinstance(section, Mapping):
        return PortSettings()
    defaults = PortSettings()
    return PortSettings(
        assistant=_coerce_port(section.get("assistant"), default=defaults.assistant),
        gateway=_coerce_port(section.get("gateway"), default=defaults.gateway),
    )


def _parse_readiness_section(section: Any) -> ReadinessSettings:
    if not isinstance(section, Mapping):
        return ReadinessSettings()
    defaults = ReadinessSettings()
    path = _coerce_text(section.get("health_path"), default=defaults.health_path)
    if not path.startswith("/"):
        path = f"/{path}"
    return ReadinessSettings(
        mode=_coerce_choice(section.get("mode"), _READINESS_MODES, default=defaults.mode),
        health_path=path,
        timeout_seconds=_coerce_positive_float(
            section.get("timeout_seconds"), default=defaults.timeout_seconds
        ),
    )


def _parse_recovery_section(section: Any) -> RecoverySettings:
    if not isinstance(section, Mapping):
        return RecoverySettings()
    defaults = RecoverySettings()
    host = section.get("host")
    return RecoverySettings(
        host=host.strip() if isinstance(host, str) and host.strip() else None,
        remote_path=_coerce_text(section.get("remote_path"), default=defaults.remote_path),
        ssh_options=_coerce_args(section.get("ssh_options"), default=defaults.ssh_options),
    )


def _parse_checkout_section(section: Any) -> CheckoutSettings:
    if not isinstance(section, Mapping):
        return CheckoutSettings()
    defaults = CheckoutSettings()
    components = _coerce_args(section.get("components"), default=defaults.components)
    return CheckoutSettings(
        organization=_coerce_text(section.get("organization"), default=defaults.organization),
        components=components or defaults.components,
    )


def _coerce_text(value: Any, *, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_choice(value: Any, choices: tuple[str, ...], *, default: str) -> str:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in choices:
            return lowered
    return default


def _coerce_path(value: Any, *, default: str) -> Path:
    return Path(_coerce_text(value, default=default)).expanduser()


def _coerce_args(value: Any, *, default: tuple[str, ...]) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return default
    return tuple(str(item) for item in value if isinstance(item, (str, int)) and str(item))


def _coerce_port(value: Any, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = int(value)
    elif isinstance(value, str):
        try:
            candidate = int(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not 0 < candidate < 65536:
        return default
    return candidate


def _coerce_positive_float(value: Any, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        candidate = float(value)
    elif isinstance(value, str):
        try:
            candidate = float(value.strip())
        except ValueError:
            return default
    else:
        return default
    if not isfinite(candidate) or candidate <= 0:
        return default
    return candidate


__all__ = [
    "CheckoutSettings",
    "HatchConfig",
    "PortSettings",
    "ReadinessSettings",
    "RecoverySettings",
    "RuntimeSettings",
    "get_hatch_config",
    "load_hatch_config",
    "reset_hatch_config_cache",
]
