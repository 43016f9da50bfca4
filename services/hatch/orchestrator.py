"""Start the provisioned components in order and hand the gateway off."""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from enum import Enum
from typing import Callable, Protocol
from urllib.error import URLError
from urllib.request import urlopen

from services.hatch.models import ProcessHandle, ProcessStartError


_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ExitCodeReadiness",
    "HttpReadinessProbe",
    "OrchestratorState",
    "ProcessOrchestrator",
    "ReadinessProbe",
    "run_foreground",
]

_FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_TERMINATE_GRACE_SECONDS = 5.0


class OrchestratorState(str, Enum):
    IDLE = "idle"
    ASSISTANT_STARTING = "assistant_starting"
    ASSISTANT_READY = "assistant_ready"
    GATEWAY_STARTING = "gateway_starting"
    RUNNING = "running"
    FAILED = "failed"


_TRANSITIONS: dict[OrchestratorState, frozenset[OrchestratorState]] = {
    OrchestratorState.IDLE: frozenset({OrchestratorState.ASSISTANT_STARTING}),
    OrchestratorState.ASSISTANT_STARTING: frozenset({OrchestratorState.ASSISTANT_READY}),
    OrchestratorState.ASSISTANT_READY: frozenset({OrchestratorState.GATEWAY_STARTING}),
    OrchestratorState.GATEWAY_STARTING: frozenset({OrchestratorState.RUNNING}),
    OrchestratorState.RUNNING: frozenset(),
    OrchestratorState.FAILED: frozenset(),
}


class ReadinessProbe(Protocol):
    """Decide when a freshly spawned assistant counts as ready."""

    def wait_until_ready(self, process: subprocess.Popen, handle: ProcessHandle) -> None:
        """Return once ready; raise :class:`ProcessStartError` otherwise."""


class ExitCodeReadiness:
    """Treat a zero exit status as the ready signal."""

    def wait_until_ready(self, process: subprocess.Popen, handle: ProcessHandle) -> None:
        code = process.wait()
        if code != 0:
            raise ProcessStartError(f"{handle.name} exited with status {code}")
        _LOGGER.debug("%s exited cleanly; treating as ready", handle.name)


class HttpReadinessProbe:
    """Poll an HTTP health endpoint until it answers with a 2xx status."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._interval = interval
        self._clock = clock
        self._sleep = sleep

    def wait_until_ready(self, process: subprocess.Popen, handle: ProcessHandle) -> None:
        deadline = self._clock() + self._timeout
        while True:
            code = process.poll()
            if code is not None:
                raise ProcessStartError(
                    f"{handle.name} exited with status {code} before becoming ready"
                )
            if self._probe():
                _LOGGER.info("%s answered health check at %s", handle.name, self._url)
                return
            if self._clock() >= deadline:
                raise ProcessStartError(
                    f"{handle.name} did not become ready within {self._timeout:.0f}s"
                )
            self._sleep(self._interval)

    def _probe(self) -> bool:
        try:
            with urlopen(self._url, timeout=self._interval or 1.0) as response:  # nosec - loopback
                return 200 <= response.status < 300
        except (URLError, OSError):
            return False


class ProcessOrchestrator:
    """Run the assistant to readiness, then detach the gateway."""

    def __init__(self, readiness: ReadinessProbe | None = None) -> None:
        self._readiness = readiness or ExitCodeReadiness()
        self._state = OrchestratorState.IDLE
        self.gateway_pid: int | None = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    def start(self, assistant: ProcessHandle, gateway: ProcessHandle) -> int:
        """Start both components and return the detached gateway's PID."""

        process: subprocess.Popen | None = None
        try:
            self._transition(OrchestratorState.ASSISTANT_STARTING)
            process = self._spawn_attached(assistant)
            self._readiness.wait_until_ready(process, assistant)
            self._transition(OrchestratorState.ASSISTANT_READY)
            _LOGGER.info("%s is ready", assistant.name)

            self._transition(OrchestratorState.GATEWAY_STARTING)
            pid = self._spawn_detached(gateway)
            self._transition(OrchestratorState.RUNNING)
        except BaseException:
            if self._state is not OrchestratorState.RUNNING:
                self._state = OrchestratorState.FAILED
                if process is not None:
                    _stop(process, assistant.name)
            raise
        self.gateway_pid = pid
        return pid

    def _transition(self, target: OrchestratorState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise ProcessStartError(
                f"Illegal orchestrator transition {self._state.value} -> {target.value}"
            )
        _LOGGER.debug("Orchestrator %s -> %s", self._state.value, target.value)
        self._state = target

    def _spawn_attached(self, handle: ProcessHandle) -> subprocess.Popen:
        _LOGGER.info("Starting %s in %s", handle.name, handle.working_directory)
        try:
            return subprocess.Popen(
                list(handle.command),
                cwd=str(handle.working_directory),
                env=_merged_environment(handle),
            )
        except OSError as exc:
            raise ProcessStartError(f"Failed to start {handle.name}: {exc}") from exc

    def _spawn_detached(self, handle: ProcessHandle) -> int:
        if handle.log_path is None:
            raise ProcessStartError(f"No log file configured for {handle.name}")
        _LOGGER.info("Starting %s detached; output appended to %s", handle.name, handle.log_path)
        try:
            handle.log_path.parent.mkdir(parents=True, exist_ok=True)
            log_file = handle.log_path.open("ab")
        except OSError as exc:
            raise ProcessStartError(
                f"Cannot open log file {handle.log_path} for {handle.name}: {exc}"
            ) from exc
        try:
            process = subprocess.Popen(
                list(handle.command),
                cwd=str(handle.working_directory),
                env=_merged_environment(handle),
                stdin=subprocess.DEVNULL,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        except OSError as exc:
            raise ProcessStartError(f"Failed to start {handle.name}: {exc}") from exc
        finally:
            log_file.close()
        _LOGGER.info("%s running with PID %s", handle.name, process.pid)
        return process.pid


def run_foreground(handle: ProcessHandle) -> int:
    """Run ``handle`` attached, forwarding SIGINT/SIGTERM, and return its exit code."""

    _LOGGER.info("Starting %s in the foreground", handle.name)
    try:
        process = subprocess.Popen(
            list(handle.command),
            cwd=str(handle.working_directory),
            env=_merged_environment(handle),
        )
    except OSError as exc:
        raise ProcessStartError(f"Failed to start {handle.name}: {exc}") from exc

    def forward(signum: int, _frame: object) -> None:
        _LOGGER.debug("Forwarding signal %s to %s", signum, handle.name)
        if process.poll() is None:
            process.send_signal(signum)

    previous = {sig: signal.signal(sig, forward) for sig in _FORWARDED_SIGNALS}
    try:
        code = process.wait()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    if code < 0:
        code = 128 - code
    _LOGGER.info("%s exited with status %s", handle.name, code)
    return code


def _stop(process: subprocess.Popen, name: str) -> None:
    """Terminate ``process`` if it is still running, killing it after a grace period."""

    if process.poll() is not None:
        return
    _LOGGER.warning("Stopping %s (PID %s) after failed start", name, process.pid)
    process.terminate()
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        _LOGGER.warning("%s ignored SIGTERM; killing it", name)
        process.kill()
        process.wait()


def _merged_environment(handle: ProcessHandle) -> dict[str, str]:
    environment = dict(os.environ)
    environment.update(handle.environment)
    return environment
