"""Logging setup for the velly command line.

Every bootstrap writes a diagnostic log so a failed hatch can be investigated
after the fact. The file handler is installed once per process; later calls
return the path chosen the first time.

The log location is resolved from, in order:

``VELLY_LOG_FILE``
    Exact path of the log file.

``VELLY_LOG_DIR``
    Directory that receives ``velly.log``.

``VELLY_HOME``
    Bootstrap home; the log goes to ``<home>/logs/velly.log``.

Without any of these the log lives in ``~/.vellum/logs/velly.log``.

Records are scrubbed before they are written. Access tokens (clone URLs,
``Bearer`` headers and GitHub token literals) are masked, and the user's home
directory is replaced with a placeholder so logs can be shared.
"""

from __future__ import annotations

import logging
import os
import re
import sys
from enum import Enum
from pathlib import Path
from typing import Iterable

_LOG_FILE_ENV = "VELLY_LOG_FILE"
_LOG_DIR_ENV = "VELLY_LOG_DIR"
_HOME_ENV = "VELLY_HOME"
_DEFAULT_HOME = Path("~/.vellum")
_LOG_NAME = "velly.log"
_HANDLER_TAG = "_velly_logging_handler"

_FILE_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] [%(name)s] %(message)s"
_CONSOLE_FORMAT = "%(levelname)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

TOKEN_PLACEHOLDER = "***"
USER_HOME_PLACEHOLDER = "<user_home>"


class LogVerbosity(str, Enum):
    """Minimum severity written to the velly log file."""

    DISABLED = "disabled"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    VERBOSE = "verbose"

    @property
    def level(self) -> int:
        return _VERBOSITY_LEVELS[self]


_VERBOSITY_LEVELS = {
    LogVerbosity.DISABLED: logging.CRITICAL + 1,
    LogVerbosity.ERROR: logging.ERROR,
    LogVerbosity.WARNING: logging.WARNING,
    LogVerbosity.INFO: logging.INFO,
    LogVerbosity.VERBOSE: logging.DEBUG,
}

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?<=x-access-token:)[^@\s]+(?=@)"),
    re.compile(r"(?<=Bearer )[A-Za-z0-9._~+/=-]+"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
)

_DEFAULT_VERBOSITY = LogVerbosity.VERBOSE
_verbosity = _DEFAULT_VERBOSITY
_log_path: Path | None = None
_file_handler: logging.FileHandler | None = None


def _home_directories() -> list[str]:
    homes = {str(Path.home())}
    env_home = os.environ.get("HOME")
    if env_home:
        homes.add(os.path.expanduser(env_home))
    normalised = {os.path.normpath(home) for home in homes if home}
    # Longest first so nested homes are replaced before their parents.
    return sorted((home for home in normalised if home != os.sep), key=len, reverse=True)


_HOME_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(re.escape(home)) for home in _home_directories()
)


def redact(message: str) -> str:
    """Mask credentials and the user's home directory in ``message``."""

    if not message:
        return message
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(TOKEN_PLACEHOLDER, message)
    for pattern in _HOME_PATTERNS:
        message = pattern.sub(USER_HOME_PLACEHOLDER, message)
    return message


class _RedactingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return redact(super().format(record))


def _tag(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def _managed_handlers(handlers: Iterable[logging.Handler]) -> list[logging.Handler]:
    return [handler for handler in handlers if getattr(handler, _HANDLER_TAG, False)]


def ensure_app_logging() -> Path:
    """Install the velly file handler (and a console handler on a TTY).

    Returns the log file path. Safe to call repeatedly.
    """

    global _log_path, _file_handler

    if _log_path is not None:
        return _log_path

    path = _resolve_log_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setLevel(_verbosity.level)
    file_handler.setFormatter(_RedactingFormatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    root.addHandler(_tag(file_handler))

    if _should_log_to_stderr(root.handlers):
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(logging.INFO)
        console.setFormatter(_RedactingFormatter(_CONSOLE_FORMAT))
        root.addHandler(_tag(console))

    _file_handler = file_handler
    _log_path = path
    logging.getLogger(__name__).debug(
        "Writing velly logs to %s (verbosity=%s)", path, _verbosity.value
    )
    return path


def set_file_log_verbosity(verbosity: LogVerbosity | str) -> None:
    """Change the minimum severity recorded in the log file.

    Raises :class:`ValueError` for names that are not a :class:`LogVerbosity`.
    """

    global _verbosity

    if not isinstance(verbosity, LogVerbosity):
        try:
            verbosity = LogVerbosity(str(verbosity).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported log verbosity: {verbosity}") from None

    ensure_app_logging()
    _verbosity = verbosity
    if _file_handler is not None:
        _file_handler.setLevel(verbosity.level)
    logging.getLogger(__name__).debug("File log verbosity set to %s", verbosity.value)


def get_file_log_verbosity() -> LogVerbosity:
    return _verbosity


def _resolve_log_path() -> Path:
    explicit = os.environ.get(_LOG_FILE_ENV)
    if explicit:
        return Path(explicit).expanduser()

    directory = os.environ.get(_LOG_DIR_ENV)
    if directory:
        return Path(directory).expanduser() / _LOG_NAME

    home = os.environ.get(_HOME_ENV)
    base = Path(home) if home else _DEFAULT_HOME
    return base.expanduser() / "logs" / _LOG_NAME


def _should_log_to_stderr(handlers: Iterable[logging.Handler]) -> bool:
    stream = getattr(sys, "stderr", None)
    isatty = getattr(stream, "isatty", None)
    if not callable(isatty):
        return False
    try:
        interactive = isatty()
    except ValueError:
        # Closed stream.
        return False
    if not interactive:
        return False
    return not any(
        isinstance(handler, logging.StreamHandler) and handler.stream is stream
        for handler in handlers
    )


def _reset_for_tests() -> None:
    """Remove handlers installed by :func:`ensure_app_logging`."""

    global _verbosity, _log_path, _file_handler

    root = logging.getLogger()
    for handler in _managed_handlers(root.handlers):
        root.removeHandler(handler)
        handler.close()

    _verbosity = _DEFAULT_VERBOSITY
    _log_path = None
    _file_handler = None


__all__ = [
    "LogVerbosity",
    "TOKEN_PLACEHOLDER",
    "USER_HOME_PLACEHOLDER",
    "ensure_app_logging",
    "get_file_log_verbosity",
    "redact",
    "set_file_log_verbosity",
]
