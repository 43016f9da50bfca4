"""Command line entry point: ``velly hatch``."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import NoReturn, Sequence

from app.version import get_app_version
from shared.logging_config import ensure_app_logging, set_file_log_verbosity

_LOGGER = logging.getLogger(__name__)

USAGE = "velly hatch"
_LOG_LEVEL_ENV = "VELLY_LOG_LEVEL"


class _UsageParser(argparse.ArgumentParser):
    """Argument parser that reports misuse with exit status 1."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def build_parser() -> argparse.ArgumentParser:
    parser = _UsageParser(prog="velly", usage=USAGE, add_help=False)
    commands = parser.add_subparsers(dest="command", metavar="command", required=True)
    commands.add_parser(
        "hatch",
        usage=USAGE,
        add_help=False,
        help="Install the latest release and start the assistant and gateway.",
    )
    return parser


def _configure_logging() -> None:
    ensure_app_logging()
    level = os.environ.get(_LOG_LEVEL_ENV)
    if not level:
        return
    try:
        set_file_log_verbosity(level)
    except ValueError:
        _LOGGER.warning("Ignoring unsupported %s value %r", _LOG_LEVEL_ENV, level)


def hatch() -> int:
    from services.hatch import HatchError, build_hatch_service

    try:
        service = build_hatch_service()
        return service.hatch()
    except HatchError as exc:
        _LOGGER.debug("Hatch failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    _configure_logging()
    _LOGGER.info("velly %s", get_app_version())
    if args.command == "hatch":
        return hatch()
    return 1  # pragma: no cover - argparse rejects unknown commands


if __name__ == "__main__":
    raise SystemExit(main())
