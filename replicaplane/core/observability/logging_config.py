"""
Logging setup for the CLI and the controller runner.

Configured once per process; modules just do
``logger = logging.getLogger(__name__)``.

Level precedence:
    --debug / --verbose / --quiet  >  RPL_LOG_LEVEL  >  replicaplane.yml  >  WARNING

RPL_LOG_FILE adds a file handler, at RPL_LOG_FILE_LEVEL when set.
Worker threads are named, so every format above WARNING carries the
thread name to tell concurrent passes apart.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Mapping

ENV_LEVEL = "RPL_LOG_LEVEL"
ENV_FILE = "RPL_LOG_FILE"
ENV_FILE_LEVEL = "RPL_LOG_FILE_LEVEL"

# (format, datefmt) by the most verbose level it applies to
_CONSOLE_FORMATS: list[tuple[int, str, str | None]] = [
    (logging.DEBUG, "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d: %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s [%(threadName)s] %(name)s: %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(levelname)s %(message)s", None),
]

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(threadName)s] %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Kept at WARNING unless running at DEBUG
_NOISY_LOGGERS = ("urllib3", "asyncio")


def parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown or empty names give WARNING."""
    if not level:
        return logging.WARNING
    numeric = logging.getLevelName(level.upper())
    return numeric if isinstance(numeric, int) else logging.WARNING


def resolve_level(
    flag_level: str | None = None,
    config_level: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Pick the effective console level name from its sources."""
    env = os.environ if environ is None else environ
    for candidate in (flag_level, env.get(ENV_LEVEL), config_level):
        if candidate:
            return candidate.upper()
    return "WARNING"


def _console_formatter(level: int) -> logging.Formatter:
    for ceiling, fmt, datefmt in _CONSOLE_FORMATS:
        if level <= ceiling:
            return logging.Formatter(fmt, datefmt=datefmt)
    return logging.Formatter(_CONSOLE_FORMATS[-1][1])


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Install console (stderr) and optional file handlers on the root logger.

    Args:
        level: Console level name.
        log_file: Path of an extra log file, or None.
        log_file_level: File handler level (defaults to ``level``).
        quiet_third_party: Hold noisy library loggers at WARNING
            unless ``level`` is DEBUG.
    """
    console_level = parse_level(level)
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(_console_formatter(console_level))
    handlers.append(console)

    root_level = console_level
    if log_file:
        file_level = parse_level(log_file_level or level)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handlers.append(fh)
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    for old in list(root.handlers):
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def setup_from_env(flag_level: str | None = None, config_level: str | None = None) -> str:
    """Configure logging from flags, RPL_* variables and config. Returns the level used."""
    level = resolve_level(flag_level, config_level)
    setup_logging(
        level=level,
        log_file=os.environ.get(ENV_FILE),
        log_file_level=os.environ.get(ENV_FILE_LEVEL),
        quiet_third_party=level != "DEBUG",
    )
    return level
