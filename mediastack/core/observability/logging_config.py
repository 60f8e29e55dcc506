"""
Logging configuration — one call at CLI startup.

Every module logs through ``logging.getLogger(__name__)``; this module
only decides where those records go and how they look.

Console level, highest precedence first:
    --debug / --verbose / --quiet  >  MEDIASTACK_LOG_LEVEL  >  WARNING

MEDIASTACK_LOG_FILE adds a file handler, with its own threshold from
MEDIASTACK_LOG_FILE_LEVEL.  Health probe results log at INFO and
transport retries at DEBUG, so ``-v`` shows the former and ``--debug``
both.
"""

from __future__ import annotations

import logging
import sys

# Console formats, by level
_CONSOLE_FORMATS: dict[int, tuple[str, str | None]] = {
    logging.DEBUG: ("%(asctime)s %(levelname)-5s %(name)s:%(lineno)d: %(message)s", "%H:%M:%S"),
    logging.INFO: ("%(asctime)s [%(name)s] %(message)s", "%H:%M:%S"),
}
_CONSOLE_DEFAULT = ("%(message)s", None)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d: %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# urllib3 logs every connection at DEBUG
_NOISY_LOGGERS = ("urllib3", "requests", "charset_normalizer")


def setup_logging(
    level: str = "WARNING",
    log_file: str | None = None,
    log_file_level: str | None = None,
    quiet_third_party: bool = True,
) -> None:
    """Configure the root logger for the whole process.

    Args:
        level: Console level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Optional path of a log file to append to.
        log_file_level: File threshold; defaults to ``level``.
        quiet_third_party: Hold HTTP library loggers at WARNING unless
            the console is at DEBUG.
    """
    console_level = _parse_level(level)
    fmt, datefmt = _console_format(console_level)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(fmt, datefmt=datefmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console)

    root_level = console_level
    if log_file:
        file_level = _parse_level(log_file_level) if log_file_level else console_level
        root_level = min(root_level, file_level)

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        root.addHandler(file_handler)

    root.setLevel(root_level)

    if quiet_third_party and console_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.raiseExceptions = False


def level_from_flags(
    debug: bool = False,
    verbose: bool = False,
    quiet: bool = False,
    env_level: str | None = None,
) -> str:
    """Pick the console level: --debug > --verbose > --quiet > env > WARNING."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return env_level or "WARNING"


def _console_format(level: int) -> tuple[str, str | None]:
    for threshold in (logging.DEBUG, logging.INFO):
        if level <= threshold:
            return _CONSOLE_FORMATS[threshold]
    return _CONSOLE_DEFAULT


def _parse_level(level: str | None) -> int:
    """Level name to its numeric value; unknown names mean WARNING."""
    if not level:
        return logging.WARNING
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        return logging.WARNING
    return numeric
