"""Logging for BranchChat.

Every module logs through a child of the ``branchchat`` logger
(``get_logger("tree")`` -> ``branchchat.tree``). Output goes to one place:
the file named by ``logging.file`` in config or ``BC_LOG``, otherwise stderr
when it is a terminal. The REPL owns stdout, so nothing is ever logged there.

Verbosity 0-4 maps to error, warning, info, verbose and trace.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from branchchat.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

ROOT_LOGGER_NAME = "branchchat"
LOG_FILE_ENV = "BC_LOG"

logger = logging.getLogger(ROOT_LOGGER_NAME)

_installed: logging.Handler | None = None

_LEVEL_NAMES = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "VERBOSE": VERBOSE,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class ComponentFormatter(logging.Formatter):
    """Lowercase level names and logger names relative to ``branchchat``.

    ``branchchat.session.storage`` is shown as ``session.storage``.
    """

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(component)s: %(message)s", datefmt="%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        prefix = ROOT_LOGGER_NAME + "."
        record.component = record.name[len(prefix):] if record.name.startswith(prefix) else record.name
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Pick the effective log level; ``verbose`` wins over ``level``."""
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        return _VERBOSITY_LEVELS[min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)]
    if config.level:
        return _LEVEL_NAMES.get(config.level.upper(), logging.INFO)
    return logging.INFO


def resolve_log_file(config: LoggingConfig | None) -> Path | None:
    """Log file from config, falling back to ``BC_LOG``."""
    raw = config.file if config and config.file else os.environ.get(LOG_FILE_ENV)
    return Path(raw).expanduser() if raw else None


def _open_handler(log_file: Path | None) -> logging.Handler | None:
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            return logging.FileHandler(log_file, mode="a", encoding="utf-8")
        except OSError as e:
            if sys.stderr.isatty():
                print(f"[branchchat] Cannot open log file {log_file}: {e}", file=sys.stderr)
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def setup_logging(config: LoggingConfig | None = None) -> logging.Handler | None:
    """Install the ``branchchat`` handler once and return it.

    Later calls only adjust the level. Returns None when there is nowhere to
    log (no file and no terminal).
    """
    global _installed
    level = resolve_level(config)
    logger.setLevel(level)
    if _installed is not None:
        _installed.setLevel(level)
        return _installed

    handler = _open_handler(resolve_log_file(config))
    if handler is None:
        return None
    handler.setLevel(level)
    handler.setFormatter(ComponentFormatter())
    logger.addHandler(handler)
    _installed = handler
    return handler


def reset_logging() -> None:
    """Remove and close the installed handler."""
    global _installed
    if _installed is not None:
        logger.removeHandler(_installed)
        _installed.close()
        _installed = None
    logger.setLevel(logging.NOTSET)


def get_logger(name: str | None = None) -> logging.Logger:
    """``branchchat`` logger, or its child ``name`` (e.g. "tree", "storage")."""
    return logger.getChild(name) if name else logger
