"""Application logging helpers."""

from __future__ import annotations

import logging as py_logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TextIO

LOG_LEVELS = {
    "DEBUG": py_logging.DEBUG,
    "INFO": py_logging.INFO,
    "WARN": py_logging.WARNING,
    "WARNING": py_logging.WARNING,
    "ERROR": py_logging.ERROR,
}
LOG_LEVEL_ENV = "STACKRUNNER_LOG_LEVEL"
DEFAULT_LOG_PATH = Path("~/.config/stackrunner/logs/stackrunner.log")
_FALLBACK_LOG_PATH = Path(".stackrunner/logs/stackrunner.log")
_FORMAT = "%(asctime)s %(levelname)s %(name)s:%(lineno)d %(threadName)s %(message)s"
_MAX_LOG_BYTES = 2 * 1024 * 1024
_LOG_BACKUPS = 3


def default_log_path() -> Path:
    try:
        resolved = DEFAULT_LOG_PATH.expanduser()
    except RuntimeError:
        resolved = (Path.cwd() / _FALLBACK_LOG_PATH).resolve()
    else:
        if not resolved.is_absolute():
            resolved = resolved.resolve()
    return resolved


def resolve_level(level: str | None) -> int:
    """Map a level name to a logging level; the environment wins over the argument."""
    raw = os.getenv(LOG_LEVEL_ENV, "").strip() or (level or "INFO")
    normalized = raw.upper()
    if normalized == "WARNING":
        normalized = "WARN"
    return LOG_LEVELS.get(normalized, py_logging.INFO)


def configure_logging(
    level: str = "INFO",
    stream: TextIO | None = None,
    *,
    log_file: str | Path | None = None,
) -> py_logging.Logger:
    resolved = resolve_level(level)

    logger = py_logging.getLogger("stackrunner")
    logger.setLevel(py_logging.DEBUG if log_file else resolved)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    formatter = py_logging.Formatter(_FORMAT)

    stream_handler = py_logging.StreamHandler(stream or sys.stderr)
    stream_handler.setLevel(resolved)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        try:
            log_path = Path(log_file).expanduser()
        except RuntimeError:
            log_path = Path(log_file)
        if not log_path.is_absolute():
            log_path = log_path.resolve()
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=_MAX_LOG_BYTES,
                backupCount=_LOG_BACKUPS,
                encoding="utf-8",
            )
        except OSError:
            logger.setLevel(resolved)
        else:
            file_handler.setLevel(py_logging.DEBUG)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger.propagate = False
    return logger
