"""Logging for interaction-engine.

Every module logs through ``get_logger(__name__)``. All loggers hang off the
``interaction_engine`` logger, which owns a single stderr handler and does not
propagate, so hosts embedding the engine keep their own logging untouched.

Levels come from the environment:
    - INTERACTION_ENGINE_LOG_LEVEL: level for the whole engine (default: WARNING)
    - INTERACTION_ENGINE_LOG_LEVEL_<MODULE>: override for one module, e.g.
      INTERACTION_ENGINE_LOG_LEVEL_APPROVAL=DEBUG while debugging auto-approval
"""

from __future__ import annotations

import logging
import os
import sys
from typing import ClassVar

LOGGER_NAME = "interaction_engine"

ENV_PREFIX = "INTERACTION_ENGINE_LOG_LEVEL"

PLAIN_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"


class ColoredFormatter(logging.Formatter):
    """TTY formatter: colored level, engine-relative logger name."""

    COLORS: ClassVar[dict[str, str]] = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    DIM: ClassVar[str] = "\033[2m"
    RESET: ClassVar[str] = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        name = record.name.removeprefix(f"{LOGGER_NAME}.")
        timestamp = self.formatTime(record, "%H:%M:%S")
        return (
            f"{self.DIM}{timestamp}{self.RESET} {color}{record.levelname:<8}{self.RESET} "
            f"{name}:{record.funcName}:{record.lineno} - {record.getMessage()}"
        )


def _parse_level(value: str | None) -> int | None:
    if not value:
        return None
    level = logging.getLevelName(value.upper())
    return level if isinstance(level, int) else None


def _get_module_log_level(module_path: str) -> int | None:
    """Most specific module override for ``module_path``, if any.

    ``commands.status`` checks ``..._COMMANDS_STATUS`` before ``..._COMMANDS``.
    """
    parts = module_path.upper().replace(".", "_").split("_")
    for i in range(len(parts), 0, -1):
        level = _parse_level(os.getenv(f"{ENV_PREFIX}_{'_'.join(parts[:i])}"))
        if level is not None:
            return level
    return None


def _engine_logger() -> logging.Logger:
    engine_logger = logging.getLogger(LOGGER_NAME)
    if engine_logger.handlers:
        return engine_logger

    engine_logger.setLevel(_parse_level(os.getenv(ENV_PREFIX)) or logging.WARNING)
    engine_logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    if sys.stderr.isatty():
        handler.setFormatter(ColoredFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    engine_logger.addHandler(handler)
    return engine_logger


def get_logger(name: str | None = None) -> logging.Logger:
    """Logger for an engine module.

    Args:
        name: ``__name__`` of the calling module, a name relative to the
            engine package (``"approval"``), or None for the engine logger.
    """
    engine_logger = _engine_logger()
    if name is None or name == LOGGER_NAME:
        return engine_logger

    relative = name.removeprefix(f"{LOGGER_NAME}.")
    module_logger = logging.getLogger(f"{LOGGER_NAME}.{relative}")
    level = _get_module_log_level(relative)
    if level is not None:
        module_logger.setLevel(level)
    return module_logger


__all__ = ["LOGGER_NAME", "get_logger"]
