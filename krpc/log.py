"""Logging helpers for the framework."""

from __future__ import annotations

import logging
import sys
from types import TracebackType
from typing import Optional, Type

LOGGER_NAME = "krpc"
_logger = logging.getLogger(LOGGER_NAME)


class FatalError(RuntimeError):
    """Raised after a fatal message has been logged."""


def info(message: str) -> None:
    """Log ``message`` at INFO level."""
    _logger.info(message)


def warning(message: str) -> None:
    """Log ``message`` at WARNING level."""
    _logger.warning(message)


def error(message: str) -> None:
    """Log ``message`` at ERROR level."""
    _logger.error(message)


def fatal(message: str) -> None:
    """Log ``message`` at CRITICAL level and raise :class:`FatalError`."""
    _logger.critical(message)
    raise FatalError(message)


class _ColorFormatter(logging.Formatter):
    _COLORS = {
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[31m",
    }
    _RESET = "\033[0m"

    def __init__(self, fmt: str, color: bool) -> None:
        super().__init__(fmt)
        self._color = color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        code = self._COLORS.get(record.levelno) if self._color else None
        return f"{code}{text}{self._RESET}" if code else text


class RpcLogger:
    """Sends framework log messages to standard error while in use.

    Creating the object installs the handler; leaving the ``with`` block
    removes it and restores the previous level.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        stream = sys.stderr
        isatty = getattr(stream, "isatty", None)
        color = bool(isatty and isatty())
        safe_name = name.replace("%", "%%")
        self._handler = logging.StreamHandler(stream)
        self._handler.setFormatter(
            _ColorFormatter(f"%(levelname).1s %(asctime)s {safe_name}] %(message)s", color)
        )
        self._previous_level = _logger.level
        _logger.addHandler(self._handler)
        _logger.setLevel(logging.INFO)
        self._active = True

    def __enter__(self) -> "RpcLogger":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self._shutdown()

    def _shutdown(self) -> None:
        if not self._active:
            return
        self._active = False
        _logger.removeHandler(self._handler)
        _logger.setLevel(self._previous_level)
        self._handler.close()