"""Process-wide framework state: command-line parsing and shared configuration."""

from __future__ import annotations

import getopt
import sys
import threading
from typing import ClassVar, Optional, Sequence

from .config import Config

USAGE = "usage: command -i <config file path>"


class UsageError(Exception):
    """The command line does not name a configuration file correctly."""

    def __init__(self, message: str = USAGE) -> None:
        super().__init__(message)


class Application:
    """Single shared instance holding the framework configuration."""

    _instance: ClassVar[Optional["Application"]] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self.config = Config()

    @classmethod
    def get_instance(cls) -> "Application":
        """Return the shared instance, creating it on first use."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance


def init(argv: Optional[Sequence[str]] = None) -> Config:
    """Parse ``-i <file>`` from ``argv`` (without program name) and load that file."""
    args = list(sys.argv[1:] if argv is None else argv)
    if not args:
        raise UsageError()
    try:
        options, _ = getopt.gnu_getopt(args, "i:")
    except getopt.GetoptError as exc:
        raise UsageError() from exc

    config_file = ""
    for _option, value in options:
        config_file = value
    if not config_file:
        raise UsageError()

    config = get_config()
    config.load_file(config_file)
    return config


def get_config() -> Config:
    """Return the shared configuration."""
    return Application.get_instance().config


def reset() -> None:
    """Drop the shared instance so the next use starts afresh."""
    with Application._lock:
        Application._instance = None