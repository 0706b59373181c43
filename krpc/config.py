"""Reading ``key = value`` configuration files."""

from __future__ import annotations

import os
from typing import Union

PathLike = Union[str, "os.PathLike[str]"]


def _trim(text: str) -> str:
    """Strip leading and trailing spaces; text made only of spaces is kept as is."""
    stripped = text.strip(" ")
    return stripped if stripped else text


class Config:
    """Settings read from a configuration file of ``key = value`` lines.

    Lines starting with ``#`` and lines without ``=`` are ignored.  Only
    spaces are trimmed around keys and values.  When a key appears more
    than once, the first value wins.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def load_file(self, path: PathLike) -> None:
        """Read settings from ``path``; raises ``OSError`` if it cannot be opened."""
        with open(path, encoding="utf-8", newline="\n") as handle:
            for raw in handle:
                line = _trim(raw)
                if not line or line.startswith("#"):
                    continue
                key, separator, rest = line.partition("=")
                if not separator:
                    continue
                value = rest.split("\n", 1)[0]
                self._entries.setdefault(_trim(key), _trim(value))

    def load(self, key: str) -> str:
        """Return the value for ``key``, or an empty string if it is unknown."""
        return self._entries.get(key, "")