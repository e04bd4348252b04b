"""Idempotent edits on kernel defconfig files."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Iterable

from kernelsmith.errors import PreconditionError
from kernelsmith.kconfig.document import ConfigFile

logger = logging.getLogger(__name__)


def format_value(value: str | bool) -> str:
    """Format a toggle value.

    Booleans and ``y``/``n`` become bare ``y``/``n``; quote-delimited strings
    pass through unchanged; anything else is wrapped in double quotes.
    """
    if isinstance(value, bool):
        return "y" if value else "n"
    if value in ("y", "n"):
        return value
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value
    return f'"{value}"'


def toggle_pattern(key: str) -> re.Pattern[str]:
    """Match active or commented assignments of ``key``."""
    return re.compile(rf"^#?\s*{re.escape(key)}=")


class ConfigLineMutator:
    """Apply append-if-absent and toggle-replace edits to a config file.

    Used as a context manager, the file is read once on entry and written
    once on a clean exit. ``append_unique`` is not key-aware: it compares
    whole lines, so differently formatted assignments of one key are
    distinct. ``set_toggle`` is key-aware and leaves exactly one line.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.document: ConfigFile | None = None
        self.changed = False

    def __enter__(self) -> "ConfigLineMutator":
        self.load()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.save()

    def load(self) -> ConfigFile:
        if not self.path.is_file():
            raise PreconditionError(f"Config file not found: {self.path}", details={"path": str(self.path)})
        if not os.access(self.path, os.W_OK):
            raise PreconditionError(f"Config file not writable: {self.path}", details={"path": str(self.path)})
        self.document = ConfigFile.read(self.path)
        self.changed = False
        return self.document

    def save(self) -> None:
        if self.document is not None and self.changed:
            self.document.write(self.path)
            self.changed = False

    @property
    def doc(self) -> ConfigFile:
        if self.document is None:
            return self.load()
        return self.document

    def append_unique(self, line: str) -> bool:
        """Append ``line`` unless an identical line exists. Returns True if appended."""
        if self.doc.contains_line(line):
            return False
        self.doc.append(line)
        self.changed = True
        return True

    def set_toggle(self, key: str, value: str | bool) -> str:
        """Replace every assignment of ``key`` with one new line at the end.

        A file already holding exactly that line and no other assignment of
        ``key`` is left untouched, so repeated calls keep line order stable.
        """
        pattern = toggle_pattern(key)
        line = f"{key}={format_value(value)}"
        matching = [existing.text for existing in self.doc if pattern.search(existing.text)]
        if matching == [line]:
            return line

        removed = self.doc.remove_where(pattern)
        self.doc.append(line)
        self.changed = True
        if removed:
            logger.debug(f"Replaced {removed} line(s) for {key}")
        return line

    def remove_keys(self, pattern: str) -> int:
        """Remove active assignments whose key fully matches ``pattern``."""
        regex = re.compile(rf"^(?:{pattern})=")
        removed = self.doc.remove_where(regex)
        if removed:
            self.changed = True
        return removed

    def apply_fragment(self, lines: Iterable[str]) -> int:
        """``append_unique`` every line in order; return how many were added."""
        return sum(1 for line in lines if self.append_unique(line))


def append_unique(path: Path, line: str) -> bool:
    """Single-pass ``append_unique`` on a file."""
    with ConfigLineMutator(path) as mutator:
        return mutator.append_unique(line)


def set_toggle(path: Path, key: str, value: str | bool) -> str:
    """Single-pass ``set_toggle`` on a file."""
    with ConfigLineMutator(path) as mutator:
        return mutator.set_toggle(key, value)
