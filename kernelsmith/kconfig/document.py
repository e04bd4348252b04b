"""Structured, order-preserving model of a line-oriented config file.

The file is parsed once into line records, mutated in memory and serialized
back. Records that are not touched are written out verbatim.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Iterator

_ASSIGNMENT = re.compile(r"^\s*([A-Za-z0-9_]+)=(.*)$")
_COMMENTED_ASSIGNMENT = re.compile(r"^\s*#\s*([A-Za-z0-9_]+)=(.*)$")


class LineKind(str, Enum):
    """Kind of a config file line."""

    BLANK = "blank"
    COMMENT = "comment"
    ASSIGNMENT = "assignment"


@dataclass(frozen=True)
class ConfigLine:
    """A single line of a config file.

    ``key`` and ``value`` are set for active assignments and for commented-out
    assignments such as ``# CONFIG_FOO=y``. ``ending`` is the line terminator
    as read (``\n``, ``\r\n`` or empty for a final unterminated line).
    """

    text: str
    kind: LineKind
    key: str | None = None
    value: str | None = None
    ending: str = "\n"

    @classmethod
    def parse(cls, text: str, ending: str = "\n") -> "ConfigLine":
        if not text.strip():
            return cls(text=text, kind=LineKind.BLANK, ending=ending)
        match = _COMMENTED_ASSIGNMENT.match(text)
        if match:
            return cls(text=text, kind=LineKind.COMMENT, key=match.group(1), value=match.group(2), ending=ending)
        if text.lstrip().startswith("#"):
            return cls(text=text, kind=LineKind.COMMENT, ending=ending)
        match = _ASSIGNMENT.match(text)
        if match:
            return cls(text=text, kind=LineKind.ASSIGNMENT, key=match.group(1), value=match.group(2), ending=ending)
        # Unrecognized syntax is kept as an opaque comment-like record
        return cls(text=text, kind=LineKind.COMMENT, ending=ending)

    @property
    def is_active(self) -> bool:
        return self.kind == LineKind.ASSIGNMENT


class ConfigFile:
    """Ordered list of config line records."""

    def __init__(self, lines: list[ConfigLine] | None = None) -> None:
        self.lines: list[ConfigLine] = list(lines or [])

    @classmethod
    def parse(cls, text: str) -> "ConfigFile":
        """Split on ``\\n`` only, keeping each line's terminator.

        Other characters Python treats as line boundaries (form feed,
        ``\\u2028`` and the like) stay inside the line text.
        """
        lines = []
        pieces = text.split("\n")
        for piece in pieces[:-1]:
            if piece.endswith("\r"):
                lines.append(ConfigLine.parse(piece[:-1], ending="\r\n"))
            else:
                lines.append(ConfigLine.parse(piece, ending="\n"))
        if pieces[-1]:
            lines.append(ConfigLine.parse(pieces[-1], ending=""))
        return cls(lines)

    @classmethod
    def read(cls, path: Path) -> "ConfigFile":
        with open(path, encoding="utf-8", errors="surrogateescape", newline="") as f:
            return cls.parse(f.read())

    def serialize(self) -> str:
        return "".join(line.text + line.ending for line in self.lines)

    def write(self, path: Path) -> None:
        with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
            f.write(self.serialize())

    @property
    def newline(self) -> str:
        """Terminator of the first terminated line, ``\\n`` by default."""
        for line in self.lines:
            if line.ending:
                return line.ending
        return "\n"

    def __iter__(self) -> Iterator[ConfigLine]:
        return iter(self.lines)

    def __len__(self) -> int:
        return len(self.lines)

    def texts(self) -> list[str]:
        return [line.text for line in self.lines]

    def contains_line(self, text: str) -> bool:
        """Exact, full-line literal match."""
        return any(line.text == text for line in self.lines)

    def active(self, key: str) -> list[ConfigLine]:
        """Active assignment lines for ``key``, in file order."""
        return [line for line in self.lines if line.is_active and line.key == key]

    def get(self, key: str) -> str | None:
        """Value of the last active assignment for ``key``."""
        matches = self.active(key)
        return matches[-1].value if matches else None

    def append(self, text: str) -> None:
        newline = self.newline
        if self.lines and not self.lines[-1].ending:
            # An unterminated last line would otherwise run into the new one
            self.lines[-1] = replace(self.lines[-1], ending=newline)
        self.lines.append(ConfigLine.parse(text, ending=newline))

    def remove_where(self, pattern: re.Pattern[str]) -> int:
        """Drop every line whose text matches ``pattern``; return the count."""
        kept = [line for line in self.lines if not pattern.search(line.text)]
        removed = len(self.lines) - len(kept)
        self.lines = kept
        return removed
