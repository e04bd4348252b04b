"""Patch application models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field


class PatchProbe(str, Enum):
    """Result of the non-mutating applicability probe."""

    WOULD_APPLY = "would_apply"
    ALREADY_APPLIED = "already_applied"
    CONFLICT = "conflict"


class PatchOutcome(str, Enum):
    """Result of ``PatchApplier.apply``."""

    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"


class ConflictPolicy(str, Enum):
    """How a patch that neither applies nor reverses is treated."""

    SOFT = "soft"  # Warn and report ALREADY_APPLIED
    STRICT = "strict"  # Raise PatchConflictError


class PatchSpec(BaseModel):
    """A unified diff and the tree it applies to."""

    diff_file: Path
    working_root: Path
    strip_components: int = Field(default=1, ge=0)

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        return self.diff_file.name

    def patch_args(self, *extra: str) -> list[str]:
        """Build a ``patch`` invocation reading the diff from file."""
        diff = self.diff_file if self.diff_file.is_absolute() else self.diff_file.resolve()
        return ["patch", f"-p{self.strip_components}", *extra, "-i", str(diff)]
