"""Repository reconciliation models."""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, field_validator


class StaleDirPolicy(str, Enum):
    """What to do with a directory that exists but has no ``.git``."""

    RECLONE = "reclone"  # Remove the directory and clone afresh
    REUSE = "reuse"  # Keep the directory as-is, skip update
    FAIL = "fail"  # Refuse to guess


class ReconcileOutcome(str, Enum):
    """How a working tree was brought to its declared state."""

    UPDATED = "updated"
    CLONED = "cloned"
    RECLONED = "recloned"
    REUSED = "reused"


class RepositorySpec(BaseModel):
    """Declared state of a dependency working tree."""

    remote_url: str = Field(..., description="Clone URL of the remote repository")
    local_path: Path = Field(..., description="Working tree location")
    branch: str = Field(default="main")
    shallow_depth: int = Field(default=1, ge=0, description="Clone depth, 0 for full history")

    model_config = {"frozen": True}

    @field_validator("branch")
    @classmethod
    def _branch_not_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("branch must not be empty")
        return value

    @property
    def name(self) -> str:
        """Short display name (the directory name)."""
        return self.local_path.name

    @property
    def is_shallow(self) -> bool:
        return self.shallow_depth != 0

    @property
    def remote_ref(self) -> str:
        """Remote-tracking ref the tree is reset to."""
        return f"origin/{self.branch}"

    def clone_command(self) -> list[str]:
        """Build the ``git clone`` argument list."""
        cmd = ["git", "clone"]
        if self.is_shallow:
            cmd.extend(["--depth", str(self.shallow_depth)])
        cmd.extend(["-b", self.branch, self.remote_url, str(self.local_path)])
        return cmd
