"""Exception hierarchy for build failures.

Every fatal condition raised by the engine derives from ``BuildError`` so the
pipeline can stop on it uniformly. Patch non-applicability under the soft
conflict policy is not an error and never surfaces here.
"""

from __future__ import annotations

from typing import Any, Mapping


class BuildError(Exception):
    """Base class for fatal build failures."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})


class PreconditionError(BuildError):
    """A required tool, directory or file is missing."""


class RepositoryError(BuildError):
    """A git operation failed (after retries, where retried)."""


class PatchConflictError(BuildError):
    """A patch neither applies nor is already present (strict policy only)."""


class CompileError(BuildError):
    """The compiler toolchain returned non-zero."""

    def __init__(self, message: str, *, elapsed_seconds: float, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, details=details)
        self.elapsed_seconds = elapsed_seconds


class PackagingError(BuildError):
    """The compiled artifact or packaging template is missing."""
