"""Git-backed dependency management."""

from kernelsmith.sources.base import run_command
from kernelsmith.sources.git import RepositoryReconciler

__all__ = ["RepositoryReconciler", "run_command"]
