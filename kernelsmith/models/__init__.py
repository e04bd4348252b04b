"""Data models for kernelsmith."""

from kernelsmith.models.config import BuildConfig, CleanPolicy, LtoMode
from kernelsmith.models.patch import ConflictPolicy, PatchOutcome, PatchProbe, PatchSpec
from kernelsmith.models.repository import ReconcileOutcome, RepositorySpec, StaleDirPolicy
from kernelsmith.models.stage import PipelineReport, StageResult, StageStatus

__all__ = [
    # Build config
    "BuildConfig",
    "CleanPolicy",
    "LtoMode",
    # Repositories
    "RepositorySpec",
    "ReconcileOutcome",
    "StaleDirPolicy",
    # Patches
    "PatchSpec",
    "PatchProbe",
    "PatchOutcome",
    "ConflictPolicy",
    # Pipeline
    "StageResult",
    "StageStatus",
    "PipelineReport",
]
