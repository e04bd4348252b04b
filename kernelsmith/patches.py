"""Idempotent-safe application of unified diffs."""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Iterable, Sequence

from kernelsmith.errors import PatchConflictError, PreconditionError
from kernelsmith.models.patch import ConflictPolicy, PatchOutcome, PatchProbe, PatchSpec

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

# Security-module sources shipped next to the patches
SUSFS_SOURCE_DIRS = ("fs", "include/linux")


def _run(cmd: Sequence[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(list(cmd), cwd=cwd, capture_output=True, text=True, check=False)


class PatchApplier:
    """Probe a patch without touching the tree, then commit it.

    The probe is tri-state. A forward dry run that succeeds means the patch
    would apply. Otherwise a reverse dry run tells an already-present patch
    apart from a genuine context mismatch. Conflicts are handled by policy:
    ``soft`` warns and reports ``ALREADY_APPLIED``, ``strict`` raises.
    """

    def __init__(self, conflict_policy: ConflictPolicy = ConflictPolicy.SOFT, runner: Runner = _run) -> None:
        self.conflict_policy = conflict_policy
        self._run = runner

    def _check(self, spec: PatchSpec) -> None:
        if not spec.diff_file.is_file():
            raise PreconditionError(f"Patch not found: {spec.diff_file}", details={"patch": str(spec.diff_file)})
        if not spec.working_root.is_dir():
            raise PreconditionError(
                f"Patch target not found: {spec.working_root}", details={"root": str(spec.working_root)}
            )

    def probe(self, spec: PatchSpec) -> PatchProbe:
        """Classify a patch against the tree without modifying it."""
        self._check(spec)
        forward = self._run(spec.patch_args("--dry-run", "--forward", "--batch"), cwd=spec.working_root)
        if forward.returncode == 0:
            return PatchProbe.WOULD_APPLY

        reverse = self._run(spec.patch_args("--dry-run", "--reverse", "--force", "--batch"), cwd=spec.working_root)
        if reverse.returncode == 0:
            return PatchProbe.ALREADY_APPLIED

        logger.debug(f"Forward dry run for {spec.name}:\n{(forward.stdout or '').strip()}")
        return PatchProbe.CONFLICT

    def apply(self, spec: PatchSpec) -> PatchOutcome:
        """Apply a patch once; re-invocation on a patched tree is a no-op."""
        probe = self.probe(spec)

        if probe == PatchProbe.WOULD_APPLY:
            result = self._run(spec.patch_args("--forward", "--batch"), cwd=spec.working_root)
            if result.returncode != 0:
                # Dry run passed, so this is not an idempotency signal
                raise PatchConflictError(
                    f"Patch {spec.name} failed after a clean dry run",
                    details={"patch": str(spec.diff_file), "output": (result.stdout or "").strip()},
                )
            logger.info(f"Applied patch: {spec.name}")
            return PatchOutcome.APPLIED

        if probe == PatchProbe.ALREADY_APPLIED:
            logger.warning(f"Patch already applied: {spec.name}")
            return PatchOutcome.ALREADY_APPLIED

        if self.conflict_policy == ConflictPolicy.STRICT:
            raise PatchConflictError(
                f"Patch {spec.name} does not apply and is not already present",
                details={"patch": str(spec.diff_file), "root": str(spec.working_root)},
            )
        logger.warning(f"Patch likely already applied or context mismatch: {spec.name}")
        return PatchOutcome.ALREADY_APPLIED

    def apply_all(self, specs: Iterable[PatchSpec]) -> dict[str, PatchOutcome]:
        """Apply patches in order, stopping at the first hard failure."""
        return {spec.name: self.apply(spec) for spec in specs}


def stage_patch_set(source_dir: Path, kernel_dir: Path, names: Iterable[str]) -> list[Path]:
    """Copy patch files and security-module sources into the kernel tree.

    Patches come from ``source_dir/kernel_patches``; the ``fs`` and
    ``include/linux`` source trees beside them are merged into the kernel.
    Returns the staged patch paths in order.
    """
    patch_root = source_dir / "kernel_patches"
    staged: list[Path] = []
    for name in names:
        src = patch_root / name
        if not src.is_file():
            raise PreconditionError(f"Patch not found in {patch_root}: {name}", details={"patch": str(src)})
        dest = kernel_dir / name
        shutil.copyfile(src, dest)
        staged.append(dest)

    for sub in SUSFS_SOURCE_DIRS:
        src_dir = patch_root / sub
        if src_dir.is_dir():
            shutil.copytree(src_dir, kernel_dir / sub, dirs_exist_ok=True)
        else:
            logger.debug(f"No {sub} sources in {patch_root}")

    return staged
