"""Tests for patch probing and application."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest

from kernelsmith.errors import PatchConflictError, PreconditionError
from kernelsmith.models.patch import ConflictPolicy, PatchOutcome, PatchProbe, PatchSpec
from kernelsmith.patches import PatchApplier, stage_patch_set

requires_patch = pytest.mark.skipif(shutil.which("patch") is None, reason="patch executable not available")

ORIGINAL = "int a;\nint b;\nint c;\n"
PATCHED = "int a;\nint B;\nint c;\n"
DIFF = """\
--- a/hello.c
+++ b/hello.c
@@ -1,3 +1,3 @@
 int a;
-int b;
+int B;
 int c;
"""


@pytest.fixture
def tree(temp_dir: Path) -> Path:
    root = temp_dir / "common"
    root.mkdir()
    (root / "hello.c").write_text(ORIGINAL)
    return root


@pytest.fixture
def spec(tree: Path, temp_dir: Path) -> PatchSpec:
    diff = temp_dir / "50_hello.patch"
    diff.write_text(DIFF)
    return PatchSpec(diff_file=diff, working_root=tree)


@requires_patch
class TestPatchApplier:
    """Tests against the real patch executable."""

    def test_probe_does_not_modify_tree(self, spec: PatchSpec, tree: Path) -> None:
        """Test a dry-run patch check leaves the tree untouched."""
        assert PatchApplier().probe(spec) == PatchProbe.WOULD_APPLY
        assert (tree / "hello.c").read_text() == ORIGINAL

    def test_apply_then_already_applied(self, spec: PatchSpec, tree: Path) -> None:
        """Test apply then already applied."""
        applier = PatchApplier()

        assert applier.apply(spec) == PatchOutcome.APPLIED
        after_first = (tree / "hello.c").read_bytes()
        assert after_first == PATCHED.encode()

        assert applier.probe(spec) == PatchProbe.ALREADY_APPLIED
        assert applier.apply(spec) == PatchOutcome.ALREADY_APPLIED
        assert (tree / "hello.c").read_bytes() == after_first
        assert sorted(p.name for p in tree.iterdir()) == ["hello.c"]

    def test_conflict_soft(self, spec: PatchSpec, tree: Path) -> None:
        """Test a conflict under the soft policy is reported as already applied."""
        (tree / "hello.c").write_text("something\nelse\nentirely\n")
        applier = PatchApplier(ConflictPolicy.SOFT)

        assert applier.probe(spec) == PatchProbe.CONFLICT
        assert applier.apply(spec) == PatchOutcome.ALREADY_APPLIED
        assert (tree / "hello.c").read_text() == "something\nelse\nentirely\n"

    def test_conflict_strict(self, spec: PatchSpec, tree: Path) -> None:
        """Test a conflict under the strict policy raises."""
        (tree / "hello.c").write_text("something\nelse\nentirely\n")
        with pytest.raises(PatchConflictError, match="does not apply"):
            PatchApplier(ConflictPolicy.STRICT).apply(spec)

    def test_apply_all(self, spec: PatchSpec) -> None:
        """Test applying the same patch twice in one batch."""
        outcomes = PatchApplier().apply_all([spec, spec])
        assert outcomes == {"50_hello.patch": PatchOutcome.ALREADY_APPLIED}


class TestPatchPreconditions:
    """Tests that need no patch executable."""

    def test_missing_diff(self, tree: Path) -> None:
        """Test missing diff."""
        spec = PatchSpec(diff_file=tree / "nope.patch", working_root=tree)
        with pytest.raises(PreconditionError, match="Patch not found"):
            PatchApplier().apply(spec)

    def test_missing_root(self, spec: PatchSpec, temp_dir: Path) -> None:
        """Test missing root."""
        moved = PatchSpec(diff_file=spec.diff_file, working_root=temp_dir / "gone")
        with pytest.raises(PreconditionError, match="target not found"):
            PatchApplier().probe(moved)

    def test_patch_args(self, spec: PatchSpec) -> None:
        """Test patch argument construction."""
        args = spec.patch_args("--dry-run")
        assert args[:3] == ["patch", "-p1", "--dry-run"]
        assert args[-2:] == ["-i", str(spec.diff_file)]

    def test_real_apply_failure_after_clean_dry_run(self, spec: PatchSpec) -> None:
        """Test real apply failure after clean dry run."""
        def runner(cmd, cwd):
            code = 0 if "--dry-run" in cmd else 1
            return subprocess.CompletedProcess(cmd, code, "Hunk #1 FAILED", "")

        with pytest.raises(PatchConflictError, match="clean dry run"):
            PatchApplier(runner=runner).apply(spec)


class TestStagePatchSet:
    """Tests for copying patches and sources into the kernel tree."""

    def test_copies_patches_and_sources(self, temp_dir: Path, tree: Path) -> None:
        """Test copies patches and sources."""
        source = temp_dir / "susfs4ksu" / "kernel_patches"
        (source / "fs").mkdir(parents=True)
        (source / "include" / "linux").mkdir(parents=True)
        (source / "50_add_susfs.patch").write_text(DIFF)
        (source / "fs" / "susfs.c").write_text("// fs\n")
        (source / "include" / "linux" / "susfs.h").write_text("// h\n")

        staged = stage_patch_set(temp_dir / "susfs4ksu", tree, ["50_add_susfs.patch"])

        assert staged == [tree / "50_add_susfs.patch"]
        assert (tree / "fs" / "susfs.c").is_file()
        assert (tree / "include" / "linux" / "susfs.h").is_file()

    def test_missing_patch_raises(self, temp_dir: Path, tree: Path) -> None:
        """Test missing patch raises."""
        (temp_dir / "susfs4ksu" / "kernel_patches").mkdir(parents=True)
        with pytest.raises(PreconditionError):
            stage_patch_set(temp_dir / "susfs4ksu", tree, ["60_missing.patch"])
