"""Tests for individual build stages with scripted collaborators."""

from __future__ import annotations

import subprocess
import zipfile
from pathlib import Path

import pytest

from kernelsmith.builder import KernelBuild
from kernelsmith.errors import CompileError, PackagingError, PreconditionError, RepositoryError
from kernelsmith.kconfig import ConfigFile
from kernelsmith.kconfig import profiles
from kernelsmith.models.config import BuildConfig
from kernelsmith.models.stage import StageStatus
from kernelsmith.pipeline import stages


class FakeProcess:
    """Stands in for make; writes the image on success."""

    def __init__(self, image: Path, returncode: int = 0) -> None:
        self.image = image
        self.returncode = returncode
        self.calls: list[list[str]] = []

    def __call__(self, cmd, cwd, env):
        self.calls.append(list(cmd))
        if self.returncode == 0:
            self.image.parent.mkdir(parents=True, exist_ok=True)
            self.image.write_bytes(b"kernel")
        return subprocess.CompletedProcess(cmd, self.returncode)


def defconfig_lines(config: BuildConfig, workdir: Path) -> list[str]:
    return ConfigFile.read(config.config_path(workdir)).texts()


class TestConfigureStages:
    """Stages that edit the defconfig."""

    def test_device_profile(self, kernel_build: KernelBuild, config: BuildConfig, workdir: Path) -> None:
        """Test the Pixel 8a fragment is appended once."""
        ctx = kernel_build.context()
        stages.device_profile(ctx)
        stages.device_profile(ctx)

        lines = defconfig_lines(config, workdir)
        for line in profiles.PIXEL8A:
            assert lines.count(line) == 1

    def test_lto_replaces_other_modes(self, kernel_build: KernelBuild, config: BuildConfig, workdir: Path) -> None:
        """Test lto replaces other modes."""
        ctx = kernel_build.context()
        assert stages.lto(ctx) == "CONFIG_LTO_CLANG_THIN"
        stages.lto(ctx)

        lines = defconfig_lines(config, workdir)
        assert "CONFIG_LTO_CLANG_FULL=y" not in lines
        assert lines.count("CONFIG_LTO_CLANG_THIN=y") == 1

    def test_kernel_config(self, kernel_build: KernelBuild, config: BuildConfig, workdir: Path) -> None:
        """Test kernel config edits are stable across runs."""
        android = workdir / "common" / "android"
        android.mkdir()
        (android / "abi_gki_protected_exports_aarch64").write_text("")

        ctx = kernel_build.context()
        stages.kernel_config(ctx)
        first = defconfig_lines(config, workdir)
        stages.kernel_config(ctx)

        lines = defconfig_lines(config, workdir)
        assert lines == first
        assert "CONFIG_LOCALVERSION_AUTO=n" in lines
        assert "CONFIG_LOCALVERSION_AUTO=y" not in lines
        assert 'CONFIG_LOCALVERSION="-deepongi"' in lines
        assert "CONFIG_KSU=y" in lines
        assert not list(android.iterdir())

    def test_missing_defconfig(self, kernel_build: KernelBuild, config: BuildConfig, workdir: Path) -> None:
        """Test missing defconfig."""
        config.config_path(workdir).unlink()
        with pytest.raises(PreconditionError):
            stages.lto(kernel_build.context())


class TestValidate:
    """Tests for the validate stage."""

    def test_missing_clang(self, workdir: Path) -> None:
        """Test missing clang."""
        build = KernelBuild(BuildConfig(clang_path=workdir / "nope"), workdir)
        with pytest.raises(PreconditionError, match="Clang path"):
            stages.validate(build.context())

    def test_missing_tools(self, kernel_build: KernelBuild) -> None:
        """Test missing tools."""
        build = KernelBuild(
            kernel_build.config.merged(required_tools=["definitely-not-a-real-tool"]),
            kernel_build.workdir,
            env={"PATH": ""},
        )
        with pytest.raises(PreconditionError, match="definitely-not-a-real-tool") as exc:
            stages.validate(build.context())
        assert exc.value.details["missing"] == ["definitely-not-a-real-tool"]

    def test_clang_first_on_path(self, config: BuildConfig) -> None:
        """Test clang first on path."""
        env = stages.toolchain_env(config, {"PATH": "/usr/bin"})
        assert env["PATH"].split(":")[0] == str(config.clang_path)


def clone_runner(with_git: bool):
    async def runner(cmd, cwd=None, env=None):
        dest = Path(cmd[-1])
        dest.mkdir(parents=True, exist_ok=True)
        if with_git:
            (dest / ".git").mkdir(exist_ok=True)
        return subprocess.CompletedProcess(cmd, 0, "", "")
    return runner


class TestRepositoriesStage:
    """Tests for the repositories stage postconditions."""

    @pytest.mark.asyncio
    async def test_cloned_repositories(self, config: BuildConfig, workdir: Path) -> None:
        """Test every dependency is cloned and reported."""
        ctx = KernelBuild(config, workdir, runner=clone_runner(with_git=True)).context()
        detail = await stages.repositories(ctx)
        assert detail == "susfs4ksu: cloned, AnyKernel3-p8a: cloned, kernel_patches: cloned"

    @pytest.mark.asyncio
    async def test_clone_without_git_metadata_fails(self, config: BuildConfig, workdir: Path) -> None:
        """Test a clone that leaves no .git is rejected."""
        ctx = KernelBuild(config, workdir, runner=clone_runner(with_git=False)).context()
        with pytest.raises(RepositoryError, match="has no .git"):
            await stages.repositories(ctx)

    @pytest.mark.asyncio
    async def test_reused_directories_need_no_git(self, config: BuildConfig, workdir: Path) -> None:
        """Test directories kept under the reuse policy pass without .git."""
        for name in (config.susfs_dir, config.anykernel_dir, config.patches_dir):
            (workdir / name).mkdir()
        build = KernelBuild(config.merged(clean="never"), workdir, runner=clone_runner(with_git=False))

        detail = await stages.repositories(build.context())

        assert detail.count("reused") == 3


class TestSetupScripts:
    """Stages that download and run setup scripts."""

    @pytest.mark.asyncio
    async def test_kernelsu(self, config: BuildConfig, workdir: Path) -> None:
        """Test the KernelSU setup script is piped to bash with the branch."""
        calls: list[list[str]] = []

        async def runner(cmd, cwd=None, env=None):
            calls.append(list(cmd))
            (cwd / config.ksu_dir).mkdir(exist_ok=True)
            return subprocess.CompletedProcess(cmd, 0, "", "")

        build = KernelBuild(config, workdir, runner=runner)
        assert await stages.kernelsu(build.context()) == "next-susfs"
        assert calls[0][:2] == ["bash", "-c"]
        assert "curl -LSs" in calls[0][2]
        assert calls[0][2].endswith("bash -s next-susfs")

    @pytest.mark.asyncio
    async def test_kernelsu_failure_after_retries(self, config: BuildConfig, workdir: Path) -> None:
        """Test kernelsu failure after retries."""
        attempts = 0

        async def runner(cmd, cwd=None, env=None):
            nonlocal attempts
            attempts += 1
            raise subprocess.CalledProcessError(22, cmd, "", "curl: (22) 404")

        async def no_sleep(delay: float) -> None:
            pass

        build = KernelBuild(config.merged(retry=2), workdir, runner=runner)
        build.retry.sleep = no_sleep
        with pytest.raises(RepositoryError, match="KernelSU-Next setup failed"):
            await stages.kernelsu(build.context())
        assert attempts == 2

    @pytest.mark.asyncio
    async def test_version(self, config: BuildConfig, workdir: Path) -> None:
        """Test the version stage stores the derived number."""
        (workdir / "common" / config.ksu_dir / ".git").mkdir(parents=True)

        async def runner(cmd, cwd=None, env=None):
            out = "1000\n" if cmd[1] == "rev-list" else ""
            return subprocess.CompletedProcess(cmd, 0, out, "")

        ctx = KernelBuild(config, workdir, runner=runner).context()
        assert await stages.version(ctx) == "11200"
        assert ctx.version == 11200


class TestCompileAndPackage:
    """Tests for the compile and package stages."""

    def test_compile_command(self, config: BuildConfig) -> None:
        """Test compile command."""
        cmd = stages.compile_command(config)
        assert cmd[:2] == ["make", "-j4"]
        assert "LLVM=1" in cmd
        assert "O=out" in cmd
        assert cmd[-2:] == ["gki_defconfig", "all"]

    def test_compile_success(self, config: BuildConfig, workdir: Path) -> None:
        """Test compile success."""
        process = FakeProcess(config.image_path(workdir))
        ctx = KernelBuild(config, workdir, process_runner=process).context()
        assert stages.compile_kernel(ctx).startswith("compiled in")
        assert process.calls[0][0] == "make"

    def test_compile_failure_reports_elapsed(self, config: BuildConfig, workdir: Path) -> None:
        """Test compile failure reports elapsed."""
        process = FakeProcess(config.image_path(workdir), returncode=2)
        ctx = KernelBuild(config, workdir, process_runner=process).context()
        with pytest.raises(CompileError, match="exit 2") as exc:
            stages.compile_kernel(ctx)
        assert exc.value.elapsed_seconds >= 0

    def test_package_requires_version(self, kernel_build: KernelBuild) -> None:
        """Test package requires version."""
        with pytest.raises(PackagingError, match="version"):
            stages.package(kernel_build.context())

    def test_package(self, kernel_build: KernelBuild, config: BuildConfig, workdir: Path) -> None:
        """Test packaging names the zip from prefix, label and version."""
        image = config.image_path(workdir)
        image.parent.mkdir(parents=True)
        image.write_bytes(b"kernel")
        template = workdir / config.anykernel_dir
        template.mkdir()
        (template / "anykernel.sh").write_text("#!/bin/sh\n")

        ctx = kernel_build.context()
        ctx.version = 11200
        name = stages.package(ctx)

        assert name.startswith("AK3-TEST-")
        assert name.endswith("-1a2b3c4-11200.zip")
        with zipfile.ZipFile(ctx.artifact) as archive:
            assert sorted(archive.namelist()) == ["Image", "anykernel.sh"]


class TestBuildRun:
    """Selected stages through KernelBuild.run."""

    @pytest.mark.asyncio
    async def test_configure_then_compile_then_package(
        self, config: BuildConfig, workdir: Path
    ) -> None:
        """Test a configure, compile and package run end to end."""
        (workdir / config.anykernel_dir).mkdir()
        (workdir / "common" / config.ksu_dir / ".git").mkdir(parents=True)

        async def runner(cmd, cwd=None, env=None):
            out = "1000" if cmd[1] == "rev-list" else ""
            return subprocess.CompletedProcess(cmd, 0, out, "")

        build = KernelBuild(
            config.merged(device_profile=False),
            workdir,
            runner=runner,
            process_runner=FakeProcess(config.image_path(workdir)),
        )
        report = await build.run(only=["device_profile", "lto", "version", "kernel_config", "compile", "package"])

        assert report.ok, report.error
        assert report.results[0].status == StageStatus.SKIPPED
        assert report.version == 11200
        assert report.artifact is not None
        assert Path(report.artifact).is_file()
        assert not (workdir / config.anykernel_dir / "Image").exists()
