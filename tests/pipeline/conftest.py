"""Fixtures for pipeline tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from kernelsmith.builder import KernelBuild
from kernelsmith.models.config import BuildConfig


@pytest.fixture
def workdir(temp_dir: Path) -> Path:
    """A work directory holding a minimal kernel tree."""
    kernel = temp_dir / "common"
    (kernel / "arch" / "arm64" / "configs").mkdir(parents=True)
    (kernel / "arch" / "arm64" / "configs" / "gki_defconfig").write_text(
        "CONFIG_LOCALVERSION_AUTO=y\nCONFIG_LTO_CLANG_FULL=y\n"
    )
    (kernel / "security").mkdir()
    (kernel / "Makefile").write_text("VERSION = 6\n")
    (temp_dir / "clang" / "bin").mkdir(parents=True)
    return temp_dir


@pytest.fixture
def config(workdir: Path) -> BuildConfig:
    return BuildConfig(
        clang_path=workdir / "clang" / "bin",
        threads=4,
        short_sha="1a2b3c4",
        zip_prefix="AK3-TEST",
    )


@pytest.fixture
def kernel_build(config: BuildConfig, workdir: Path) -> KernelBuild:
    return KernelBuild(config, workdir, env={"PATH": "/usr/bin:/bin"})
