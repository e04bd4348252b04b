"""Build configuration model.

The configuration is built once at process start and passed explicitly to
every component. Values are layered: field defaults, then an optional YAML
file, then environment variables, then CLI overrides.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, Field, field_validator

from kernelsmith.models.patch import ConflictPolicy
from kernelsmith.models.repository import RepositorySpec, StaleDirPolicy

_TRUE_VALUES = {"y", "yes", "true", "1", "on"}
_FALSE_VALUES = {"n", "no", "false", "0", "off", ""}


class LtoMode(str, Enum):
    """Link-time optimization mode."""

    FULL = "full"
    THIN = "thin"
    NONE = "none"

    @property
    def config_key(self) -> str:
        """Kconfig symbol enabling this mode."""
        return {
            LtoMode.FULL: "CONFIG_LTO_CLANG_FULL",
            LtoMode.THIN: "CONFIG_LTO_CLANG_THIN",
            LtoMode.NONE: "CONFIG_LTO_NONE",
        }[self]


class CleanPolicy(str, Enum):
    """Whether the kernel output directory is wiped before compiling."""

    AUTO = "auto"  # Reuse if present, warn
    ALWAYS = "always"
    NEVER = "never"


# Environment variable -> field name
ENV_FIELDS: dict[str, str] = {
    "BUILD": "build_id",
    "PIXEL8A": "device_profile",
    "LTO_TYPE": "lto",
    "ZIP_PREFIX": "zip_prefix",
    "CLANG_PATH": "clang_path",
    "ARM64_TOOLCHAIN": "arm64_toolchain",
    "ARM32_TOOLCHAIN": "arm32_toolchain",
    "KERNEL_DIR": "kernel_dir",
    "CONFIG_FILE": "config_file",
    "OUT_DIR": "out_dir",
    "RESET_COMMIT": "reset_commit",
    "THREADS": "threads",
    "BUILD_CLEAN": "clean",
    "RETRY": "retry",
    "REPO_DEPTH": "repo_depth",
    "KSUN_BRANCH": "ksu_branch",
    "ANYKERNEL_DIR": "anykernel_dir",
    "ANYKERNEL_BRANCH": "anykernel_branch",
    "ANYKERNEL_REPO": "anykernel_repo",
    "SUSFS_REPO": "susfs_repo",
    "SUSFS_BRANCH": "susfs_branch",
    "PATCHES_REPO": "patches_repo",
    "PATCHES_BRANCH": "patches_branch",
    "BUILDS_DIR": "builds_dir",
    "LOCALVERSION": "localversion",
    "GIT_SHORT_SHA": "short_sha",
    "PARALLEL_CLONES": "parallel_clones",
    "PATCH_CONFLICT": "patch_conflict",
    "ENABLE_BBG": "enable_bbg",
}


def _default_threads() -> int:
    return os.cpu_count() or 1


class BuildConfig(BaseModel):
    """Complete, immutable build configuration."""

    build_id: str = Field(default="dev", description="Build identifier, replaced by the derived version")
    device_profile: bool = Field(default=True, description="Apply the Pixel 8a (Tensor G3) fragment")
    lto: LtoMode = Field(default=LtoMode.THIN)
    zip_prefix: str = Field(default="AK3-A14-6.1.155-KSUN")

    # Toolchain
    clang_path: Path = Field(default=Path("/mnt/Android/clang-22/bin"))
    arm64_toolchain: str = Field(
        default="/mnt/Android/new_kernel_ksun/arm-gnu-toolchain-14.3.rel1-x86_64-aarch64-none-linux-gnu"
        "/bin/aarch64-none-linux-gnu-"
    )
    arm32_toolchain: str = Field(
        default="/mnt/Android/new_kernel_ksun/arm-gnu-toolchain-14.3.rel1-x86_64-arm-none-eabi"
        "/bin/arm-none-eabi-"
    )
    required_tools: list[str] = Field(
        default_factory=lambda: ["git", "make", "clang", "ccache", "patch", "curl", "bash"]
    )

    # Kernel tree, relative to the work directory
    kernel_dir: Path = Field(default=Path("common"))
    config_file: Path = Field(
        default=Path("arch/arm64/configs/gki_defconfig"),
        description="Defconfig path relative to the kernel directory",
    )
    defconfig: str = Field(default="gki_defconfig")
    out_dir: Path = Field(default=Path("out"), description="Output directory relative to the kernel directory")
    reset_commit: str = Field(default="67d6b8170", description="Known-good kernel revision")
    threads: int = Field(default_factory=_default_threads, ge=1)
    clean: CleanPolicy = Field(default=CleanPolicy.ALWAYS)

    # Network
    retry: int = Field(default=3, ge=1, description="Attempts for transient network operations")
    repo_depth: int = Field(default=1, ge=0, description="Shallow clone depth, 0 for full history")
    parallel_clones: bool = Field(default=False)
    stale_dir: StaleDirPolicy | None = Field(
        default=None, description="Policy for dependency dirs without .git; derived from clean when unset"
    )

    # Dependencies
    ksu_branch: str = Field(default="next-susfs")
    ksu_dir: str = Field(default="KernelSU-Next")
    ksu_setup_url: str = Field(
        default="https://raw.githubusercontent.com/pershoot/KernelSU-Next/refs/heads/{branch}/kernel/setup.sh"
    )
    anykernel_dir: str = Field(default="AnyKernel3-p8a")
    anykernel_branch: str = Field(default="gki-2.0")
    anykernel_repo: str = Field(default="https://github.com/deepongi-labs/AnyKernel3-p8a")
    susfs_repo: str = Field(default="https://gitlab.com/pershoot/susfs4ksu.git")
    susfs_branch: str = Field(default="gki-android14-6.1-lts-dev")
    susfs_dir: str = Field(default="susfs4ksu")
    patches_repo: str = Field(default="https://github.com/infectedmushi/kernel_patches")
    patches_branch: str = Field(default="main")
    patches_dir: str = Field(default="kernel_patches")

    # Patches
    susfs_patches: list[str] = Field(
        default_factory=lambda: [
            "50_add_susfs_in_gki-android14-6.1.patch",
            "60_scope-minimized_manual_hooks.patch",
            "70_modules_no-mmio_tracepoints.patch",
        ]
    )
    extra_patches: list[str] = Field(
        default_factory=lambda: ["fix-clidr-uninitialized.patch"],
        description="Optional patches relative to the work directory",
    )
    patch_conflict: ConflictPolicy = Field(default=ConflictPolicy.SOFT)
    enable_bbg: bool = Field(default=True, description="Integrate Baseband-guard")
    bbg_setup_url: str = Field(default="https://raw.githubusercontent.com/vc-teahouse/Baseband-guard/main/setup.sh")

    # Packaging
    builds_dir: Path = Field(default=Path("builds/6.1.155"))
    localversion: str = Field(default="-deepongi")
    short_sha: str | None = Field(default=None, description="Injected short revision for the build label")

    model_config = {"frozen": True}

    @field_validator("device_profile", "parallel_clones", "enable_bbg", mode="before")
    @classmethod
    def _parse_flag(cls, value: Any) -> Any:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
        return value

    @field_validator("lto", "clean", "patch_conflict", mode="before")
    @classmethod
    def _lowercase_choice(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("short_sha", mode="before")
    @classmethod
    def _blank_sha_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @classmethod
    def from_yaml(cls, path: Path) -> "BuildConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @staticmethod
    def env_values(environ: Mapping[str, str]) -> dict[str, str]:
        """Pick recognized variables out of an environment mapping."""
        return {field: environ[key] for key, field in ENV_FIELDS.items() if key in environ}

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "BuildConfig":
        """Build a configuration from defaults and an environment mapping."""
        return cls.model_validate(cls.env_values(environ))

    @classmethod
    def load(
        cls,
        yaml_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> "BuildConfig":
        """Layer defaults, YAML, environment and explicit overrides."""
        data: dict[str, Any] = {}
        if yaml_path is not None:
            with open(yaml_path) as f:
                data.update(yaml.safe_load(f) or {})
        if environ is not None:
            data.update(cls.env_values(environ))
        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(data)

    def merged(self, **overrides: Any) -> "BuildConfig":
        """Return a validated copy with some fields replaced."""
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return BuildConfig.model_validate(data)

    @property
    def effective_stale_dir(self) -> StaleDirPolicy:
        """Stale-directory policy, falling back to the clean policy."""
        if self.stale_dir is not None:
            return self.stale_dir
        return StaleDirPolicy.RECLONE if self.clean == CleanPolicy.ALWAYS else StaleDirPolicy.REUSE

    def kernel_path(self, workdir: Path) -> Path:
        return workdir / self.kernel_dir

    def config_path(self, workdir: Path) -> Path:
        return self.kernel_path(workdir) / self.config_file

    def out_path(self, workdir: Path) -> Path:
        return self.kernel_path(workdir) / self.out_dir

    def image_path(self, workdir: Path) -> Path:
        """Compiled kernel image location."""
        return self.out_path(workdir) / "arch" / "arm64" / "boot" / "Image"

    def ksu_setup_script(self) -> str:
        return self.ksu_setup_url.format(branch=self.ksu_branch)

    def repositories(self, workdir: Path) -> list[RepositorySpec]:
        """Dependency repositories reconciled in the prepare phase."""
        return [
            RepositorySpec(
                remote_url=self.susfs_repo,
                local_path=workdir / self.susfs_dir,
                branch=self.susfs_branch,
                shallow_depth=self.repo_depth,
            ),
            RepositorySpec(
                remote_url=self.anykernel_repo,
                local_path=workdir / self.anykernel_dir,
                branch=self.anykernel_branch,
                shallow_depth=self.repo_depth,
            ),
            RepositorySpec(
                remote_url=self.patches_repo,
                local_path=workdir / self.patches_dir,
                branch=self.patches_branch,
                shallow_depth=self.repo_depth,
            ),
        ]
