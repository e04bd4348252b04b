"""Build stages, in execution order.

Each stage checks its preconditions, does its work through the context's
collaborators and asserts what the next stage relies on. Stages return a
short summary string for the report.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
import time

from kernelsmith.errors import CompileError, PackagingError, PreconditionError, RepositoryError
from kernelsmith.kconfig import ConfigLineMutator
from kernelsmith.kconfig import profiles
from kernelsmith.models.config import BuildConfig
from kernelsmith.models.patch import PatchOutcome, PatchSpec
from kernelsmith.models.repository import ReconcileOutcome
from kernelsmith.packaging import package_artifact
from kernelsmith.patches import stage_patch_set
from kernelsmith.pipeline import tree
from kernelsmith.pipeline.base import BuildContext, Pipeline, Stage
from kernelsmith.sources.base import describe_failure
from kernelsmith.sources.git import has_git_metadata
from kernelsmith.versioning import artifact_name

logger = logging.getLogger(__name__)


def toolchain_env(config: BuildConfig, base_env: dict[str, str]) -> dict[str, str]:
    """Child-process environment with clang first on PATH."""
    env = dict(base_env)
    env["PATH"] = os.pathsep.join(p for p in (str(config.clang_path), base_env.get("PATH", "")) if p)
    return env


def validate(ctx: BuildContext) -> str:
    config = ctx.config
    if not config.clang_path.is_dir():
        raise PreconditionError(f"Clang path not found: {config.clang_path}")
    ctx.env.update(toolchain_env(config, ctx.env))

    missing = [tool for tool in config.required_tools if shutil.which(tool, path=ctx.env["PATH"]) is None]
    if missing:
        raise PreconditionError(f"Missing tools: {' '.join(missing)}", details={"missing": missing})
    return f"{len(config.required_tools)} tools found"


async def repositories(ctx: BuildContext) -> str:
    specs = ctx.config.repositories(ctx.workdir)
    outcomes = await ctx.reconciler.reconcile_all(specs, parallel=ctx.config.parallel_clones)
    for spec in specs:
        if not spec.local_path.is_dir():
            raise RepositoryError(f"{spec.name} missing after reconciliation")
        if outcomes[spec.name] != ReconcileOutcome.REUSED and not has_git_metadata(spec.local_path):
            raise RepositoryError(f"{spec.name} has no .git after reconciliation")
    ctx.notes["repositories"] = outcomes
    return ", ".join(f"{name}: {outcome.value}" for name, outcome in outcomes.items())


async def kernel_source(ctx: BuildContext) -> str:
    kernel = ctx.kernel_path
    if not kernel.is_dir():
        raise PreconditionError(f"Kernel directory not found: {kernel}")
    await ctx.reconciler.reset_to_revision(kernel, ctx.config.reset_commit)
    ksu = kernel / ctx.config.ksu_dir
    if ksu.exists():
        shutil.rmtree(ksu)
    return f"reset to {ctx.config.reset_commit}"


def device_profile(ctx: BuildContext) -> str:
    with ConfigLineMutator(ctx.config_path) as mutator:
        added = mutator.apply_fragment(profiles.PIXEL8A)
    return f"{added} line(s) added"


def lto(ctx: BuildContext) -> str:
    key = ctx.config.lto.config_key
    with ConfigLineMutator(ctx.config_path) as mutator:
        mutator.remove_keys(profiles.LTO_KEYS_PATTERN)
        mutator.append_unique(f"{key}=y")
    return key


async def _run_setup_script(ctx: BuildContext, url: str, *args: str) -> None:
    script = f"set -o pipefail; curl -LSs {shlex.quote(url)} | bash -s {' '.join(shlex.quote(a) for a in args)}"
    await ctx.retry.run(
        lambda: ctx.runner(["bash", "-c", script], cwd=ctx.kernel_path, env=ctx.env),
        description=f"setup script {url}",
    )


async def kernelsu(ctx: BuildContext) -> str:
    try:
        await _run_setup_script(ctx, ctx.config.ksu_setup_script(), ctx.config.ksu_branch)
    except subprocess.CalledProcessError as e:
        raise RepositoryError(f"KernelSU-Next setup failed: {describe_failure(e)}") from e
    if not (ctx.kernel_path / ctx.config.ksu_dir).is_dir():
        raise RepositoryError(f"{ctx.config.ksu_dir} missing after setup")
    return ctx.config.ksu_branch


async def version(ctx: BuildContext) -> str:
    ctx.version = await ctx.deriver.derive(ctx.kernel_path / ctx.config.ksu_dir)
    return str(ctx.version)


async def bbg(ctx: BuildContext) -> str:
    tree.require_kernel_top_level(ctx.kernel_path)
    try:
        await _run_setup_script(ctx, ctx.config.bbg_setup_url)
    except subprocess.CalledProcessError as e:
        raise RepositoryError(f"Baseband-guard setup failed: {describe_failure(e)}") from e
    with ConfigLineMutator(ctx.config_path) as mutator:
        mutator.apply_fragment(profiles.BBG)
    changed = tree.add_lsm_default(ctx.kernel_path / "security" / "Kconfig")
    return "LSM default updated" if changed else "LSM default unchanged"


def _apply(ctx: BuildContext, names: list[str]) -> dict[str, PatchOutcome]:
    specs = [PatchSpec(diff_file=ctx.kernel_path / name, working_root=ctx.kernel_path) for name in names]
    return ctx.applier.apply_all(specs)


def _summarize(outcomes: dict[str, PatchOutcome]) -> str:
    applied = sum(1 for o in outcomes.values() if o == PatchOutcome.APPLIED)
    return f"{applied} applied, {len(outcomes) - applied} already present"


def susfs_patches(ctx: BuildContext) -> str:
    source = ctx.workdir / ctx.config.susfs_dir
    if not source.is_dir():
        raise PreconditionError(f"SUSFS repository not found: {source}")
    staged = stage_patch_set(source, ctx.kernel_path, ctx.config.susfs_patches)
    outcomes = _apply(ctx, [path.name for path in staged])
    ctx.notes["susfs_patches"] = outcomes
    return _summarize(outcomes)


def extra_patches(ctx: BuildContext) -> str:
    present = []
    for name in ctx.config.extra_patches:
        src = ctx.workdir / name
        if not src.is_file():
            logger.warning(f"{name} not found; skipping")
            continue
        shutil.copyfile(src, ctx.kernel_path / src.name)
        present.append(src.name)
    if not present:
        return "none present"
    outcomes = _apply(ctx, present)
    ctx.notes["extra_patches"] = outcomes
    return _summarize(outcomes)


def kernel_config(ctx: BuildContext) -> str:
    removed = tree.remove_abi_exports(ctx.kernel_path)
    if removed:
        logger.info(f"Removed {removed} ABI protected-export list(s)")

    with ConfigLineMutator(ctx.config_path) as mutator:
        mutator.set_toggle("CONFIG_LOCALVERSION_AUTO", "n")
        mutator.set_toggle("CONFIG_LOCALVERSION", f'"{ctx.config.localversion}"')
        added = mutator.apply_fragment(profiles.kernel_fragments())

    if not ctx.config_path.is_file():
        raise PreconditionError(f"Config file missing after configure: {ctx.config_path}")
    return f"{added} line(s) added"


def prepare_build(ctx: BuildContext) -> str:
    kernel = ctx.kernel_path
    if not tree.strip_dirty_check(kernel / "scripts" / "setlocalversion"):
        logger.warning("setlocalversion not modified")
    tree.drop_check_defconfig(kernel / "build.config.gki")
    return tree.apply_clean_policy(ctx.config.out_path(ctx.workdir), ctx.config.clean)


def compile_command(config: BuildConfig) -> list[str]:
    return [
        "make",
        f"-j{config.threads}",
        "LLVM_IAS=1",
        "LLVM=1",
        "ARCH=arm64",
        "CLANG_TRIPLE=aarch64-linux-gnu-",
        f"CROSS_COMPILE_COMPAT={config.arm32_toolchain}",
        f"CROSS_COMPILE={config.arm64_toolchain}",
        "CC=ccache clang",
        "LD=ld.lld",
        "HOSTLD=ld.lld",
        f"O={config.out_dir}",
        config.defconfig,
        "all",
    ]


def compile_kernel(ctx: BuildContext) -> str:
    cmd = compile_command(ctx.config)
    start = time.monotonic()
    try:
        result = ctx.process_runner(cmd, cwd=ctx.kernel_path, env=ctx.env)
    except OSError as e:
        elapsed = time.monotonic() - start
        raise CompileError(f"Could not start make: {e}", elapsed_seconds=elapsed) from e
    elapsed = time.monotonic() - start

    if result.returncode != 0:
        raise CompileError(
            f"Kernel compilation failed (exit {result.returncode}) after {elapsed:.0f}s",
            elapsed_seconds=elapsed,
        )
    image = ctx.config.image_path(ctx.workdir)
    if not image.is_file():
        raise CompileError(f"Image missing after compilation: {image}", elapsed_seconds=elapsed)
    logger.info(f"Compiled in {elapsed:.0f}s")
    return f"compiled in {elapsed:.0f}s"


def package(ctx: BuildContext) -> str:
    if ctx.version is None:
        raise PackagingError("Build version was not derived")
    ctx.label = ctx.composer.compose()
    name = artifact_name(ctx.config.zip_prefix, ctx.label, ctx.version)
    ctx.artifact = package_artifact(
        ctx.config.image_path(ctx.workdir),
        ctx.workdir / ctx.config.anykernel_dir,
        ctx.workdir / ctx.config.builds_dir,
        name,
    )
    return name


STAGES: list[Stage] = [
    Stage("validate", validate, "Validating requirements"),
    Stage("repositories", repositories, "Setting up repositories"),
    Stage("kernel_source", kernel_source, "Preparing kernel source"),
    Stage("device_profile", device_profile, "Configuring Pixel 8a (Tensor G3)", enabled=lambda c: c.device_profile),
    Stage("lto", lto, "Configuring LTO"),
    Stage("kernelsu", kernelsu, "Installing KernelSU-Next"),
    Stage("version", version, "Deriving build number"),
    Stage("bbg", bbg, "Adding Baseband-guard", enabled=lambda c: c.enable_bbg),
    Stage("susfs_patches", susfs_patches, "Applying SUSFS patches"),
    Stage("extra_patches", extra_patches, "Applying additional patches"),
    Stage("kernel_config", kernel_config, "Tuning kernel config"),
    Stage("prepare_build", prepare_build, "Preparing build"),
    Stage("compile", compile_kernel, "Compiling kernel"),
    Stage("package", package, "Packaging"),
]


def default_pipeline() -> Pipeline:
    return Pipeline(STAGES)
