"""CLI commands for kernelsmith."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from kernelsmith.builder import KernelBuild
from kernelsmith.errors import BuildError
from kernelsmith.kconfig import ConfigLineMutator
from kernelsmith.models.config import BuildConfig
from kernelsmith.models.patch import ConflictPolicy, PatchSpec
from kernelsmith.models.stage import PipelineReport, StageResult, StageStatus
from kernelsmith.patches import PatchApplier
from kernelsmith.pipeline.stages import STAGES

console = Console()

STATUS_STYLES = {
    StageStatus.SUCCEEDED: "green",
    StageStatus.SKIPPED: "dim",
    StageStatus.FAILED: "bold red",
    StageStatus.PENDING: "yellow",
}


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def load_config(config_path: str | None, **overrides) -> BuildConfig:
    try:
        return BuildConfig.load(
            Path(config_path) if config_path else None,
            environ=os.environ,
            overrides=overrides,
        )
    except ValidationError as e:
        console.print(f"[red]Invalid configuration:[/red]\n{e}")
        sys.exit(1)


def fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


@click.group()
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False),
              help="YAML configuration file")
@click.option("--workdir", "-C", default=".", type=click.Path(file_okay=False), help="Work directory")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, workdir: str, verbose: bool) -> None:
    """kernelsmith - Reproducible Android GKI kernel builds."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["workdir"] = Path(workdir)


def _print_report(report: PipelineReport) -> None:
    table = Table(title="Build Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("Status")
    table.add_column("Time", justify="right")
    table.add_column("Detail", style="dim")

    for result in report.results:
        style = STATUS_STYLES[result.status]
        table.add_row(
            result.name,
            f"[{style}]{result.status.value}[/{style}]",
            result.duration_formatted if result.status != StageStatus.PENDING else "-",
            result.detail or "",
        )

    console.print(table)


@main.command()
@click.option("--lto", type=click.Choice(["full", "thin", "none"]), default=None, help="LTO mode")
@click.option("--pixel8a/--no-pixel8a", "device_profile", default=None, help="Apply the Pixel 8a fragment")
@click.option("--clean", type=click.Choice(["auto", "always", "never"]), default=None, help="Output dir policy")
@click.option("--threads", "-j", type=int, default=None, help="Parallel make jobs")
@click.option("--parallel-clones/--sequential-clones", default=None, help="Clone dependencies concurrently")
@click.option("--strict-patches", is_flag=True, default=False, help="Fail on patch conflicts")
@click.option("--stage", "-s", "stages", multiple=True, type=click.Choice([s.name for s in STAGES]),
              help="Run only these stages (can repeat)")
@click.pass_context
def build(
    ctx: click.Context,
    lto: str | None,
    device_profile: bool | None,
    clean: str | None,
    threads: int | None,
    parallel_clones: bool | None,
    strict_patches: bool,
    stages: tuple[str, ...],
) -> None:
    """Run the build pipeline."""
    config = load_config(
        ctx.obj["config_path"],
        lto=lto,
        device_profile=device_profile,
        clean=clean,
        threads=threads,
        parallel_clones=parallel_clones,
        patch_conflict=ConflictPolicy.STRICT if strict_patches else None,
    )
    kernel_build = KernelBuild(config, ctx.obj["workdir"], env=os.environ)

    def on_stage(result: StageResult) -> None:
        if result.status == StageStatus.SUCCEEDED:
            console.print(f"[green]✓[/green] {result.name} [dim]({result.duration_formatted})[/dim]")

    report = asyncio.run(kernel_build.run(only=stages or None, on_stage=on_stage))
    _print_report(report)

    if not report.ok:
        fail(f"{report.failed_stage}: {report.error}")
    if report.artifact:
        console.print(f"[green]Output: {report.artifact}[/green]")
    console.print(f"[dim]Total {report.total_seconds:.0f}s[/dim]")


@main.command()
@click.option("--parallel", is_flag=True, help="Reconcile repositories concurrently")
@click.pass_context
def sync(ctx: click.Context, parallel: bool) -> None:
    """Reconcile dependency repositories with their remote branches."""
    config = load_config(ctx.obj["config_path"])
    kernel_build = KernelBuild(config, ctx.obj["workdir"], env=os.environ)

    try:
        with console.status("Reconciling repositories..."):
            results = asyncio.run(kernel_build.sync(parallel=parallel or None))
    except BuildError as e:
        fail(e.message)

    table = Table(title="Repositories")
    table.add_column("Repository", style="cyan")
    table.add_column("Outcome", style="green")
    for name, outcome in results.items():
        table.add_row(name, outcome)
    console.print(table)


@main.group()
def kconfig() -> None:
    """Edit a defconfig file."""


@kconfig.command("set")
@click.argument("file", type=click.Path(path_type=Path))
@click.argument("key")
@click.argument("value")
def kconfig_set(file: Path, key: str, value: str) -> None:
    """Replace every assignment of KEY with KEY=VALUE."""
    try:
        with ConfigLineMutator(file) as mutator:
            line = mutator.set_toggle(key, value)
    except BuildError as e:
        fail(e.message)
    click.echo(line)


@kconfig.command("append")
@click.argument("file", type=click.Path(path_type=Path))
@click.argument("lines", nargs=-1, required=True)
def kconfig_append(file: Path, lines: tuple[str, ...]) -> None:
    """Append LINES that are not already present verbatim."""
    try:
        with ConfigLineMutator(file) as mutator:
            added = mutator.apply_fragment(lines)
    except BuildError as e:
        fail(e.message)
    click.echo(f"{added} line(s) added, {len(lines) - added} already present")


@main.command()
@click.argument("diff_file", type=click.Path(path_type=Path))
@click.option("--root", "-d", default=".", type=click.Path(path_type=Path), help="Tree to patch")
@click.option("--strip", "-p", default=1, type=int, help="Leading path components to strip")
@click.option("--strict", is_flag=True, help="Fail when the patch conflicts")
def patch(diff_file: Path, root: Path, strip: int, strict: bool) -> None:
    """Apply DIFF_FILE unless it is already applied."""
    applier = PatchApplier(ConflictPolicy.STRICT if strict else ConflictPolicy.SOFT)
    try:
        outcome = applier.apply(PatchSpec(diff_file=diff_file, working_root=root, strip_components=strip))
    except BuildError as e:
        fail(e.message)
    click.echo(f"{diff_file.name}: {outcome.value}")


@main.command()
@click.argument("repo", required=False, type=click.Path(path_type=Path))
@click.pass_context
def version(ctx: click.Context, repo: Path | None) -> None:
    """Print the build number derived from REPO (default: KernelSU-Next)."""
    config = load_config(ctx.obj["config_path"])
    kernel_build = KernelBuild(config, ctx.obj["workdir"], env=os.environ)
    click.echo(asyncio.run(kernel_build.derive_version(repo)))


@main.command()
@click.pass_context
def label(ctx: click.Context) -> None:
    """Print the artifact label for a build made now."""
    config = load_config(ctx.obj["config_path"])
    kernel_build = KernelBuild(config, ctx.obj["workdir"], env=os.environ)
    click.echo(kernel_build.compose_label())


@main.command("stages")
def list_stages() -> None:
    """List pipeline stages in execution order."""
    table = Table(title="Pipeline")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Stage", style="cyan")
    table.add_column("Description")
    for i, stage in enumerate(STAGES, 1):
        table.add_row(str(i), stage.name, stage.description)
    console.print(table)


if __name__ == "__main__":
    main()
