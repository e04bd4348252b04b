"""Main KernelBuild class - unified interface for the build engine."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Callable, Iterable, Mapping

from kernelsmith.models.config import BuildConfig
from kernelsmith.models.stage import PipelineReport, StageResult
from kernelsmith.patches import PatchApplier
from kernelsmith.pipeline.base import BuildContext, Pipeline
from kernelsmith.pipeline.stages import default_pipeline
from kernelsmith.retry import RetryExecutor, RetryPolicy
from kernelsmith.sources.base import CommandRunner, run_command
from kernelsmith.sources.git import RepositoryReconciler
from kernelsmith.versioning import BuildLabelComposer, VersionDeriver


def _run_process(cmd: list[str], cwd: Path, env: Mapping[str, str]) -> subprocess.CompletedProcess:
    # Output streams straight to the terminal; compiles are long
    return subprocess.run(cmd, cwd=cwd, env=dict(env), check=False)


class KernelBuild:
    """Main interface for preparing, configuring and building a kernel."""

    def __init__(
        self,
        config: BuildConfig,
        workdir: str | Path,
        env: Mapping[str, str] | None = None,
        runner: CommandRunner = run_command,
        process_runner: Callable[..., subprocess.CompletedProcess] = _run_process,
    ) -> None:
        self.config = config
        self.workdir = Path(workdir)
        self.env = dict(env or {})
        self.runner = runner
        self.process_runner = process_runner

        self._retry: RetryExecutor | None = None
        self._reconciler: RepositoryReconciler | None = None
        self._applier: PatchApplier | None = None
        self._deriver: VersionDeriver | None = None
        self._composer: BuildLabelComposer | None = None

    @property
    def retry(self) -> RetryExecutor:
        if self._retry is None:
            self._retry = RetryExecutor(RetryPolicy(max_attempts=self.config.retry))
        return self._retry

    @property
    def reconciler(self) -> RepositoryReconciler:
        if self._reconciler is None:
            self._reconciler = RepositoryReconciler(
                retry=self.retry,
                stale_dir=self.config.effective_stale_dir,
                runner=self.runner,
            )
        return self._reconciler

    @property
    def applier(self) -> PatchApplier:
        if self._applier is None:
            self._applier = PatchApplier(conflict_policy=self.config.patch_conflict)
        return self._applier

    @property
    def deriver(self) -> VersionDeriver:
        if self._deriver is None:
            self._deriver = VersionDeriver(runner=self.runner)
        return self._deriver

    @property
    def composer(self) -> BuildLabelComposer:
        if self._composer is None:
            self._composer = BuildLabelComposer(
                revision_override=self.config.short_sha,
                repo_dir=self.workdir,
            )
        return self._composer

    def context(self) -> BuildContext:
        return BuildContext(
            config=self.config,
            workdir=self.workdir,
            env=dict(self.env),
            reconciler=self.reconciler,
            applier=self.applier,
            deriver=self.deriver,
            composer=self.composer,
            retry=self.retry,
            runner=self.runner,
            process_runner=self.process_runner,
        )

    async def run(
        self,
        only: Iterable[str] | None = None,
        pipeline: Pipeline | None = None,
        on_stage: Callable[[StageResult], None] | None = None,
    ) -> PipelineReport:
        """Run the full pipeline, or only the named stages.

        Args:
            only: Stage names to run, in pipeline order; None for all
            pipeline: Alternative pipeline (defaults to the standard stages)
            on_stage: Optional callback invoked after each stage

        Returns:
            Report with one result per stage
        """
        pipeline = pipeline or default_pipeline()
        if only:
            pipeline = pipeline.select(only)
        return await pipeline.run(self.context(), on_stage=on_stage)

    async def sync(self, parallel: bool | None = None) -> dict[str, str]:
        """Reconcile every dependency repository."""
        specs = self.config.repositories(self.workdir)
        outcomes = await self.reconciler.reconcile_all(
            specs, parallel=self.config.parallel_clones if parallel is None else parallel
        )
        return {name: outcome.value for name, outcome in outcomes.items()}

    async def derive_version(self, repo_path: Path | None = None) -> int:
        path = repo_path or self.config.kernel_path(self.workdir) / self.config.ksu_dir
        return await self.deriver.derive(path)

    def compose_label(self) -> str:
        return self.composer.compose()
