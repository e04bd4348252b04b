"""Named-stage pipeline runner."""

from __future__ import annotations

import inspect
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable

from kernelsmith.errors import BuildError
from kernelsmith.models.stage import PipelineReport, StageResult, StageStatus

if TYPE_CHECKING:
    from kernelsmith.models.config import BuildConfig
    from kernelsmith.patches import PatchApplier
    from kernelsmith.retry import RetryExecutor
    from kernelsmith.sources.base import CommandRunner
    from kernelsmith.sources.git import RepositoryReconciler
    from kernelsmith.versioning import BuildLabelComposer, VersionDeriver

logger = logging.getLogger(__name__)

StageAction = Callable[["BuildContext"], "Awaitable[str | None] | str | None"]


@dataclass
class BuildContext:
    """Everything a stage needs: configuration, collaborators and run state."""

    config: BuildConfig
    workdir: Path
    env: dict[str, str]
    reconciler: RepositoryReconciler
    applier: PatchApplier
    deriver: VersionDeriver
    composer: BuildLabelComposer
    retry: RetryExecutor
    runner: CommandRunner
    process_runner: Callable[..., Any]

    # Filled in as stages run
    version: int | None = None
    label: str | None = None
    artifact: Path | None = None
    notes: dict[str, Any] = field(default_factory=dict)

    @property
    def kernel_path(self) -> Path:
        return self.config.kernel_path(self.workdir)

    @property
    def config_path(self) -> Path:
        return self.config.config_path(self.workdir)


@dataclass
class Stage:
    """A named pipeline step, optionally disabled by configuration."""

    name: str
    action: StageAction
    description: str = ""
    enabled: Callable[[BuildConfig], bool] | None = None

    def is_enabled(self, config: BuildConfig) -> bool:
        return self.enabled is None or bool(self.enabled(config))


class Pipeline:
    """Run stages in order and stop at the first fatal error.

    There is no rollback: a failed run leaves the tree wherever it got to,
    and the next run reconciles it from scratch.
    """

    def __init__(self, stages: Iterable[Stage]) -> None:
        self.stages = list(stages)
        names = [stage.name for stage in self.stages]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate stage names: {names}")

    @property
    def names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def select(self, only: Iterable[str]) -> "Pipeline":
        """Sub-pipeline of the named stages, keeping pipeline order."""
        wanted = set(only)
        unknown = wanted - set(self.names)
        if unknown:
            raise KeyError(f"Unknown stage(s): {', '.join(sorted(unknown))}")
        return Pipeline(stage for stage in self.stages if stage.name in wanted)

    async def run(
        self,
        ctx: BuildContext,
        on_stage: Callable[[StageResult], None] | None = None,
    ) -> PipelineReport:
        report = PipelineReport()
        failed = False

        for stage in self.stages:
            if failed:
                result = StageResult(name=stage.name, status=StageStatus.PENDING)
            elif not stage.is_enabled(ctx.config):
                logger.info(f"Skipping {stage.name}")
                result = StageResult(name=stage.name, status=StageStatus.SKIPPED, detail="disabled")
            else:
                result = await self._run_stage(stage, ctx)
                if result.status == StageStatus.FAILED:
                    failed = True
                    report.error = result.detail

            report.results.append(result)
            if on_stage is not None:
                on_stage(result)

        report.version = ctx.version
        report.artifact = str(ctx.artifact) if ctx.artifact else None
        return report

    async def _run_stage(self, stage: Stage, ctx: BuildContext) -> StageResult:
        logger.info(f"==> {stage.description or stage.name}")
        start = time.monotonic()
        try:
            detail = stage.action(ctx)
            if inspect.isawaitable(detail):
                detail = await detail
        except BuildError as e:
            elapsed = time.monotonic() - start
            logger.error(f"{stage.name} failed after {elapsed:.1f}s: {e.message}")
            return StageResult(
                name=stage.name, status=StageStatus.FAILED, duration_seconds=elapsed, detail=e.message
            )

        return StageResult(
            name=stage.name,
            status=StageStatus.SUCCEEDED,
            duration_seconds=time.monotonic() - start,
            detail=detail,
        )
