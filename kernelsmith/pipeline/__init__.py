"""Build pipeline: named stages run in order over a shared context."""

from kernelsmith.pipeline.base import BuildContext, Pipeline, Stage
from kernelsmith.pipeline.stages import STAGES, default_pipeline

__all__ = ["BuildContext", "Pipeline", "Stage", "STAGES", "default_pipeline"]
