"""Pipeline stage result models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class StageStatus(str, Enum):
    """Status of a pipeline stage."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # Disabled by configuration
    FAILED = "failed"
    PENDING = "pending"  # Not reached because an earlier stage failed


class StageResult(BaseModel):
    """Outcome of a single named stage."""

    name: str = Field(..., description="Stage name")
    status: StageStatus = Field(..., description="Final status")
    duration_seconds: float = Field(default=0.0, ge=0)
    detail: str | None = Field(default=None, description="Summary or error message")

    @property
    def ok(self) -> bool:
        """Check if the stage did not fail."""
        return self.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED)

    @property
    def duration_formatted(self) -> str:
        """Get human-readable duration."""
        seconds = int(self.duration_seconds)
        if seconds < 60:
            return f"{self.duration_seconds:.1f}s"
        minutes, seconds = divmod(seconds, 60)
        if minutes < 60:
            return f"{minutes}m{seconds:02d}s"
        hours, minutes = divmod(minutes, 60)
        return f"{hours}h{minutes:02d}m"


class PipelineReport(BaseModel):
    """Results of a pipeline run, one entry per stage."""

    results: list[StageResult] = Field(default_factory=list)
    error: str | None = Field(default=None, description="Message of the fatal error, if any")
    artifact: str | None = Field(default=None, description="Path of the packaged artifact")
    version: int | None = Field(default=None, description="Derived build number")

    @property
    def ok(self) -> bool:
        return self.error is None and all(r.ok for r in self.results)

    @property
    def failed_stage(self) -> str | None:
        for result in self.results:
            if result.status == StageStatus.FAILED:
                return result.name
        return None

    @property
    def total_seconds(self) -> float:
        return sum(r.duration_seconds for r in self.results)
