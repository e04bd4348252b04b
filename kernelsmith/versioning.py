"""Build version number and artifact label derivation."""

from __future__ import annotations

import logging
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from kernelsmith.sources.base import CommandRunner, describe_failure, run_command
from kernelsmith.sources.git import has_git_metadata

logger = logging.getLogger(__name__)

# KernelSU numbering: KSU_VERSION = 10000 + commit count + 200
VERSION_BASE = 10000
VERSION_OFFSET = 200
# Mirrors the KernelSU Makefile fallback
VERSION_FALLBACK = 11998

LABEL_TIME_FORMAT = "%Y%m%dT%H%MZ"
SHORT_REVISION_LENGTH = 7


class VersionDeriver:
    """Derive the build number from an upstream repository's commit count."""

    def __init__(
        self,
        runner: CommandRunner = run_command,
        base: int = VERSION_BASE,
        offset: int = VERSION_OFFSET,
        fallback: int = VERSION_FALLBACK,
    ) -> None:
        self._run = runner
        self.base = base
        self.offset = offset
        self.fallback = fallback

    def compute(self, count: int | None) -> int:
        """Apply the numbering formula, or the fallback when count is unknown."""
        if count is None:
            return self.fallback
        return self.base + count + self.offset

    async def derive(self, repo_path: Path) -> int:
        if not has_git_metadata(repo_path):
            logger.warning(f"{repo_path} has no .git; using fallback version {self.fallback}")
            return self.fallback

        await self._ensure_full_history(repo_path)
        count = await self._commit_count(repo_path)
        if count is None:
            logger.warning(f"Could not count commits in {repo_path}; using fallback version {self.fallback}")
            return self.fallback

        version = self.compute(count)
        logger.info(f"Version derived from {repo_path.name}: {version} ({count} commits)")
        return version

    async def _ensure_full_history(self, repo_path: Path) -> None:
        if (repo_path / ".git" / "shallow").exists():
            cmd = ["git", "fetch", "--unshallow"]
        else:
            cmd = ["git", "fetch", "--all", "--prune"]
        try:
            await self._run(cmd, cwd=repo_path)
        except (subprocess.CalledProcessError, OSError) as e:
            detail = describe_failure(e) if isinstance(e, subprocess.CalledProcessError) else str(e)
            logger.warning(f"History fetch failed in {repo_path} (continuing): {detail}")

    async def _commit_count(self, repo_path: Path) -> int | None:
        try:
            result = await self._run(["git", "rev-list", "--count", "origin/HEAD"], cwd=repo_path)
        except (subprocess.CalledProcessError, OSError):
            return None
        output = result.stdout.strip()
        return int(output) if output.isdigit() else None


def _git_short_revision(repo_dir: Path | None, length: int = SHORT_REVISION_LENGTH) -> str:
    try:
        result = subprocess.run(
            ["git", "rev-parse", f"--short={length}", "HEAD"],
            cwd=repo_dir,
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (subprocess.SubprocessError, OSError):
        return ""
    if result.returncode != 0:
        return ""
    return result.stdout.strip()


class BuildLabelComposer:
    """Compose ``<UTC timestamp>[-<short revision>]`` artifact labels.

    The revision comes from an injected override, else from ``repo_dir``'s
    HEAD, else it is omitted. A missing revision never produces a
    placeholder.
    """

    def __init__(
        self,
        revision_override: str | None = None,
        repo_dir: Path | None = None,
        clock: Callable[[], datetime] | None = None,
        revision_lookup: Callable[[Path | None], str] = _git_short_revision,
    ) -> None:
        self.revision_override = revision_override
        self.repo_dir = repo_dir
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._lookup = revision_lookup

    @staticmethod
    def format_timestamp(moment: datetime) -> str:
        if moment.tzinfo is not None:
            moment = moment.astimezone(timezone.utc)
        return moment.strftime(LABEL_TIME_FORMAT)

    def resolve_revision(self) -> str:
        if self.revision_override and self.revision_override.strip():
            return self.revision_override.strip()
        return (self._lookup(self.repo_dir) or "").strip()

    def compose(self, now: datetime | None = None) -> str:
        timestamp = self.format_timestamp(now or self.clock())
        revision = self.resolve_revision()
        return f"{timestamp}-{revision}" if revision else timestamp


def artifact_name(prefix: str, label: str, version: int | str) -> str:
    """``<prefix>-<build-label>-<version-number>.zip``"""
    return f"{prefix}-{label}-{version}.zip"
