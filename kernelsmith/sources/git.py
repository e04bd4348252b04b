"""Reconcile dependency working trees against their remote branches."""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Iterable

from kernelsmith.errors import RepositoryError
from kernelsmith.models.repository import ReconcileOutcome, RepositorySpec, StaleDirPolicy
from kernelsmith.retry import RetryExecutor
from kernelsmith.sources.base import CommandRunner, describe_failure, run_command

logger = logging.getLogger(__name__)


def has_git_metadata(path: Path) -> bool:
    """Check whether a directory is a git working tree root."""
    return (path / ".git").exists()


class RepositoryReconciler:
    """Bring local working trees to the tip of a declared remote branch.

    The remote branch tip is ground truth: local commits and edits in an
    existing tree are discarded with a hard reset, never merged. First-time
    clones run under the retry executor since they are the main source of
    transient network failure.
    """

    def __init__(
        self,
        retry: RetryExecutor | None = None,
        stale_dir: StaleDirPolicy = StaleDirPolicy.FAIL,
        runner: CommandRunner = run_command,
    ) -> None:
        self.retry = retry or RetryExecutor()
        self.stale_dir = stale_dir
        self._run = runner

    async def reconcile(self, spec: RepositorySpec) -> ReconcileOutcome:
        """Reconcile one working tree. Raises RepositoryError on failure."""
        path = spec.local_path

        if has_git_metadata(path):
            await self._update(spec)
            return ReconcileOutcome.UPDATED

        if path.exists():
            if self.stale_dir == StaleDirPolicy.REUSE:
                logger.info(f"Reusing existing {spec.name} (no .git); skipping update")
                return ReconcileOutcome.REUSED
            if self.stale_dir == StaleDirPolicy.FAIL:
                raise RepositoryError(
                    f"{path} exists but is not a git repository",
                    details={"path": str(path), "policy": self.stale_dir.value},
                )
            logger.warning(f"{spec.name} exists without .git; removing before clone")
            shutil.rmtree(path)
            await self._clone(spec)
            return ReconcileOutcome.RECLONED

        await self._clone(spec)
        return ReconcileOutcome.CLONED

    async def reconcile_all(
        self, specs: Iterable[RepositorySpec], parallel: bool = False
    ) -> dict[str, ReconcileOutcome]:
        """Reconcile several trees, optionally fanning the work out.

        Parallel mode joins on every reconciliation before returning, so no
        caller observes a partially cloned dependency.
        """
        specs = list(specs)
        seen: set[Path] = set()
        for spec in specs:
            resolved = spec.local_path.resolve()
            if resolved in seen:
                raise RepositoryError(
                    f"Two repositories target the same path: {spec.local_path}",
                    details={"path": str(spec.local_path)},
                )
            seen.add(resolved)

        if parallel:
            results = await asyncio.gather(*(self.reconcile(spec) for spec in specs), return_exceptions=True)
            failures = [result for result in results if isinstance(result, BaseException)]
            for failure in failures[1:]:
                logger.error(f"Reconciliation also failed: {failure}")
            if failures:
                raise failures[0]
            outcomes = list(results)
        else:
            outcomes = []
            for spec in specs:
                outcomes.append(await self.reconcile(spec))

        return {spec.name: outcome for spec, outcome in zip(specs, outcomes)}

    async def reset_to_revision(self, path: Path, revision: str) -> None:
        """Clean untracked files and hard-reset a tree to a fixed revision."""
        if not has_git_metadata(path):
            raise RepositoryError(f"Not a git repository: {path}", details={"path": str(path)})

        try:
            await self._run(["git", "clean", "-fdx"], cwd=path)
        except subprocess.CalledProcessError as e:
            logger.warning(f"git clean failed in {path}: {describe_failure(e)}")

        try:
            await self._run(["git", "reset", "--hard", revision], cwd=path)
        except subprocess.CalledProcessError as e:
            raise RepositoryError(
                f"Failed to reset {path} to {revision}: {describe_failure(e)}",
                details={"path": str(path), "revision": revision},
            ) from e
        logger.info(f"{path.name} reset to {revision}")

    async def head_revision(self, path: Path, length: int = 7) -> str | None:
        """Short revision of HEAD, or None outside a repository."""
        if not has_git_metadata(path):
            return None
        try:
            result = await self._run(["git", "rev-parse", f"--short={length}", "HEAD"], cwd=path)
        except subprocess.CalledProcessError:
            return None
        return result.stdout.strip() or None

    @staticmethod
    def fetch_command(spec: RepositorySpec) -> list[str]:
        """Fetch the declared branch into its remote-tracking ref.

        Shallow clones track a single branch, so the refspec is explicit to
        let a tree move to a branch it was not cloned with. ``--depth`` is
        only passed to trees that are already shallow.
        """
        cmd = ["git", "fetch", "--prune"]
        if spec.is_shallow and (spec.local_path / ".git" / "shallow").exists():
            cmd.extend(["--depth", str(spec.shallow_depth)])
        cmd.extend(["origin", f"+refs/heads/{spec.branch}:refs/remotes/{spec.remote_ref}"])
        return cmd

    async def _update(self, spec: RepositorySpec) -> None:
        logger.info(f"Updating {spec.name} to {spec.remote_ref}")
        path = spec.local_path
        try:
            await self._run(self.fetch_command(spec), cwd=path)
            await self._run(["git", "checkout", "-f", "-B", spec.branch, spec.remote_ref], cwd=path)
            await self._run(["git", "reset", "--hard", spec.remote_ref], cwd=path)
        except subprocess.CalledProcessError as e:
            raise RepositoryError(
                f"Failed to update {spec.name}: {describe_failure(e)}",
                details={"path": str(path), "branch": spec.branch},
            ) from e

    async def _clone(self, spec: RepositorySpec) -> None:
        logger.info(f"Cloning {spec.remote_url} ({spec.branch}) into {spec.local_path}")
        spec.local_path.parent.mkdir(parents=True, exist_ok=True)

        async def attempt() -> None:
            # A failed attempt may leave a partial checkout behind
            if spec.local_path.exists():
                shutil.rmtree(spec.local_path)
            try:
                await self._run(spec.clone_command())
            except subprocess.CalledProcessError as e:
                raise RepositoryError(
                    f"Failed to clone {spec.remote_url}: {describe_failure(e)}",
                    details={"url": spec.remote_url, "branch": spec.branch},
                ) from e

        await self.retry.run(attempt, description=f"clone {spec.name}")
