"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import subprocess
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

GitCommand = Callable[..., str]


def _git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        [
            "git",
            "-c", "user.name=Test",
            "-c", "user.email=test@example.com",
            "-c", "commit.gpgsign=false",
            "-c", "init.defaultBranch=main",
            *args,
        ],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True,
    )
    return result.stdout.strip()


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def git() -> GitCommand:
    """Run a git command with a fixed identity and return its stdout."""
    return _git


@pytest.fixture
def upstream(temp_dir: Path, git: GitCommand) -> Path:
    """A local repository on branch ``main`` with two commits."""
    repo = temp_dir / "upstream"
    repo.mkdir()
    git("init", "-q", cwd=repo)
    git("symbolic-ref", "HEAD", "refs/heads/main", cwd=repo)
    (repo / "README").write_text("first\n")
    git("add", "README", cwd=repo)
    git("commit", "-q", "-m", "first", cwd=repo)
    (repo / "README").write_text("first\nsecond\n")
    git("commit", "-q", "-am", "second", cwd=repo)
    return repo


@pytest.fixture
def defconfig(temp_dir: Path) -> Path:
    """A small defconfig with active, commented and blank lines."""
    path = temp_dir / "gki_defconfig"
    path.write_text(
        "CONFIG_LOCALVERSION_AUTO=y\n"
        "# CONFIG_MODULES is not set\n"
        "\n"
        "# CONFIG_KSU=y\n"
        "CONFIG_LTO_CLANG_FULL=y\n"
    )
    return path


def pytest_configure(config):
    config.addinivalue_line("markers", "git: tests that need a git executable")
    config.addinivalue_line("markers", "patch: tests that need the patch executable")
