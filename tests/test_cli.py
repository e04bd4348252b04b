"""Tests for the kernelsmith CLI."""

from __future__ import annotations

import re
from pathlib import Path

from click.testing import CliRunner

from kernelsmith.cli import main


class TestKconfigCommands:
    """Tests for kconfig set and append."""

    def test_set(self, defconfig: Path) -> None:
        """Test kconfig set rewrites the key and echoes the line."""
        runner = CliRunner()
        result = runner.invoke(main, ["kconfig", "set", "--", str(defconfig), "CONFIG_LOCALVERSION", "-deepongi"])

        assert result.exit_code == 0, result.output
        assert 'CONFIG_LOCALVERSION="-deepongi"' in result.output
        assert defconfig.read_text().splitlines()[-1] == 'CONFIG_LOCALVERSION="-deepongi"'

    def test_append(self, defconfig: Path) -> None:
        """Test kconfig append reports added and present lines."""
        runner = CliRunner()
        result = runner.invoke(
            main, ["kconfig", "append", str(defconfig), "CONFIG_KSU=y", "CONFIG_LOCALVERSION_AUTO=y"]
        )

        assert result.exit_code == 0, result.output
        assert "1 line(s) added, 1 already present" in result.output

    def test_missing_file_fails(self, temp_dir: Path) -> None:
        """Test missing file fails."""
        runner = CliRunner()
        result = runner.invoke(main, ["kconfig", "append", str(temp_dir / "missing"), "CONFIG_KSU=y"])
        assert result.exit_code == 1


class TestInfoCommands:
    """Tests for label and stages."""

    def test_label_uses_injected_revision(self, temp_dir: Path) -> None:
        """Test label uses injected revision."""
        runner = CliRunner()
        result = runner.invoke(main, ["-C", str(temp_dir), "label"], env={"GIT_SHORT_SHA": "1a2b3c4"})

        assert result.exit_code == 0, result.output
        assert re.fullmatch(r"\d{8}T\d{4}Z-1a2b3c4", result.output.strip())

    def test_label_rejects_bad_config(self, temp_dir: Path) -> None:
        """Test label rejects bad config."""
        runner = CliRunner()
        result = runner.invoke(main, ["-C", str(temp_dir), "label"], env={"LTO_TYPE": "fat"})
        assert result.exit_code == 1

    def test_version_fallback(self, temp_dir: Path) -> None:
        """Test version prints the fallback outside a repository."""
        runner = CliRunner()
        result = runner.invoke(main, ["-C", str(temp_dir), "version", str(temp_dir)])

        assert result.exit_code == 0, result.output
        assert result.output.strip().splitlines()[-1] == "11998"

    def test_stages(self) -> None:
        """Test the stages command lists the pipeline."""
        runner = CliRunner()
        result = runner.invoke(main, ["stages"])

        assert result.exit_code == 0
        assert "kernel_source" in result.output
        assert "package" in result.output
