"""Idempotent source-tree edits made while preparing the kernel."""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path

from kernelsmith.errors import PreconditionError
from kernelsmith.models.config import CleanPolicy

logger = logging.getLogger(__name__)

DIRTY_CHECK_MARKER = "# Check for uncommitted changes."
LSM_MODULE = "baseband_guard"
_LANDLOCK = re.compile(r"\blandlock\b")


def strip_dirty_check(setlocalversion: Path) -> bool:
    """Drop the uncommitted-changes block so versions carry no ``-dirty``.

    Removes each range from the marker comment through the next line
    containing ``fi``. Returns True if the file changed.
    """
    if not setlocalversion.is_file():
        logger.warning(f"{setlocalversion} not found; version may carry -dirty")
        return False

    lines = setlocalversion.read_text(encoding="utf-8").splitlines(keepends=True)
    kept: list[str] = []
    in_block = False
    for line in lines:
        if in_block:
            if "fi" in line:
                in_block = False
            continue
        if DIRTY_CHECK_MARKER in line:
            in_block = True
            continue
        kept.append(line)

    if len(kept) == len(lines):
        return False
    setlocalversion.write_text("".join(kept), encoding="utf-8")
    return True


def drop_check_defconfig(build_config: Path) -> bool:
    """Remove ``check_defconfig`` from line 2 of ``build.config.gki``."""
    if not build_config.is_file():
        return False
    lines = build_config.read_text(encoding="utf-8").splitlines(keepends=True)
    if len(lines) < 2 or "check_defconfig" not in lines[1]:
        return False
    lines[1] = lines[1].replace("check_defconfig", "", 1)
    build_config.write_text("".join(lines), encoding="utf-8")
    return True


def add_lsm_default(kconfig: Path, module: str = LSM_MODULE) -> bool:
    """Append ``module`` after ``landlock`` in the ``config LSM`` default list.

    Only ``default`` lines inside the ``config LSM`` entry are touched, and a
    line already naming the module is left alone. Returns True if changed.
    """
    if not kconfig.is_file():
        logger.warning(f"{kconfig} not found; skipping LSM default update")
        return False

    lines = kconfig.read_text(encoding="utf-8").splitlines(keepends=True)
    in_entry = False
    changed = False
    for i, line in enumerate(lines):
        stripped = line.strip()
        if line.rstrip("\n") == "config LSM":
            in_entry = True
            continue
        if in_entry and (stripped == "help" or line.startswith(("config ", "menuconfig ", "endmenu"))):
            in_entry = False
        if in_entry and stripped.startswith("default") and module not in line:
            updated = _LANDLOCK.sub(f"landlock,{module}", line, count=1)
            if updated != line:
                lines[i] = updated
                changed = True

    if changed:
        kconfig.write_text("".join(lines), encoding="utf-8")
        logger.info(f"Added {module} to LSM default in {kconfig}")
    else:
        logger.info(f"{module} already present in LSM default (or no landlock entry)")
    return changed


def remove_abi_exports(kernel_dir: Path) -> int:
    """Delete GKI protected-export lists so added symbols can link."""
    removed = 0
    for path in (kernel_dir / "android").glob("abi_gki_protected_exports_*"):
        path.unlink()
        removed += 1
    return removed


def apply_clean_policy(out_dir: Path, policy: CleanPolicy) -> str:
    """Prepare the output directory according to the clean policy."""
    if policy == CleanPolicy.ALWAYS:
        if out_dir.exists():
            shutil.rmtree(out_dir)
        message = "output directory cleared"
    elif policy == CleanPolicy.NEVER:
        message = f"reusing output directory {out_dir}"
    else:
        if out_dir.exists():
            logger.warning(f"Output directory exists: {out_dir} (reusing)")
        message = "output directory kept"
    out_dir.mkdir(parents=True, exist_ok=True)
    return message


def require_kernel_top_level(kernel_dir: Path) -> None:
    """Raise unless ``kernel_dir`` looks like a kernel source root."""
    if not (kernel_dir / "Makefile").is_file() or not (kernel_dir / "security").is_dir():
        raise PreconditionError(
            f"Not a kernel top-level directory: {kernel_dir}", details={"path": str(kernel_dir)}
        )
