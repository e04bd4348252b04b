"""Flashable zip packaging from an AnyKernel3 template."""

from __future__ import annotations

import logging
import shutil
import zipfile
from pathlib import Path

from kernelsmith.errors import PackagingError

logger = logging.getLogger(__name__)

EXCLUDED_DIRS = {".git"}


def _iter_template_files(template_dir: Path) -> list[Path]:
    files = []
    for path in sorted(template_dir.rglob("*")):
        relative = path.relative_to(template_dir)
        if any(part in EXCLUDED_DIRS for part in relative.parts):
            continue
        if path.is_file():
            files.append(path)
    return files


def package_artifact(image: Path, template_dir: Path, dest_dir: Path, zip_name: str) -> Path:
    """Zip the template with the kernel image and place it in ``dest_dir``.

    The image is copied into the template for the duration of packaging
    and removed afterwards. Git metadata in the template is not archived.
    """
    if not image.is_file():
        raise PackagingError(f"Kernel image not found: {image}", details={"image": str(image)})
    if not template_dir.is_dir():
        raise PackagingError(f"Packaging template not found: {template_dir}", details={"path": str(template_dir)})

    dest_dir.mkdir(parents=True, exist_ok=True)
    target = dest_dir / zip_name
    staged_image = template_dir / image.name
    shutil.copyfile(image, staged_image)

    try:
        with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in _iter_template_files(template_dir):
                archive.write(path, path.relative_to(template_dir).as_posix())
    finally:
        staged_image.unlink(missing_ok=True)

    if not target.is_file():
        raise PackagingError(f"Artifact was not written: {target}", details={"path": str(target)})

    logger.info(f"Output: {target}")
    return target
