"""kernelsmith - Idempotent Android kernel build engine."""

from kernelsmith.builder import KernelBuild
from kernelsmith.models.config import BuildConfig

__version__ = "0.1.0"
__all__ = ["KernelBuild", "BuildConfig"]
