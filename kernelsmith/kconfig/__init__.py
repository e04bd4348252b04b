"""Line-oriented kernel configuration editing."""

from kernelsmith.kconfig.document import ConfigFile, ConfigLine, LineKind
from kernelsmith.kconfig.mutator import ConfigLineMutator, append_unique, format_value, set_toggle

__all__ = [
    "ConfigFile",
    "ConfigLine",
    "LineKind",
    "ConfigLineMutator",
    "append_unique",
    "set_toggle",
    "format_value",
]
