"""Native library and downstream builders."""

from .base import CommandResult, CommandRunner, SubprocessRunner
from .downstream import DownstreamBuilder
from .native import NativeLibraryBuilder

__all__ = [
    "CommandResult",
    "CommandRunner",
    "DownstreamBuilder",
    "NativeLibraryBuilder",
    "SubprocessRunner",
]
