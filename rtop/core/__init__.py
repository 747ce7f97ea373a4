"""Core module containing data models, errors and configuration."""

from .models import (
    CgroupNode,
    CpuPercentages,
    CpuSample,
    FilesystemEntry,
    InterfaceInfo,
    LoadInfo,
    MemoryInfo,
    PollResult,
    ProbeFailure,
    Snapshot,
)
from .errors import (
    CommandError,
    FormatError,
    NumericParseError,
    RemoteConnectionError,
    RtopError,
    UnsupportedSystemError,
)
from .config import Config

__all__ = [
    "CgroupNode",
    "CpuPercentages",
    "CpuSample",
    "FilesystemEntry",
    "InterfaceInfo",
    "LoadInfo",
    "MemoryInfo",
    "PollResult",
    "ProbeFailure",
    "Snapshot",
    "CommandError",
    "FormatError",
    "NumericParseError",
    "RemoteConnectionError",
    "RtopError",
    "UnsupportedSystemError",
    "Config",
]
