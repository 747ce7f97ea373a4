"""Collectors module for gathering remote resource metrics."""

from .cgroups import CgroupTreeBuilder
from .cpu import CpuEngine
from .executor import CommandExecutor, SSHExecutor, validate_os
from .ssh_collector import SSHCollector

__all__ = [
    "CgroupTreeBuilder",
    "CommandExecutor",
    "CpuEngine",
    "SSHCollector",
    "SSHExecutor",
    "validate_os",
]
