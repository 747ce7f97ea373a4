"""
Data models for remote resource metrics.

These dataclasses represent one host's resource state as produced by a
single poll. Published snapshots are frozen and never mutated; a new poll
builds a new snapshot from the previous one.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Dict, Iterator, Mapping, Optional, Tuple


CPU_FIELDS = (
    "user",
    "nice",
    "system",
    "idle",
    "iowait",
    "irq",
    "softirq",
    "steal",
    "guest",
)


@dataclass(frozen=True)
class LoadInfo:
    """Load averages and process counts from /proc/loadavg."""

    # Kept as the literal strings the kernel prints
    load1: str = ""
    load5: str = ""
    load15: str = ""
    running_procs: int = 0
    total_procs: int = 0


@dataclass(frozen=True)
class MemoryInfo:
    """Memory and swap counters, in bytes."""

    total_bytes: int = 0
    free_bytes: int = 0
    buffers_bytes: int = 0
    cached_bytes: int = 0
    swap_total_bytes: int = 0
    swap_free_bytes: int = 0

    @property
    def used_bytes(self) -> int:
        """Memory not free, buffered or cached."""
        return max(0, self.total_bytes - self.free_bytes - self.buffers_bytes - self.cached_bytes)

    @property
    def swap_used_bytes(self) -> int:
        return max(0, self.swap_total_bytes - self.swap_free_bytes)


@dataclass(frozen=True)
class FilesystemEntry:
    """One mounted block-device filesystem."""

    device: str
    mount_point: str
    used_bytes: int = 0
    free_bytes: int = 0

    @property
    def total_bytes(self) -> int:
        return self.used_bytes + self.free_bytes


@dataclass(frozen=True)
class InterfaceInfo:
    """Addresses and traffic counters of one network interface."""

    name: str
    ipv4_address: Optional[str] = None
    ipv6_address: Optional[str] = None
    rx_bytes: int = 0
    tx_bytes: int = 0


@dataclass(frozen=True)
class CpuSample:
    """Raw jiffie counters from the aggregate `cpu` line of /proc/stat."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0
    guest: int = 0
    total: int = 0


@dataclass(frozen=True)
class CpuPercentages:
    """Share of CPU time per category since the previous sample."""

    user: float = 0.0
    nice: float = 0.0
    system: float = 0.0
    idle: float = 0.0
    iowait: float = 0.0
    irq: float = 0.0
    softirq: float = 0.0
    steal: float = 0.0
    guest: float = 0.0

    @property
    def busy_percent(self) -> float:
        """Everything that is not idle or waiting on I/O."""
        return (
            self.user + self.nice + self.system + self.irq
            + self.softirq + self.steal + self.guest
        )


@dataclass(frozen=True)
class CgroupNode:
    """
    One cgroup v2 slice.

    Children are owned by the node. The parent is referenced by path only;
    use `rtop.collectors.cgroups.parent_of` to resolve it.
    """

    path: str
    version: str = "v2"
    cpu_seconds: float = 0.0
    memory_current_bytes: int = 0
    memory_limit_bytes: int = 0  # 0 means unlimited
    io_read_bytes: int = 0
    io_write_bytes: int = 0
    parent_path: Optional[str] = None
    children: Tuple["CgroupNode", ...] = ()

    @property
    def name(self) -> str:
        """Last path component, e.g. `system.slice`."""
        return self.path.rstrip("/").rsplit("/", 1)[-1]

    @property
    def is_unlimited(self) -> bool:
        return self.memory_limit_bytes == 0

    def walk(self) -> Iterator["CgroupNode"]:
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()


def _frozen_mapping(data: Optional[Mapping[str, InterfaceInfo]] = None) -> Mapping[str, InterfaceInfo]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class Snapshot:
    """Complete resource state of a remote host at one poll."""

    hostname: str = ""
    uptime: timedelta = timedelta(0)
    load: LoadInfo = field(default_factory=LoadInfo)
    memory: MemoryInfo = field(default_factory=MemoryInfo)
    filesystems: Tuple[FilesystemEntry, ...] = ()
    interfaces: Mapping[str, InterfaceInfo] = field(default_factory=_frozen_mapping)
    cpu: CpuPercentages = field(default_factory=CpuPercentages)
    cgroups: Tuple[CgroupNode, ...] = ()
    timestamp: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        if not isinstance(self.interfaces, MappingProxyType):
            object.__setattr__(self, "interfaces", _frozen_mapping(self.interfaces))
        if not isinstance(self.filesystems, tuple):
            object.__setattr__(self, "filesystems", tuple(self.filesystems))
        if not isinstance(self.cgroups, tuple):
            object.__setattr__(self, "cgroups", tuple(self.cgroups))

    def to_dict(self) -> dict:
        """Convert snapshot to dictionary for serialization."""
        return {
            "hostname": self.hostname,
            "uptime_seconds": self.uptime.total_seconds(),
            "load": {
                "load1": self.load.load1,
                "load5": self.load.load5,
                "load15": self.load.load15,
                "running_procs": self.load.running_procs,
                "total_procs": self.load.total_procs,
            },
            "memory": {
                "total_bytes": self.memory.total_bytes,
                "free_bytes": self.memory.free_bytes,
                "buffers_bytes": self.memory.buffers_bytes,
                "cached_bytes": self.memory.cached_bytes,
                "swap_total_bytes": self.memory.swap_total_bytes,
                "swap_free_bytes": self.memory.swap_free_bytes,
            },
            "filesystems": [
                {
                    "device": fs.device,
                    "mount_point": fs.mount_point,
                    "used_bytes": fs.used_bytes,
                    "free_bytes": fs.free_bytes,
                }
                for fs in self.filesystems
            ],
            "interfaces": {
                name: {
                    "ipv4_address": info.ipv4_address,
                    "ipv6_address": info.ipv6_address,
                    "rx_bytes": info.rx_bytes,
                    "tx_bytes": info.tx_bytes,
                }
                for name, info in self.interfaces.items()
            },
            "cpu": {name: getattr(self.cpu, name) for name in CPU_FIELDS},
            "cgroups": [_cgroup_to_dict(node) for node in self.cgroups],
            "timestamp": self.timestamp.isoformat(),
        }


def _cgroup_to_dict(node: CgroupNode) -> dict:
    return {
        "path": node.path,
        "version": node.version,
        "cpu_seconds": node.cpu_seconds,
        "memory_current_bytes": node.memory_current_bytes,
        "memory_limit_bytes": node.memory_limit_bytes,
        "io_read_bytes": node.io_read_bytes,
        "io_write_bytes": node.io_write_bytes,
        "children": [_cgroup_to_dict(child) for child in node.children],
    }


@dataclass(frozen=True)
class ProbeFailure:
    """A probe that failed during a poll, with the recovered error."""

    probe: str
    error: Exception

    def __str__(self) -> str:
        return f"{self.probe}: {self.error}"


@dataclass(frozen=True)
class PollResult:
    """What one poll publishes: the snapshot and the probes that failed."""

    snapshot: Snapshot
    errors: Tuple[ProbeFailure, ...] = ()
    skipped: bool = False  # True when the admission gate was full
    collection_duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors and not self.skipped

    def failed_probes(self) -> Dict[str, Exception]:
        """Map probe name to its error."""
        return {failure.probe: failure.error for failure in self.errors}
