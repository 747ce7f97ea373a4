"""
Parsers for the text output of remote probe commands.

Every function here is pure: it takes the full stdout of one command and
returns one fragment of the resource model. Shape mismatches raise
FormatError; line-oriented formats skip unparseable lines instead.
"""

import logging
from dataclasses import replace
from datetime import timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.errors import FormatError, NumericParseError
from ..core.models import CPU_FIELDS, CpuSample, FilesystemEntry, InterfaceInfo, LoadInfo


logger = logging.getLogger(__name__)


# /proc/meminfo key -> MemoryInfo field
MEMINFO_KEYS = {
    "MemTotal:": "total_bytes",
    "MemFree:": "free_bytes",
    "Buffers:": "buffers_bytes",
    "Cached:": "cached_bytes",
    "SwapTotal:": "swap_total_bytes",
    "SwapFree:": "swap_free_bytes",
}


def _to_int(field: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise NumericParseError(field, value) from None


def parse_uptime(output: str) -> timedelta:
    """Parse `/proc/uptime` into the time since boot."""
    parts = output.split()
    if len(parts) != 2:
        raise FormatError(f"uptime: expected 2 fields, got {len(parts)}")
    try:
        seconds = float(parts[0])
    except ValueError:
        raise NumericParseError("uptime", parts[0]) from None
    return timedelta(seconds=seconds)


def parse_hostname(output: str) -> str:
    return output.strip()


def parse_loadavg(output: str) -> LoadInfo:
    """Parse `/proc/loadavg`, e.g. `0.20 0.18 0.12 1/80 11206`."""
    parts = output.split()
    if len(parts) != 5:
        raise FormatError(f"loadavg: expected 5 fields, got {len(parts)}")

    running, sep, total = parts[3].partition("/")
    if not sep:
        raise FormatError(f"loadavg: no '/' in process field {parts[3]!r}")

    return LoadInfo(
        load1=parts[0],
        load5=parts[1],
        load15=parts[2],
        running_procs=_to_int("running processes", running),
        total_procs=_to_int("total processes", total),
    )


def parse_meminfo(output: str) -> Dict[str, int]:
    """
    Parse `/proc/meminfo` into MemoryInfo field updates.

    Only the known keys present in the output are returned, converted
    from kB to bytes. A non-numeric value skips that counter.
    """
    updates: Dict[str, int] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 3:
            continue
        field = MEMINFO_KEYS.get(parts[0])
        if field is None:
            continue
        try:
            updates[field] = int(parts[1]) * 1024
        except ValueError:
            logger.debug(f"Skipping non-numeric meminfo value: {line!r}")
    return updates


# df -PB1 comes in two row shapes. A long device name makes df wrap the row,
# putting the device alone on one line and the counters on the next.

def _is_device(token: str) -> bool:
    return token.startswith("/dev/")


def parse_df_row(fields: List[str]) -> FilesystemEntry:
    """Single-line shape: device, size, used, available, capacity, mount."""
    if len(fields) != 6 or not _is_device(fields[0]):
        raise FormatError(f"df: not a single-line device row: {fields}")
    return FilesystemEntry(
        device=fields[0],
        mount_point=fields[5],
        used_bytes=_to_int("used", fields[2]),
        free_bytes=_to_int("available", fields[3]),
    )


def parse_df_wrapped_row(device: str, fields: List[str]) -> FilesystemEntry:
    """Wrapped shape: device on its own line, then size, used, available, capacity, mount."""
    if not _is_device(device) or len(fields) != 5:
        raise FormatError(f"df: not a wrapped device row: {device} {fields}")
    return FilesystemEntry(
        device=device,
        mount_point=fields[4],
        used_bytes=_to_int("used", fields[1]),
        free_bytes=_to_int("available", fields[2]),
    )


def parse_df(output: str) -> List[FilesystemEntry]:
    """Parse `df -PB1` output, keeping only /dev/ filesystems in order."""
    entries: List[FilesystemEntry] = []
    pending_device: Optional[str] = None

    for line in output.splitlines():
        fields = line.split()
        if len(fields) == 1 and _is_device(fields[0]):
            pending_device = fields[0]
            continue

        # A wrapped device only pairs with the line right after it
        device, pending_device = pending_device, None
        try:
            if device is not None and len(fields) == 5:
                entries.append(parse_df_wrapped_row(device, fields))
            elif len(fields) == 6 and _is_device(fields[0]):
                entries.append(parse_df_row(fields))
        except NumericParseError as e:
            logger.debug(f"Skipping df row: {e}")

    return entries


def parse_ip_addr(
    output: str,
    interfaces: Optional[Mapping[str, InterfaceInfo]] = None,
) -> Dict[str, InterfaceInfo]:
    """
    Merge `ip -o addr` addresses into an interface map.

    Returns a new map; `interfaces` is not modified. Entries are created
    for interfaces not yet present.
    """
    merged: Dict[str, InterfaceInfo] = dict(interfaces or {})
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 4 or parts[2] not in ("inet", "inet6"):
            continue

        name = parts[1]
        info = merged.get(name) or InterfaceInfo(name=name)
        if parts[2] == "inet":
            info = replace(info, ipv4_address=parts[3])
        else:
            info = replace(info, ipv6_address=parts[3])
        merged[name] = info
    return merged


def parse_net_dev(
    output: str,
    interfaces: Mapping[str, InterfaceInfo],
) -> Dict[str, InterfaceInfo]:
    """
    Apply `/proc/net/dev` byte counters to known interfaces.

    Interfaces missing from `interfaces` are skipped, never created.
    """
    merged: Dict[str, InterfaceInfo] = dict(interfaces)
    for line in output.splitlines():
        parts = line.split()
        if len(parts) != 17:
            continue

        name = parts[0].strip().rstrip(":")
        info = merged.get(name)
        if info is None:
            continue
        try:
            rx = _to_int("rx bytes", parts[1])
            tx = _to_int("tx bytes", parts[9])
        except NumericParseError as e:
            logger.debug(f"Skipping counters for {name}: {e}")
            continue
        merged[name] = replace(info, rx_bytes=rx, tx_bytes=tx)
    return merged


def parse_cpu_fields(fields: Iterable[str]) -> CpuSample:
    """Build a CpuSample from the numbers after the `cpu` label."""
    values: Dict[str, int] = {}
    total = 0
    for name, raw in zip(CPU_FIELDS, fields):
        try:
            value = int(raw)
        except ValueError:
            logger.debug(f"Skipping non-numeric cpu field {name}: {raw!r}")
            continue
        values[name] = value
        total += value
    return CpuSample(total=total, **values)


def parse_proc_stat(output: str) -> CpuSample:
    """Parse the aggregate `cpu` line of `/proc/stat`."""
    for line in output.splitlines():
        fields = line.split()
        if fields and fields[0] == "cpu":
            return parse_cpu_fields(fields[1:])
    raise FormatError("stat: no aggregate 'cpu' line")


# cgroup v2 interface files

def parse_cpu_stat(output: str) -> float:
    """CPU seconds from a cgroup `cpu.stat` file (`usage_usec` / 1e6)."""
    stats: Dict[str, float] = {}
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 2:
            continue
        try:
            stats[fields[0]] = float(fields[1])
        except ValueError:
            continue
    return stats.get("usage_usec", 0.0) / 1_000_000


def parse_memory_value(output: str) -> int:
    """Single integer from `memory.current` / `memory.max`; `max` and garbage give 0."""
    try:
        return int(output.strip())
    except ValueError:
        return 0


def parse_io_stat(output: str) -> Tuple[int, int]:
    """
    Sum read and write bytes over all devices in a cgroup `io.stat` file.

    Lines look like `8:0 rbytes=1024 wbytes=0 rios=1 wios=0 dbytes=0 dios=0`.
    """
    read_bytes = 0
    write_bytes = 0
    for line in output.splitlines():
        fields = line.split()
        if not fields or ":" not in fields[0]:
            continue
        for pair in fields[1:]:
            key, sep, value = pair.partition("=")
            if not sep:
                continue
            try:
                amount = int(value)
            except ValueError:
                continue
            if key == "rbytes":
                read_bytes += amount
            elif key == "wbytes":
                write_bytes += amount
    return read_bytes, write_bytes


def parse_slice_listing(output: str) -> List[str]:
    """Directory paths from a one-level listing, keeping `*.slice` only."""
    paths = []
    for line in output.splitlines():
        path = line.strip().rstrip("/")
        if path and path.rsplit("/", 1)[-1].endswith(".slice"):
            paths.append(path)
    return paths
