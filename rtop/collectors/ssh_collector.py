"""
SSH Collector for remote Linux machines.

Runs every probe against one remote executor per poll and merges the
results into a new Snapshot. A failing probe keeps its previous values
and is reported in the poll's error list; only a lost connection stops
the poll.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.errors import CommandError, FormatError
from ..core.models import InterfaceInfo, PollResult, ProbeFailure, Snapshot
from .cgroups import CgroupTreeBuilder
from .cpu import CpuEngine
from .executor import CommandExecutor
from .parsers import (
    parse_df,
    parse_hostname,
    parse_ip_addr,
    parse_loadavg,
    parse_meminfo,
    parse_net_dev,
    parse_uptime,
)


logger = logging.getLogger(__name__)


COMMANDS = {
    "uptime": "/bin/cat /proc/uptime",
    "hostname": "/bin/hostname -f",
    "load": "/bin/cat /proc/loadavg",
    "memory": "/bin/cat /proc/meminfo",
    "filesystems": "/bin/df -PB1",
    "interfaces": "/bin/ip -o addr",
    "interfaces_fallback": "/sbin/ip -o addr",
    "interface_counters": "/bin/cat /proc/net/dev",
    "cpu": "/bin/cat /proc/stat",
}

PROBE_ORDER = (
    "uptime",
    "hostname",
    "load",
    "memory",
    "filesystems",
    "interfaces",
    "interface_counters",
    "cpu",
    "cgroups",
)

DEFAULT_MAX_CONCURRENT_POLLS = 2


Updates = Dict[str, Any]


class SSHCollector:
    """
    Collects resource snapshots from one remote host.

    At most `max_concurrent_polls` polls run at once; a poll that cannot
    get in immediately returns the last snapshot and is marked skipped.
    The CPU engine keeps the only state carried between polls.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        cpu_engine: Optional[CpuEngine] = None,
        cgroup_builder: Optional[CgroupTreeBuilder] = None,
        max_concurrent_polls: int = DEFAULT_MAX_CONCURRENT_POLLS,
        collect_cgroups: bool = True,
    ):
        self.executor = executor
        self.cpu_engine = cpu_engine or CpuEngine()
        if cgroup_builder is None and collect_cgroups:
            cgroup_builder = CgroupTreeBuilder(executor)
        self.cgroup_builder = cgroup_builder
        self._gate = asyncio.Semaphore(max_concurrent_polls)
        self._snapshot = Snapshot()
        self._poll_count = 0

    @property
    def snapshot(self) -> Snapshot:
        """The last published snapshot."""
        return self._snapshot

    @property
    def poll_count(self) -> int:
        return self._poll_count

    async def poll(self) -> PollResult:
        """
        Run all probes once and publish a new snapshot.

        Raises RemoteConnectionError if the session is lost; every other
        probe error is collected in the result.
        """
        if self._gate.locked():
            logger.debug("Too many polls in flight, skipping this one")
            return PollResult(snapshot=self._snapshot, skipped=True)

        async with self._gate:
            return await self._collect()

    async def _collect(self) -> PollResult:
        start_time = time.time()
        updates: Updates = {}
        errors: List[ProbeFailure] = []

        # An overlapping poll may publish while this one waits on the
        # executor, so always merge onto the latest published snapshot.
        for name, probe in self._probes():
            try:
                await probe(self._snapshot, updates)
            except (CommandError, FormatError) as e:
                logger.warning(f"Probe {name} failed: {e}")
                errors.append(ProbeFailure(probe=name, error=e))

        snapshot = replace(self._snapshot, timestamp=datetime.now(), **updates)
        self._snapshot = snapshot
        self._poll_count += 1

        duration_ms = (time.time() - start_time) * 1000
        logger.debug(f"Poll finished in {duration_ms:.1f} ms with {len(errors)} failed probes")
        return PollResult(
            snapshot=snapshot,
            errors=tuple(errors),
            collection_duration_ms=duration_ms,
        )

    def _probes(self) -> List[Tuple[str, Callable[[Snapshot, Updates], Awaitable[None]]]]:
        return [(name, getattr(self, f"_probe_{name}")) for name in PROBE_ORDER]

    async def _probe_uptime(self, previous: Snapshot, updates: Updates) -> None:
        updates["uptime"] = parse_uptime(await self.executor.run(COMMANDS["uptime"]))

    async def _probe_hostname(self, previous: Snapshot, updates: Updates) -> None:
        updates["hostname"] = parse_hostname(await self.executor.run(COMMANDS["hostname"]))

    async def _probe_load(self, previous: Snapshot, updates: Updates) -> None:
        updates["load"] = parse_loadavg(await self.executor.run(COMMANDS["load"]))

    async def _probe_memory(self, previous: Snapshot, updates: Updates) -> None:
        counters = parse_meminfo(await self.executor.run(COMMANDS["memory"]))
        if not counters:
            raise FormatError("meminfo: no known counters in output")
        updates["memory"] = replace(previous.memory, **counters)

    async def _probe_filesystems(self, previous: Snapshot, updates: Updates) -> None:
        updates["filesystems"] = tuple(parse_df(await self.executor.run(COMMANDS["filesystems"])))

    async def _probe_interfaces(self, previous: Snapshot, updates: Updates) -> None:
        try:
            output = await self.executor.run(COMMANDS["interfaces"])
        except CommandError as e:
            logger.debug(f"{e}, retrying with {COMMANDS['interfaces_fallback']}")
            output = await self.executor.run(COMMANDS["interfaces_fallback"])

        interfaces = parse_ip_addr(output)
        # Keep the last known counters until the counters probe refreshes them
        for name, info in interfaces.items():
            known = previous.interfaces.get(name)
            if known is not None:
                interfaces[name] = replace(info, rx_bytes=known.rx_bytes, tx_bytes=known.tx_bytes)
        updates["interfaces"] = interfaces

    async def _probe_interface_counters(self, previous: Snapshot, updates: Updates) -> None:
        interfaces: Dict[str, InterfaceInfo] = updates.get("interfaces", previous.interfaces)
        if not interfaces:
            logger.debug("No interface addresses known yet, skipping counters")
            return
        output = await self.executor.run(COMMANDS["interface_counters"])
        updates["interfaces"] = parse_net_dev(output, interfaces)

    async def _probe_cpu(self, previous: Snapshot, updates: Updates) -> None:
        output = await self.executor.run(COMMANDS["cpu"])
        updates["cpu"] = self.cpu_engine.update(output)

    async def _probe_cgroups(self, previous: Snapshot, updates: Updates) -> None:
        if self.cgroup_builder is None:
            return
        updates["cgroups"] = tuple(await self.cgroup_builder.build())
