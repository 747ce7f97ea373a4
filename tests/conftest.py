"""Shared fixtures: a scripted executor and canned probe output."""

from typing import Dict, List, Union

import pytest

from rtop.collectors.cgroups import list_slices_command
from rtop.core.errors import CommandError


class FakeExecutor:
    """Answers commands from a dict; unknown commands fail like a missing binary."""

    def __init__(self, responses: Dict[str, Union[str, Exception]] = None):
        self.responses: Dict[str, Union[str, Exception]] = dict(responses or {})
        self.calls: List[str] = []

    async def run(self, command: str) -> str:
        self.calls.append(command)
        if command not in self.responses:
            raise CommandError(command, exit_status=127, stderr="command not found")
        response = self.responses[command]
        if isinstance(response, Exception):
            raise response
        return response


UPTIME = "350735.47 234388.90\n"

HOSTNAME = "web01.example.com\n"

LOADAVG = "0.20 0.18 0.12 1/80 11206\n"

MEMINFO = """\
MemTotal:        8167848 kB
MemFree:         1240348 kB
MemAvailable:    5012340 kB
Buffers:          264076 kB
Cached:          3349024 kB
SwapCached:            0 kB
SwapTotal:       2097148 kB
SwapFree:        2097148 kB
HugePages_Total:       0
"""

DF = """\
Filesystem                 1-blocks        Used   Available Capacity Mounted on
/dev/sda1               52710469632 21474836480 28521246720      43% /
tmpfs                    4181938176           0  4181938176       0% /dev/shm
/dev/mapper/vg0-very--long--logical--volume--name
                       105555197952 10737418240 89443237888      11% /srv
"""

IP_ADDR = """\
1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
1: lo    inet6 ::1/128 scope host \\       valid_lft forever preferred_lft forever
2: eth0    inet 10.0.0.5/24 brd 10.0.0.255 scope global eth0\\       valid_lft forever preferred_lft forever
2: eth0    inet6 fe80::5054:ff:fe12:3456/64 scope link \\       valid_lft forever preferred_lft forever
"""

NET_DEV = """\
Inter-|   Receive                                                |  Transmit
 face |bytes    packets errs drop fifo frame compressed multicast|bytes    packets errs drop fifo colls carrier compressed
    lo:  104857       900    0    0    0     0          0         0   104857     900    0    0    0     0       0          0
  eth0: 987654321  654321    0    0    0     0          0         0 123456789  321000    0    0    0     0       0          0
docker0:    5000        50    0    0    0     0          0         0     6000      60    0    0    0     0       0          0
"""

PROC_STAT = """\
cpu  1000 100 500 8000 200 50 50 0 0 0
cpu0 500 50 250 4000 100 25 25 0 0 0
intr 12345
"""

PROC_STAT_LATER = """\
cpu  1300 100 600 8500 250 50 100 0 100 0
cpu0 650 50 300 4250 125 25 50 0 50 0
intr 12399
"""

CGROUP_ROOT = "/sys/fs/cgroup"

# root -> slices under it (3 levels deep, 5 slices total)
CGROUP_TREE = {
    CGROUP_ROOT: ["system.slice", "user.slice"],
    CGROUP_ROOT + "/system.slice": ["system-getty.slice"],
    CGROUP_ROOT + "/system.slice/system-getty.slice": ["system-getty-tty1.slice"],
    CGROUP_ROOT + "/system.slice/system-getty.slice/system-getty-tty1.slice": [],
    CGROUP_ROOT + "/user.slice": ["user-1000.slice"],
    CGROUP_ROOT + "/user.slice/user-1000.slice": [],
}


def cgroup_files(path: str, usage_usec: int, current: int, limit: str, rbytes, wbytes) -> Dict[str, str]:
    io_lines = "".join(
        f"8:{i} rbytes={r} wbytes={w} rios=1 wios=1 dbytes=0 dios=0\n"
        for i, (r, w) in enumerate(zip(rbytes, wbytes))
    )
    return {
        f"cat {path}/cpu.stat": (
            f"usage_usec {usage_usec}\nuser_usec {usage_usec // 2}\nsystem_usec {usage_usec // 2}\n"
        ),
        f"cat {path}/memory.current": f"{current}\n",
        f"cat {path}/memory.max": f"{limit}\n",
        f"cat {path}/io.stat": io_lines,
    }


def cgroup_responses() -> Dict[str, str]:
    responses: Dict[str, str] = {}
    for parent, children in CGROUP_TREE.items():
        listing = "".join(f"{parent}/{child}\n" for child in children)
        if parent == CGROUP_ROOT:
            listing += f"{CGROUP_ROOT}/init.scope\n"
        responses[list_slices_command(parent)] = listing

    responses.update(cgroup_files(
        CGROUP_ROOT + "/system.slice", 4_500_000, 1048576, "max", [1000, 24], [500, 0]))
    responses.update(cgroup_files(
        CGROUP_ROOT + "/system.slice/system-getty.slice", 1_000_000, 4096, "max", [10], [20]))
    responses.update(cgroup_files(
        CGROUP_ROOT + "/system.slice/system-getty.slice/system-getty-tty1.slice",
        250_000, 2048, "1073741824", [], []))
    responses.update(cgroup_files(
        CGROUP_ROOT + "/user.slice", 2_000_000, 65536, "max", [300], [400]))
    responses.update(cgroup_files(
        CGROUP_ROOT + "/user.slice/user-1000.slice", 1_500_000, 32768, "2147483648", [100, 200], [0, 50]))
    return responses


def host_responses() -> Dict[str, str]:
    """Output of every probe command on a healthy host."""
    responses = {
        "/bin/cat /proc/uptime": UPTIME,
        "/bin/hostname -f": HOSTNAME,
        "/bin/cat /proc/loadavg": LOADAVG,
        "/bin/cat /proc/meminfo": MEMINFO,
        "/bin/df -PB1": DF,
        "/bin/ip -o addr": IP_ADDR,
        "/bin/cat /proc/net/dev": NET_DEV,
        "/bin/cat /proc/stat": PROC_STAT,
    }
    responses.update(cgroup_responses())
    return responses


@pytest.fixture
def executor() -> FakeExecutor:
    return FakeExecutor(host_responses())


@pytest.fixture
def cgroup_executor() -> FakeExecutor:
    return FakeExecutor(cgroup_responses())
