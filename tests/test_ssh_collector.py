"""Tests for SSHCollector poll orchestration."""

import asyncio
from datetime import timedelta

import pytest

from rtop.collectors.cgroups import walk
from rtop.collectors.ssh_collector import COMMANDS, PROBE_ORDER, SSHCollector
from rtop.core.errors import CommandError, FormatError, RemoteConnectionError
from rtop.core.models import FilesystemEntry

from .conftest import PROC_STAT_LATER, FakeExecutor, host_responses


class SlowExecutor(FakeExecutor):
    """Blocks every command until released."""

    def __init__(self, responses):
        super().__init__(responses)
        self.release = asyncio.Event()

    async def run(self, command: str) -> str:
        await self.release.wait()
        return await super().run(command)


class HeldExecutor(FakeExecutor):
    """Holds the first run of one command until released."""

    def __init__(self, responses, held_command: str):
        super().__init__(responses)
        self.held_command = held_command
        self.release = asyncio.Event()
        self._held = False

    async def run(self, command: str) -> str:
        if command == self.held_command and not self._held:
            self._held = True
            await self.release.wait()
        return await super().run(command)


class TestPoll:
    """Tests for a single poll against a healthy host."""

    @pytest.mark.asyncio
    async def test_all_probes_succeed(self, executor):
        result = await SSHCollector(executor).poll()
        snapshot = result.snapshot

        assert result.errors == ()
        assert not result.skipped
        assert snapshot.hostname == "web01.example.com"
        assert snapshot.uptime == timedelta(seconds=350735.47)
        assert snapshot.load.total_procs == 80
        assert snapshot.memory.total_bytes == 8167848 * 1024
        assert [fs.mount_point for fs in snapshot.filesystems] == ["/", "/srv"]
        assert snapshot.interfaces["eth0"].rx_bytes == 987654321
        assert "docker0" not in snapshot.interfaces
        assert len(list(walk(snapshot.cgroups))) == 5

    @pytest.mark.asyncio
    async def test_first_poll_cpu_is_zero_second_is_not(self, executor):
        collector = SSHCollector(executor)

        first = await collector.poll()
        executor.responses[COMMANDS["cpu"]] = PROC_STAT_LATER
        second = await collector.poll()

        assert first.snapshot.cpu.user == 0.0
        assert second.snapshot.cpu.user == pytest.approx(100 * 300 / 1100)

    @pytest.mark.asyncio
    async def test_probes_run_in_order(self, executor):
        await SSHCollector(executor, collect_cgroups=False).poll()

        expected = [COMMANDS[name] for name in PROBE_ORDER if name != "cgroups"]
        assert executor.calls == expected

    @pytest.mark.asyncio
    async def test_snapshot_is_published(self, executor):
        collector = SSHCollector(executor)
        result = await collector.poll()

        assert collector.snapshot is result.snapshot
        assert collector.poll_count == 1

    @pytest.mark.asyncio
    async def test_published_snapshot_is_read_only(self, executor):
        result = await SSHCollector(executor).poll()

        with pytest.raises(TypeError):
            result.snapshot.interfaces["new"] = None
        with pytest.raises(AttributeError):
            result.snapshot.hostname = "other"


class TestDegradedPoll:
    """Tests for probe failures inside a poll."""

    @pytest.mark.asyncio
    async def test_failed_filesystem_probe_keeps_previous_data(self, executor):
        collector = SSHCollector(executor)
        first = await collector.poll()

        executor.responses[COMMANDS["filesystems"]] = CommandError(COMMANDS["filesystems"], 1, "df: broken")
        executor.responses[COMMANDS["hostname"]] = "web02.example.com\n"
        executor.responses[COMMANDS["cpu"]] = PROC_STAT_LATER
        second = await collector.poll()

        assert len(second.errors) == 1
        assert second.errors[0].probe == "filesystems"
        assert isinstance(second.errors[0].error, CommandError)
        assert second.snapshot.filesystems == first.snapshot.filesystems
        assert second.snapshot.hostname == "web02.example.com"
        assert second.snapshot.cpu.user > 0

    @pytest.mark.asyncio
    async def test_failure_on_first_poll_leaves_defaults(self):
        responses = host_responses()
        responses[COMMANDS["uptime"]] = "garbage\n"
        result = await SSHCollector(FakeExecutor(responses)).poll()

        assert result.failed_probes().keys() == {"uptime"}
        assert isinstance(result.failed_probes()["uptime"], FormatError)
        assert result.snapshot.uptime == timedelta(0)
        assert result.snapshot.hostname == "web01.example.com"

    @pytest.mark.asyncio
    async def test_every_failure_is_collected(self):
        result = await SSHCollector(FakeExecutor({})).poll()

        # counters are skipped without addresses
        expected = [name for name in PROBE_ORDER if name != "interface_counters"]
        assert [failure.probe for failure in result.errors] == expected
        assert result.snapshot.hostname == ""

    @pytest.mark.asyncio
    async def test_empty_meminfo_is_an_error(self, executor):
        executor.responses[COMMANDS["memory"]] = "nothing useful\n"
        result = await SSHCollector(executor).poll()

        assert list(result.failed_probes()) == ["memory"]

    @pytest.mark.asyncio
    async def test_meminfo_missing_keys_keep_previous_values(self, executor):
        collector = SSHCollector(executor)
        await collector.poll()

        executor.responses[COMMANDS["memory"]] = "MemFree: 42 kB\n"
        result = await collector.poll()

        assert result.snapshot.memory.free_bytes == 42 * 1024
        assert result.snapshot.memory.total_bytes == 8167848 * 1024

    @pytest.mark.asyncio
    async def test_connection_error_is_fatal(self, executor):
        executor.responses[COMMANDS["load"]] = RemoteConnectionError("channel closed")
        collector = SSHCollector(executor)

        with pytest.raises(RemoteConnectionError):
            await collector.poll()
        assert collector.poll_count == 0
        assert collector.snapshot.hostname == ""

    @pytest.mark.asyncio
    async def test_cpu_parse_failure_resets_engine(self, executor):
        collector = SSHCollector(executor)
        await collector.poll()

        executor.responses[COMMANDS["cpu"]] = "intr 1\n"
        result = await collector.poll()

        assert "cpu" in result.failed_probes()
        assert not collector.cpu_engine.has_baseline


class TestInterfaces:
    """Tests for the address and counter probes working together."""

    @pytest.mark.asyncio
    async def test_falls_back_to_sbin_ip(self, executor):
        executor.responses[COMMANDS["interfaces_fallback"]] = executor.responses.pop(COMMANDS["interfaces"])
        result = await SSHCollector(executor).poll()

        assert "interfaces" not in result.failed_probes()
        assert result.snapshot.interfaces["eth0"].ipv4_address == "10.0.0.5/24"

    @pytest.mark.asyncio
    async def test_counters_skipped_without_addresses(self, executor):
        del executor.responses[COMMANDS["interfaces"]]
        result = await SSHCollector(executor).poll()

        assert list(result.failed_probes()) == ["interfaces"]
        assert COMMANDS["interface_counters"] not in executor.calls
        assert dict(result.snapshot.interfaces) == {}

    @pytest.mark.asyncio
    async def test_counters_failure_keeps_last_counters(self, executor):
        collector = SSHCollector(executor)
        await collector.poll()

        executor.responses[COMMANDS["interface_counters"]] = CommandError(COMMANDS["interface_counters"], 1)
        result = await collector.poll()

        assert list(result.failed_probes()) == ["interface_counters"]
        assert result.snapshot.interfaces["eth0"].rx_bytes == 987654321

    @pytest.mark.asyncio
    async def test_removed_interface_disappears(self, executor):
        collector = SSHCollector(executor)
        await collector.poll()

        executor.responses[COMMANDS["interfaces"]] = "2: eth0    inet 10.0.0.5/24 scope global eth0\n"
        result = await collector.poll()

        assert set(result.snapshot.interfaces) == {"eth0"}


class TestAdmissionGate:
    """Tests for the concurrent poll limit."""

    @pytest.mark.asyncio
    async def test_third_concurrent_poll_is_skipped(self):
        executor = SlowExecutor(host_responses())
        collector = SSHCollector(executor, max_concurrent_polls=2)
        previous = collector.snapshot

        first = asyncio.create_task(collector.poll())
        second = asyncio.create_task(collector.poll())
        await asyncio.sleep(0)

        third = await collector.poll()
        assert third.skipped
        assert third.snapshot is previous
        assert third.errors == ()

        executor.release.set()
        results = await asyncio.gather(first, second)
        assert not any(result.skipped for result in results)

    @pytest.mark.asyncio
    async def test_gate_released_after_failure(self, executor):
        executor.responses[COMMANDS["uptime"]] = RemoteConnectionError("gone")
        collector = SSHCollector(executor, max_concurrent_polls=1)

        with pytest.raises(RemoteConnectionError):
            await collector.poll()

        executor.responses[COMMANDS["uptime"]] = "1.0 2.0\n"
        result = await collector.poll()
        assert not result.skipped

    @pytest.mark.asyncio
    async def test_gate_released_after_cancel(self):
        executor = SlowExecutor(host_responses())
        collector = SSHCollector(executor, max_concurrent_polls=1)

        task = asyncio.create_task(collector.poll())
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        executor.release.set()
        result = await collector.poll()
        assert not result.skipped
        assert result.snapshot.filesystems[0] == FilesystemEntry("/dev/sda1", "/", 21474836480, 28521246720)

    @pytest.mark.asyncio
    async def test_overlapping_slow_poll_keeps_newer_values(self):
        executor = HeldExecutor(host_responses(), COMMANDS["hostname"])
        collector = SSHCollector(executor, collect_cgroups=False)

        slow = asyncio.create_task(collector.poll())
        await asyncio.sleep(0)
        fast = await collector.poll()
        assert len(fast.snapshot.filesystems) == 2

        executor.responses[COMMANDS["filesystems"]] = CommandError(COMMANDS["filesystems"], exit_status=1)
        executor.release.set()
        late = await slow

        assert list(late.failed_probes()) == ["filesystems"]
        assert late.snapshot.filesystems == fast.snapshot.filesystems
        assert collector.snapshot is late.snapshot
        assert collector.poll_count == 2
