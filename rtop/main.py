"""
rtop - Main Entry Point.

Connects to one remote host over SSH and periodically prints its
resource usage.
"""

import argparse
import asyncio
import getpass
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Set, Tuple

from . import __version__
from .core.config import Config, LoggingConfig, get_default_config_path
from .core.data_manager import DataManager
from .core.errors import CommandError, RemoteConnectionError, UnsupportedSystemError
from .core.models import CgroupNode, PollResult
from .collectors.cgroups import CgroupTreeBuilder
from .collectors.executor import SSHExecutor, apply_ssh_config, validate_os
from .collectors.ssh_collector import SSHCollector


logger = logging.getLogger(__name__)


def setup_logging(config: LoggingConfig):
    """Configure the root logger from the logging section of the config."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(sys.stderr)]
    if config.file_path:
        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(
            log_path,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
        ))

    logging.basicConfig(level=level, format=config.format, handlers=handlers, force=True)


def format_bytes(value: int) -> str:
    """Human readable size with binary prefixes, e.g. `1.5 GiB`."""
    unit = 1024
    if value < unit:
        return f"{value} B"
    div, exp = unit, 0
    n = value // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{value / div:.1f} {'KMGTPE'[exp]}iB"


def format_duration(seconds: float) -> str:
    """`3d 04:05:06`, or `04:05:06` under a day."""
    total = int(seconds)
    days, total = divmod(total, 86400)
    hours, total = divmod(total, 3600)
    minutes, secs = divmod(total, 60)
    if days > 0:
        return f"{days}d {hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def parse_target(target: str) -> Tuple[str, str, int]:
    """
    Split `[user@]host[:port]` into (user, host, port).

    Missing parts come back empty / 0. Raises ValueError on a bad port.
    """
    user, sep, addr = target.rpartition("@")
    if sep and not addr:
        raise ValueError(f"missing host in {target!r}")

    host, port = addr, 0
    parts = addr.split(":")
    if len(parts) == 2:
        host = parts[0]
        port = int(parts[1])
        if port <= 0 or port >= 65536:
            raise ValueError(f"bad port: {port}")
    if not host:
        raise ValueError(f"missing host in {target!r}")
    return user, host, port


def render_cgroups(nodes, indent: int = 2) -> str:
    lines = []
    for node in nodes:
        lines.extend(_render_cgroup(node, indent))
    return "\n".join(lines)


def _render_cgroup(node: CgroupNode, indent: int):
    limit = "unlimited" if node.is_unlimited else format_bytes(node.memory_limit_bytes)
    yield (
        f"{' ' * indent}{node.name}: cpu {node.cpu_seconds:.1f}s, "
        f"mem {format_bytes(node.memory_current_bytes)}/{limit}, "
        f"io r {format_bytes(node.io_read_bytes)} w {format_bytes(node.io_write_bytes)}"
    )
    for child in node.children:
        yield from _render_cgroup(child, indent + 2)


def render_status(result: PollResult) -> str:
    """Plain-text view of one poll result."""
    s = result.snapshot
    cpu = s.cpu
    mem = s.memory
    lines = [
        "=" * 60,
        f"{s.hostname or '?'}  up {format_duration(s.uptime.total_seconds())}  "
        f"load {s.load.load1} {s.load.load5} {s.load.load15}",
        f"Processes: {s.load.running_procs} running of {s.load.total_procs} total",
        "",
        f"CPU: user {cpu.user:.1f}%  nice {cpu.nice:.1f}%  system {cpu.system:.1f}%  "
        f"idle {cpu.idle:.1f}%  iowait {cpu.iowait:.1f}%",
        f"     irq {cpu.irq:.1f}%  softirq {cpu.softirq:.1f}%  "
        f"steal {cpu.steal:.1f}%  guest {cpu.guest:.1f}%",
        f"Memory: {format_bytes(mem.used_bytes)} used / {format_bytes(mem.total_bytes)} total "
        f"({format_bytes(mem.free_bytes)} free, {format_bytes(mem.buffers_bytes)} buffers, "
        f"{format_bytes(mem.cached_bytes)} cached)",
        f"Swap: {format_bytes(mem.swap_used_bytes)} used / {format_bytes(mem.swap_total_bytes)} total",
    ]

    if s.filesystems:
        lines.append("")
        lines.append("Filesystems:")
        for fs in s.filesystems:
            lines.append(
                f"  {fs.device:<30} {fs.mount_point:<15} "
                f"{format_bytes(fs.free_bytes)} free of {format_bytes(fs.total_bytes)}"
            )

    if s.interfaces:
        lines.append("")
        lines.append("Network Interfaces:")
        for name, info in sorted(s.interfaces.items()):
            lines.append(
                f"  {name:<12} {info.ipv4_address or '-':<20} "
                f"rx {format_bytes(info.rx_bytes)} tx {format_bytes(info.tx_bytes)}"
            )

    if s.cgroups:
        lines.append("")
        lines.append("Cgroups:")
        lines.append(render_cgroups(s.cgroups))

    if result.errors:
        lines.append("")
        lines.append(f"Errors: {len(result.errors)}")
        for failure in result.errors:
            lines.append(f"  - {failure}")

    return "\n".join(lines)


class RtopApplication:
    """
    Polls one remote host on a fixed interval.

    Each tick starts a poll task; the collector's admission gate decides
    whether it actually runs. A lost connection stops the application.
    """

    def __init__(self, config: Config, executor: Optional[SSHExecutor] = None):
        self.config = config
        conn = config.connection
        self.executor = executor or SSHExecutor(
            host=conn.host,
            username=conn.username or None,
            password=conn.password or None,
            key_path=conn.key_path or None,
            port=conn.port or 22,
            timeout=conn.timeout_seconds,
        )
        builder = CgroupTreeBuilder(
            self.executor,
            root=config.polling.cgroup_root,
            max_depth=config.polling.cgroup_max_depth,
        ) if config.polling.collect_cgroups else None
        self.collector = SSHCollector(
            self.executor,
            cgroup_builder=builder,
            max_concurrent_polls=config.polling.max_concurrent_polls,
            collect_cgroups=config.polling.collect_cgroups,
        )
        self.data_manager = DataManager()

        self._running = False
        self._poll_task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self.fatal_error: Optional[BaseException] = None

    @property
    def host(self) -> str:
        return self.config.connection.host

    async def start(self, poll_loop: bool = True):
        """Connect, check the remote OS and start the poll loop."""
        logger.info(f"rtop {__version__} starting up")
        loop = asyncio.get_running_loop()
        if not self.executor.is_connected:
            await loop.run_in_executor(None, self.executor.connect)

        if self.config.polling.validate_os:
            await validate_os(self.executor)

        self._running = True
        if poll_loop:
            self._poll_task = asyncio.create_task(self._poll_loop())
            logger.info(f"Monitoring {self.host} every {self.config.polling.interval_seconds}s")

    async def stop(self):
        """Stop polling and close the SSH session."""
        logger.info("rtop shutting down")
        self._running = False

        tasks = list(self._inflight)
        if self._poll_task:
            tasks.append(self._poll_task)
            self._poll_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self.executor.close()

    @property
    def is_running(self) -> bool:
        return self._running

    async def _poll_loop(self):
        """Start one poll per interval."""
        while self._running:
            task = asyncio.create_task(self.poll_once())
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            await asyncio.sleep(self.config.polling.interval_seconds)

    async def poll_once(self) -> Optional[PollResult]:
        """Run one poll, publish and print it."""
        try:
            result = await self.collector.poll()
        except RemoteConnectionError as e:
            logger.error(f"Connection to {self.host} lost: {e}")
            self.fatal_error = e
            self._running = False
            return None
        except Exception as e:
            logger.error(f"Collection error: {e}")
            return None

        if result.skipped:
            return result

        await self.data_manager.publish(self.host, result)
        print(render_status(result), flush=True)
        return result


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="rtop",
        description="Monitor a remote Linux host over SSH",
    )

    parser.add_argument(
        "target",
        nargs="?",
        help="[user@]host[:port] to monitor",
    )

    parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Refresh interval in seconds (default: 1)",
    )

    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to configuration file (YAML)",
    )

    parser.add_argument(
        "-i",
        dest="key_path",
        default=None,
        help="Private key file to authenticate with",
    )

    parser.add_argument(
        "-l",
        dest="log_level",
        default=None,
        help="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    parser.add_argument(
        "-L",
        dest="log_file",
        default=None,
        help="Write logs to this file",
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Poll twice (to get CPU rates), print and exit",
    )

    parser.add_argument(
        "--no-cgroups",
        action="store_true",
        help="Do not walk the cgroup tree",
    )

    parser.add_argument(
        "--generate-config",
        action="store_true",
        help="Generate a sample configuration file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"rtop {__version__}",
    )

    return parser.parse_args(argv)


def build_config(args) -> Config:
    """Load the config file and apply command line overrides."""
    config_path = args.config or get_default_config_path()
    config = Config.from_yaml(config_path)

    if args.target:
        user, host, port = parse_target(args.target)
        config.connection.host = host
        if user:
            config.connection.username = user
        if port:
            config.connection.port = port
    if args.interval is not None:
        if args.interval <= 0:
            raise ValueError(f"bad interval: {args.interval}")
        config.polling.interval_seconds = args.interval
    if args.key_path:
        config.connection.key_path = args.key_path
    if args.log_level:
        config.logging.level = args.log_level
    if args.log_file:
        config.logging.file_path = args.log_file
    if args.no_cgroups:
        config.polling.collect_cgroups = False

    if config.connection.host:
        apply_ssh_config(config.connection, str(Path.home() / ".ssh" / "config"))
    if not config.connection.username:
        config.connection.username = getpass.getuser()
    return config


async def main(argv=None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # Generate sample config if requested
    if args.generate_config:
        config = Config()
        config_path = "config/rtop.yaml"
        Path("config").mkdir(exist_ok=True)
        config.to_yaml(config_path)
        print(f"Generated sample configuration: {config_path}")
        return 0

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"rtop: {e}", file=sys.stderr)
        return 1

    setup_logging(config.logging)

    if not config.connection.host:
        print("rtop: no host given", file=sys.stderr)
        return 1

    app = RtopApplication(config)

    try:
        await app.start(poll_loop=not args.once)
    except (RemoteConnectionError, UnsupportedSystemError, CommandError) as e:
        logger.critical(str(e))
        print(f"rtop: {e}", file=sys.stderr)
        app.executor.close()
        return 2

    if args.once:
        try:
            await app.poll_once()
            await asyncio.sleep(config.polling.interval_seconds)
            await app.poll_once()
        finally:
            await app.stop()
        return 2 if app.fatal_error else 0

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        # Keep running until stopped
        while app.is_running:
            await asyncio.sleep(0.2)
    finally:
        await app.stop()

    return 2 if app.fatal_error else 0


def run():
    """Entry point for the application."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nShutdown complete")


if __name__ == "__main__":
    run()
