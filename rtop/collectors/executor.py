"""
Remote command execution.

Probes only need `run(command) -> stdout`. SSHExecutor provides it over a
paramiko session; tests substitute a scripted executor.
"""

import asyncio
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Protocol, Tuple

import paramiko

from ..core.errors import CommandError, RemoteConnectionError, UnsupportedSystemError


logger = logging.getLogger(__name__)


class CommandExecutor(Protocol):
    """Runs one command on the remote host."""

    async def run(self, command: str) -> str:
        """Return stdout, or raise CommandError / RemoteConnectionError."""
        ...


class SSHExecutor:
    """
    Executes commands on a remote Linux machine via SSH.

    paramiko is blocking, so each command runs on a worker thread. Every
    command opens its own channel on the shared transport and closes it
    when done, including after a timeout.
    """

    def __init__(
        self,
        host: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        key_path: Optional[str] = None,
        port: int = 22,
        timeout: float = 10.0,
        max_workers: int = 4,
    ):
        self.host = host
        self.username = username
        self.password = password
        self.key_path = key_path
        self.port = port
        self.timeout = timeout
        self._client: Optional[paramiko.SSHClient] = None
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rtop-ssh")
        self._stderr_readers = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="rtop-ssh-stderr")

    @property
    def is_connected(self) -> bool:
        if self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def connect(self) -> None:
        """Open the SSH session. Agent and default keys are tried by paramiko."""
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        connect_kwargs = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "timeout": self.timeout,
        }

        if self.key_path:
            connect_kwargs["key_filename"] = self.key_path
        if self.password:
            connect_kwargs["password"] = self.password

        logger.info(f"Establishing SSH connection to {self.username or ''}@{self.host}:{self.port}")
        try:
            client.connect(**connect_kwargs)
        except (paramiko.SSHException, socket.error) as e:
            client.close()
            raise RemoteConnectionError(f"failed to connect to {self.host}: {e}") from e

        self._client = client
        logger.info("SSH connection established")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self._executor.shutdown(wait=False)
        self._stderr_readers.shutdown(wait=False)

    def __enter__(self) -> "SSHExecutor":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _exec_command(self, command: str) -> Tuple[str, str, int]:
        """Execute a command and return stdout, stderr and exit status."""
        if self._client is None:
            raise RemoteConnectionError("not connected")

        logger.debug(f"Executing command: {command}")
        try:
            stdin, stdout, stderr = self._client.exec_command(command, timeout=self.timeout)
            channel = stdout.channel
            try:
                # stderr shares the channel window with stdout; drain both at once
                err_reader = self._stderr_readers.submit(stderr.read)
                out = stdout.read().decode("utf-8", errors="replace")
                err = err_reader.result().decode("utf-8", errors="replace").strip()
                status = channel.recv_exit_status()
            finally:
                channel.close()
        except socket.timeout as e:
            raise CommandError(command, stderr=f"timed out: {e}") from e
        except (paramiko.SSHException, socket.error, EOFError) as e:
            raise RemoteConnectionError(f"SSH session failed while running '{command}': {e}") from e

        logger.debug(f"Command finished with status {status}, output length: {len(out)} bytes")
        return out, err, status

    async def run(self, command: str) -> str:
        loop = asyncio.get_running_loop()
        out, err, status = await loop.run_in_executor(self._executor, self._exec_command, command)
        if status != 0:
            raise CommandError(command, exit_status=status, stderr=err)
        return out


def apply_ssh_config(connection, config_path: str) -> None:
    """
    Fill unset connection settings from an OpenSSH client config file.

    `connection` is a ConnectionConfig; the host alias is resolved to the
    configured HostName. Values already set explicitly win.
    """
    try:
        ssh_config = paramiko.SSHConfig.from_path(config_path)
    except FileNotFoundError:
        logger.debug(f"SSH config not found at {config_path}")
        return

    entry = ssh_config.lookup(connection.host)
    if entry.get("hostname"):
        connection.host = entry["hostname"]
    if "port" in entry and not connection.port:
        connection.port = int(entry["port"])
    if "user" in entry and not connection.username:
        connection.username = entry["user"]
    if entry.get("identityfile") and not connection.key_path:
        connection.key_path = entry["identityfile"][0]
    logger.debug(f"Applied SSH config from {config_path} for {connection.host}")


async def validate_os(executor: CommandExecutor) -> str:
    """Make sure the remote host runs Linux; return the `uname` output."""
    logger.debug("Validating remote OS type")
    ostype = (await executor.run("uname")).strip()
    logger.info(f"Remote OS detected: {ostype}")
    if ostype.lower() != "linux":
        raise UnsupportedSystemError(f"{ostype or 'unknown'} systems are not supported")
    return ostype
