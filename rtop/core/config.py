"""
Configuration management for rtop.

Loads configuration from YAML files and environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass
class ConnectionConfig:
    """SSH connection settings for the monitored host."""

    host: str = ""
    port: int = 0  # 0 = from ~/.ssh/config, else 22
    username: str = ""
    key_path: str = ""
    password: str = ""  # Note: Use key-based auth in production
    timeout_seconds: float = 10.0


@dataclass
class PollingConfig:
    """How often and how much to collect."""

    interval_seconds: float = 1.0
    max_concurrent_polls: int = 2
    collect_cgroups: bool = True
    cgroup_root: str = "/sys/fs/cgroup"
    cgroup_max_depth: int = 8
    validate_os: bool = True


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size_mb: int = 10
    backup_count: int = 5


@dataclass
class Config:
    """Main configuration container."""

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """Load configuration from YAML file."""
        config_path = Path(path)
        if not config_path.exists():
            config = cls()
            config._apply_env_overrides()
            return config

        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        """Create config from dictionary."""
        config = cls()

        if "connection" in data:
            config.connection = ConnectionConfig(**data["connection"])

        if "polling" in data:
            config.polling = PollingConfig(**data["polling"])

        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

        # Override with environment variables
        config._apply_env_overrides()

        return config

    def _apply_env_overrides(self):
        """Apply environment variable overrides."""
        if os.getenv("RTOP_HOST"):
            self.connection.host = os.getenv("RTOP_HOST")
        if os.getenv("RTOP_PORT"):
            self.connection.port = int(os.getenv("RTOP_PORT"))
        if os.getenv("RTOP_USER"):
            self.connection.username = os.getenv("RTOP_USER")
        if os.getenv("RTOP_KEY_PATH"):
            self.connection.key_path = os.getenv("RTOP_KEY_PATH")

        if os.getenv("RTOP_INTERVAL"):
            self.polling.interval_seconds = float(os.getenv("RTOP_INTERVAL"))

        # Logging
        if os.getenv("LOG_LEVEL"):
            self.logging.level = os.getenv("LOG_LEVEL")

    def to_yaml(self, path: str):
        """Save configuration to YAML file. The password is never written."""
        data = {
            "connection": {
                "host": self.connection.host,
                "port": self.connection.port,
                "username": self.connection.username,
                "key_path": self.connection.key_path,
                "timeout_seconds": self.connection.timeout_seconds,
            },
            "polling": {
                "interval_seconds": self.polling.interval_seconds,
                "max_concurrent_polls": self.polling.max_concurrent_polls,
                "collect_cgroups": self.polling.collect_cgroups,
                "cgroup_root": self.polling.cgroup_root,
                "cgroup_max_depth": self.polling.cgroup_max_depth,
                "validate_os": self.polling.validate_os,
            },
            "logging": {
                "level": self.logging.level,
                "file_path": self.logging.file_path,
                "max_file_size_mb": self.logging.max_file_size_mb,
                "backup_count": self.logging.backup_count,
            },
        }

        with open(path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def get_default_config_path() -> str:
    """Get the default configuration file path."""
    # Check common locations
    candidates = [
        Path("config/rtop.yaml"),
        Path("rtop.yaml"),
        Path.home() / ".config" / "rtop" / "config.yaml",
        Path("/etc/rtop/config.yaml"),
    ]

    for path in candidates:
        if path.exists():
            return str(path)

    # Return the first candidate as default
    return str(candidates[0])
