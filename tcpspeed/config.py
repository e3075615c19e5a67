"""
Configuration Management

Handles loading configuration from environment variables and config files.
"""

import os
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional
import json

from dotenv import load_dotenv

from .transfer.protocol import MB
from .transfer.sampler import MEASURE_WINDOWS, WATCHDOG_SECONDS


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, str(default)).lower() in ('1', 'true', 'yes')


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value else default


@dataclass
class Config:
    """
    Speedtest client configuration.

    Configuration priority (highest to lowest):
    1. Command-line options
    2. Environment variables (TCPSPEED_*)
    3. Config file (JSON)
    4. Default values
    """
    # Server selection
    host: Optional[str] = None
    server_id: Optional[str] = None
    use_all_servers: bool = False

    # Test sizes
    upload_bytes: int = 40 * MB
    download_bytes: int = 128 * MB

    # Runs
    connections: Optional[int] = None  # None: one connection, no fan-out
    count: Optional[int] = None        # None: 3 for ping, 1 otherwise
    pause_between_runs: float = 0.5

    # Timeouts (seconds)
    connect_timeout: float = 10.0
    http_timeout: float = 10.0

    # Live sampling
    sample_windows: int = MEASURE_WINDOWS
    watchdog: float = WATCHDOG_SECONDS

    # Logging
    log_file: Optional[Path] = None
    log_level: str = 'WARNING'

    def runs_for(self, command: str) -> int:
        """Number of repetitions for a test command."""
        if self.count is not None:
            return self.count
        return 3 if command == 'ping' else 1

    def bytes_for(self, command: str) -> int:
        return self.upload_bytes if command == 'upload' else self.download_bytes

    @classmethod
    def from_env(cls) -> 'Config':
        """Load configuration from environment variables."""
        load_dotenv()

        config = cls()

        config.host = os.getenv('TCPSPEED_HOST', config.host)
        config.server_id = os.getenv('TCPSPEED_SERVER_ID', config.server_id)
        config.use_all_servers = _env_bool('TCPSPEED_ALL_SERVERS', config.use_all_servers)

        config.upload_bytes = _env_int('TCPSPEED_UPLOAD_BYTES', config.upload_bytes)
        config.download_bytes = _env_int('TCPSPEED_DOWNLOAD_BYTES', config.download_bytes)
        config.connections = _env_int('TCPSPEED_CONNECTIONS', config.connections)
        config.count = _env_int('TCPSPEED_COUNT', config.count)

        config.connect_timeout = float(
            os.getenv('TCPSPEED_CONNECT_TIMEOUT', config.connect_timeout)
        )

        log_file = os.getenv('TCPSPEED_LOG_FILE')
        if log_file:
            config.log_file = Path(log_file)
        config.log_level = os.getenv('TCPSPEED_LOG_LEVEL', config.log_level)

        return config

    @classmethod
    def from_file(cls, path: Path) -> 'Config':
        """Load configuration from a JSON file."""
        if not path.exists():
            return cls()

        with open(path) as f:
            data = json.load(f)

        config = cls()
        known = {f.name for f in fields(cls)}
        for key, value in data.items():
            if key in known:
                setattr(config, key, value)

        if config.log_file is not None:
            config.log_file = Path(config.log_file)

        return config

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if self.log_file is not None:
            data['log_file'] = str(self.log_file)
        return data

    def save(self, path: Path):
        """Save configuration to a JSON file."""
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_path: Optional[Path] = None) -> Config:
    """
    Load configuration from file and environment.

    Environment variables override file settings.
    """
    config = Config()

    if config_path and config_path.exists():
        config = Config.from_file(config_path)

    env_config = Config.from_env()
    defaults = Config()

    # Merge (env takes precedence for non-default values)
    for f in fields(Config):
        env_val = getattr(env_config, f.name)
        if env_val != getattr(defaults, f.name):
            setattr(config, f.name, env_val)

    return config
