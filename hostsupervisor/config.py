"""
Configuration for the host supervisor.

Loads settings from environment variables with sensible defaults.
Record and log files live in the temporary directory (``$TMPDIR``) so that
every invocation finds the same files.
"""

import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


@dataclass
class Config:
    """Supervisor configuration."""

    # Daemon
    binary: str = os.environ.get("CHROMEDRIVER_BIN")  # overrides the profile binary
    port: int = int(os.environ.get("CHROMEDRIVER_PORT", "9515"))

    # Host name the container runtime resolves back to the host's localhost
    host_alias: str = os.environ.get("CHROMEDRIVER_HOST_ALIAS", "host.docker.internal")

    # Paths
    state_dir: Path = Path(tempfile.gettempdir())
    supervisor_log: Path = None

    # Readiness polling
    probe_interval: float = float(os.environ.get("PROBE_INTERVAL", "0.2"))
    probe_attempts: int = int(os.environ.get("PROBE_ATTEMPTS", "25"))
    probe_timeout: float = float(os.environ.get("PROBE_TIMEOUT", "1.0"))

    # Process management
    stop_timeout: float = float(os.environ.get("STOP_TIMEOUT", "3"))

    # Logging
    log_level: str = os.environ.get("HOSTSUPERVISOR_LOG_LEVEL", "INFO")
    log_tail_lines: int = int(os.environ.get("LOG_TAIL_LINES", "50"))
    log_max_bytes: int = int(os.environ.get("LOG_MAX_BYTES", str(1024 * 1024)))  # 1MB
    log_backup_count: int = int(os.environ.get("LOG_BACKUP_COUNT", "3"))

    def __post_init__(self):
        """Initialize derived paths and create the state directory."""
        self.state_dir = Path(self.state_dir)
        if self.supervisor_log is None:
            self.supervisor_log = self.state_dir / "hostsupervisor.log"

        self.state_dir.mkdir(parents=True, exist_ok=True)

    def record_path(self, name: str, port: int) -> Path:
        """PID record file for a (daemon, port) pair."""
        return self.state_dir / f"{name}-{port}.pid"

    def log_path(self, name: str, port: int) -> Path:
        """Captured output of a (daemon, port) pair."""
        return self.state_dir / f"{name}-{port}.log"


config = Config()
