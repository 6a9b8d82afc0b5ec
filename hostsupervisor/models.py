"""
Data models for the supervisor.

The daemon profile describes what to launch. The process record is the only
persisted state: a small JSON file naming the pid, port and log file of the
instance the supervisor owns. Result types carry what start and status report
back to the CLI.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class SupervisorState(Enum):
    UNINSTALLED = "uninstalled"
    INSTALLED = "installed"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


@dataclass
class DaemonProfile:
    """How to install, launch and probe a daemon."""

    name: str
    binary: str
    package: str
    cask: bool = False
    probe_path: str = "/status"
    needs_browser: bool = False
    version_args: list[str] = field(default_factory=lambda: ["--version"])

    def launch_args(self, port: int) -> list[str]:
        """Flags that bind the daemon to ``port`` and open it to any origin."""
        return [
            f"--port={port}",
            "--allowed-ips=",
            "--allowed-origins=*",
        ]

    def with_binary(self, binary: str) -> "DaemonProfile":
        return DaemonProfile(
            name=self.name,
            binary=binary,
            package=self.package,
            cask=self.cask,
            probe_path=self.probe_path,
            needs_browser=self.needs_browser,
            version_args=list(self.version_args),
        )


CHROMEDRIVER = DaemonProfile(
    name="chromedriver",
    binary="chromedriver",
    package="chromedriver",
    cask=True,
    needs_browser=True,
)


class ProcessRecord(BaseModel):
    """Persisted identity of the daemon instance the supervisor owns."""

    name: str
    pid: int = Field(gt=0)
    port: int = Field(gt=0, lt=65536)
    log_path: Path
    started_at: datetime = Field(default_factory=datetime.now)
    # OS start time of the pid, used to tell a recycled pid apart
    create_time: Optional[float] = None


class RecordStore:
    """Reads and writes the PID record for one (daemon, port) pair."""

    def __init__(self, path: Path, name: str, port: int, log_path: Path):
        self.path = Path(path)
        self.name = name
        self.port = port
        self.log_path = Path(log_path)

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> ProcessRecord | None:
        """
        Load the record, or None if there is none.

        A file holding only a pid (as written by a shell launcher) is read as a
        record for this port. Unreadable files are removed.
        """
        try:
            text = self.path.read_text().strip()
        except FileNotFoundError:
            return None

        try:
            if text.isdigit():
                return ProcessRecord(
                    name=self.name,
                    pid=int(text),
                    port=self.port,
                    log_path=self.log_path,
                )
            return ProcessRecord.model_validate_json(text)
        except ValidationError as e:
            logger.warning(f"Discarding invalid record {self.path}: {e.error_count()} error(s)")
            self.delete()
            return None

    def save(self, record: ProcessRecord):
        """Atomically write the record."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        try:
            temp_path.write_text(record.model_dump_json(indent=2))
            temp_path.replace(self.path)
        finally:
            temp_path.unlink(missing_ok=True)

    def delete(self):
        self.path.unlink(missing_ok=True)


@dataclass
class PortOwner:
    """A process found listening on a port."""

    port: int
    pid: Optional[int] = None
    name: Optional[str] = None
    cmdline: list[str] = field(default_factory=list)


@dataclass
class StartResult:
    """Outcome of a successful start."""

    pid: int
    port: int
    url: str
    local_url: str
    already_running: bool = False
    health: Optional[dict] = None


@dataclass
class StatusReport:
    """Running/not-running verdict plus best-effort health and metrics."""

    state: SupervisorState
    port: int
    url: str
    local_url: str
    pid: Optional[int] = None
    started_at: Optional[datetime] = None
    health: Optional[dict] = None
    probe_error: Optional[str] = None
    metrics: dict = field(default_factory=dict)

    @property
    def running(self) -> bool:
        return self.state == SupervisorState.RUNNING

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "running": self.running,
            "pid": self.pid,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "port": self.port,
            "url": self.url,
            "local_url": self.local_url,
            "health": self.health,
            "probe_error": self.probe_error,
            "metrics": self.metrics,
        }
