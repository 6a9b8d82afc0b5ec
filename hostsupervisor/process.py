"""
Process supervisor for a host daemon.

Installs, starts, stops and reports on one detached daemon per (name, port).
The daemon outlives the supervisor invocation that started it; the PID record
on disk is what ties later invocations back to it.

There is no lock around the "check port, then spawn" sequence. Two concurrent
starts for the same port can both spawn; the loser fails to bind and times out.
"""

import logging
import os
import signal
import socket
import subprocess
import time
from collections import deque

import httpx
import psutil

from . import installer
from .config import Config
from .config import config as default_config
from .errors import PortConflictError, SignalError, StartupTimeoutError, SupervisorError
from .models import (
    CHROMEDRIVER,
    DaemonProfile,
    PortOwner,
    ProcessRecord,
    RecordStore,
    StartResult,
    StatusReport,
    SupervisorState,
)
from .probe import LOOPBACK, local_url, probe, published_url, wait_until_ready

logger = logging.getLogger(__name__)

# Allowed drift between a recorded and a live process start time
CREATE_TIME_TOLERANCE = 1.0

# Seconds to wait for a SIGKILLed process to disappear
KILL_TIMEOUT = 1.0


def pid_alive(pid: int, create_time: float = None) -> bool:
    """
    Check a pid without signalling it.

    Zombies count as dead. When ``create_time`` is given, a live process that
    started at a different time is a recycled pid and also counts as dead.
    """
    try:
        proc = psutil.Process(pid)
        if proc.status() == psutil.STATUS_ZOMBIE:
            return False
        if create_time is not None and abs(proc.create_time() - create_time) > CREATE_TIME_TOLERANCE:
            return False
        return True
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied:
        # Exists but belongs to someone else
        return True


def process_create_time(pid: int) -> float | None:
    try:
        return psutil.Process(pid).create_time()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return None


def find_port_owner(port: int) -> PortOwner | None:
    """Return whatever is listening on ``port``, or None if it is free."""
    try:
        connections = psutil.net_connections(kind="tcp")
    except psutil.AccessDenied:
        # macOS needs root to list every socket; scan the processes we can see
        return _scan_processes(port) or _connect_check(port)

    for conn in connections:
        if _is_listener(conn, port):
            return _owner(port, conn.pid)

    return None


def _is_listener(conn, port: int) -> bool:
    return conn.status == psutil.CONN_LISTEN and bool(conn.laddr) and conn.laddr.port == port


def _owner(port: int, pid: int | None) -> PortOwner:
    owner = PortOwner(port=port, pid=pid)
    if pid:
        try:
            proc = psutil.Process(pid)
            owner.name = proc.name()
            owner.cmdline = proc.cmdline()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    return owner


def _scan_processes(port: int) -> PortOwner | None:
    for proc in psutil.process_iter():
        try:
            connections = proc.net_connections(kind="tcp")
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
        if any(_is_listener(conn, port) for conn in connections):
            return _owner(port, proc.pid)
    return None


def _connect_check(port: int) -> PortOwner | None:
    try:
        with socket.create_connection((LOOPBACK, port), timeout=0.5):
            return PortOwner(port=port)
    except OSError:
        return None


def process_metrics(pid: int) -> dict:
    """Current resource usage of the daemon and its children."""
    try:
        proc = psutil.Process(pid)
        cpu_percent = proc.cpu_percent(interval=0.1)
        memory_mb = proc.memory_info().rss / 1024 / 1024
        uptime = time.time() - proc.create_time()

        child_count = 0
        try:
            children = proc.children(recursive=True)
            child_count = len(children)
            for child in children:
                memory_mb += child.memory_info().rss / 1024 / 1024
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return {}

    return {
        "cpu_percent": round(cpu_percent, 1),
        "memory_mb": round(memory_mb, 1),
        "child_processes": child_count,
        "uptime_seconds": round(uptime, 1),
    }


class DaemonSupervisor:
    """Supervises one detached daemon bound to one port."""

    def __init__(self, profile: DaemonProfile = CHROMEDRIVER, port: int = None, cfg: Config = None):
        self.config = cfg or default_config
        self.port = port or self.config.port
        self.profile = profile.with_binary(self.config.binary) if self.config.binary else profile
        self.log_path = self.config.log_path(self.profile.name, self.port)
        self.records = RecordStore(
            self.config.record_path(self.profile.name, self.port),
            name=self.profile.name,
            port=self.port,
            log_path=self.log_path,
        )
        # Lifecycle as seen by this invocation; STARTING only inside start()
        self.state = SupervisorState.UNINSTALLED

    @property
    def name(self) -> str:
        return self.profile.name

    @property
    def url(self) -> str:
        return published_url(self.config.host_alias, self.port)

    @property
    def local_url(self) -> str:
        return local_url(self.port)

    @property
    def probe_url(self) -> str:
        return local_url(self.port, self.profile.probe_path)

    def install(self) -> str:
        """Ensure the daemon binary is runnable. Returns its path."""
        path = installer.install(self.profile)
        if self.profile.needs_browser:
            installer.ensure_browser()
        if self.state == SupervisorState.UNINSTALLED:
            self.state = SupervisorState.INSTALLED
        return path

    def get_record(self) -> ProcessRecord | None:
        """The record of the live instance, discarding a stale one."""
        record = self.records.load()
        if record is None:
            return None

        if pid_alive(record.pid, record.create_time):
            return record

        logger.info(f"Removing stale record {self.records.path} (pid {record.pid} is gone)")
        self.records.delete()
        return None

    def is_running(self) -> bool:
        return self.get_record() is not None

    def start(self) -> StartResult:
        """
        Start the daemon on the configured port and block until it is ready.

        A live instance for this port is reported as is. Raises
        PortConflictError when another process holds the port and
        StartupTimeoutError when the readiness probe never succeeds.
        """
        binary = self.install()

        record = self.get_record()
        if record:
            self.state = SupervisorState.RUNNING
            logger.info(f"Already running (pid {record.pid}) on port {self.port}")
            return StartResult(
                pid=record.pid,
                port=self.port,
                url=self.url,
                local_url=self.local_url,
                already_running=True,
            )

        owner = find_port_owner(self.port)
        if owner:
            raise PortConflictError(self.port, owner)

        logger.info(f"Starting on port {self.port} (log: {self.log_path})")
        process = self._spawn(binary)

        self.records.save(
            ProcessRecord(
                name=self.name,
                pid=process.pid,
                port=self.port,
                log_path=self.log_path,
                create_time=process_create_time(process.pid),
            )
        )

        self.state = SupervisorState.STARTING
        logger.debug(f"{self.name} (pid {process.pid}) is {self.state.value}, waiting for {self.probe_url}")

        started = time.monotonic()
        health = wait_until_ready(
            self.probe_url,
            attempts=self.config.probe_attempts,
            interval=self.config.probe_interval,
            timeout=self.config.probe_timeout,
            should_continue=lambda: process.poll() is None,
        )

        if health is None:
            waited = time.monotonic() - started
            alive = process.poll() is None
            if not alive:
                self.records.delete()
                self.state = SupervisorState.STOPPED
            raise StartupTimeoutError(self.name, self.port, alive, self.tail_log(), waited)

        self.state = SupervisorState.RUNNING
        logger.info(f"Running (pid {process.pid}) on port {self.port}")
        logger.info(f"From Docker containers: {self.url}")
        return StartResult(
            pid=process.pid,
            port=self.port,
            url=self.url,
            local_url=self.local_url,
            health=health,
        )

    def stop(self) -> bool:
        """
        Terminate the tracked instance.

        Returns False if nothing was running. The record is removed even when
        signalling fails; a signal error other than "no such process" is then
        raised as SignalError.
        """
        record = self.get_record()
        if record is None:
            self.state = SupervisorState.STOPPED
            logger.info("Not running")
            return False

        logger.info(f"Stopping (pid {record.pid})...")
        try:
            self._terminate(record.pid)
        except OSError as e:
            raise SignalError(record.pid, e) from e
        finally:
            self.records.delete()
            self.state = SupervisorState.STOPPED

        logger.info("Stopped")
        return True

    def restart(self) -> StartResult:
        self.stop()
        return self.start()

    def status(self) -> StatusReport:
        """Liveness verdict plus best-effort health payload and metrics."""
        record = self.get_record()
        if record is None:
            installed = installer.find_binary(self.profile.binary) is not None
            self.state = SupervisorState.STOPPED if installed else SupervisorState.UNINSTALLED
            return StatusReport(
                state=self.state,
                port=self.port,
                url=self.url,
                local_url=self.local_url,
            )

        self.state = SupervisorState.RUNNING
        report = StatusReport(
            state=self.state,
            port=self.port,
            url=self.url,
            local_url=self.local_url,
            pid=record.pid,
            started_at=record.started_at,
            metrics=process_metrics(record.pid),
        )
        try:
            report.health = probe(self.probe_url, timeout=self.config.probe_timeout)
        except httpx.HTTPError as e:
            report.probe_error = str(e) or e.__class__.__name__
            logger.warning(f"Health probe failed: {report.probe_error}")
        return report

    def tail_log(self, lines: int = None) -> str:
        """Last lines of the daemon's captured output."""
        if lines is None:
            lines = self.config.log_tail_lines
        if lines <= 0:
            return ""
        try:
            with open(self.log_path, errors="replace") as f:
                return "".join(deque(f, maxlen=lines))
        except FileNotFoundError:
            return ""

    def _spawn(self, binary: str) -> subprocess.Popen:
        """Launch the daemon in its own session with output sent to the log."""
        self._rotate_log()
        cmd = [binary, *self.profile.launch_args(self.port)]
        try:
            with open(self.log_path, "wb") as log_file:
                return subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=log_file,
                    stderr=subprocess.STDOUT,
                    start_new_session=True,
                )
        except OSError as e:
            raise SupervisorError(f"Could not launch {binary}: {e}") from e

    def _rotate_log(self):
        """Keep the previous run's output as ``<log>.1``."""
        if self.log_path.exists() and self.log_path.stat().st_size > 0:
            os.replace(self.log_path, f"{self.log_path}.1")

    def _terminate(self, pid: int):
        """SIGTERM, then SIGKILL if the process outlives the stop timeout."""
        self._signal(pid, signal.SIGTERM)
        try:
            psutil.Process(pid).wait(timeout=self.config.stop_timeout)
        except psutil.NoSuchProcess:
            return
        except psutil.TimeoutExpired:
            logger.warning(f"{self.name} (pid {pid}) did not stop gracefully, forcing kill")
            self._signal(pid, signal.SIGKILL)
            try:
                psutil.Process(pid).wait(timeout=KILL_TIMEOUT)
            except (psutil.NoSuchProcess, psutil.TimeoutExpired):
                pass

    def _signal(self, pid: int, sig: int):
        # A daemon we spawned leads its own process group; signal the group
        try:
            if os.getpgid(pid) == pid:
                os.killpg(pid, sig)
            else:
                os.kill(pid, sig)
        except ProcessLookupError:
            pass
