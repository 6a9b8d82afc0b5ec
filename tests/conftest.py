"""Shared fixtures: fake driver binaries, isolated config and supervisors.

The fake drivers are small Python programs behind a /bin/sh wrapper that
``exec``s them, so the pid the supervisor records is the daemon itself.
"""

from __future__ import annotations

import socket
import sys
import textwrap
from pathlib import Path

import pytest

from hostsupervisor import installer
from hostsupervisor.config import Config
from hostsupervisor.errors import SupervisorError
from hostsupervisor.models import CHROMEDRIVER
from hostsupervisor.process import DaemonSupervisor

_ARGS = """
import sys

port = 9515
for arg in sys.argv[1:]:
    if arg == "--version":
        print("FakeDriver 1.0.0")
        sys.exit(0)
    if arg.startswith("--port="):
        port = int(arg.split("=", 1)[1])
"""

_SERVER = """
import json
from http.server import BaseHTTPRequestHandler, HTTPServer


class Handler(BaseHTTPRequestHandler):
    def do_GET(self):
        if self.path != "/status":
            self.send_response(404)
            self.end_headers()
            return
        body = json.dumps(
            {"value": {"ready": True, "message": "FakeDriver ready for new sessions."}}
        ).encode()
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt, *args):
        print(fmt % args, flush=True)


server = HTTPServer(("127.0.0.1", port), Handler)
print(f"Starting FakeDriver on port {port}", flush=True)
server.serve_forever()
"""

DRIVERS = {
    # Answers GET /status like ChromeDriver does
    "ready": _ARGS + _SERVER,
    # Same, but ignores SIGTERM
    "stubborn": _ARGS + """
import signal

signal.signal(signal.SIGTERM, signal.SIG_IGN)
""" + _SERVER,
    # Stays alive but never listens
    "stuck": _ARGS + """
import time

print(f"Starting FakeDriver on port {port}", flush=True)
print("Waiting for browser...", flush=True)
while True:
    time.sleep(1)
""",
    # Dies right away
    "crash": _ARGS + """
print(f"Starting FakeDriver on port {port}", flush=True)
print("bind() failed: Cannot assign requested address", flush=True)
sys.exit(1)
""",
}


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def make_driver(tmp_path: Path):
    """Write a fake driver executable of the given kind and return its path."""

    def _make(kind: str = "ready") -> Path:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir(exist_ok=True)
        script = bin_dir / f"fakedriver_{kind}.py"
        script.write_text(textwrap.dedent(DRIVERS[kind]))

        wrapper = bin_dir / f"chromedriver-{kind}"
        wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
        wrapper.chmod(0o755)
        return wrapper

    return _make


@pytest.fixture
def make_config(tmp_path: Path, free_port: int, monkeypatch):
    # Lifecycle tests never install a browser
    monkeypatch.setattr(installer, "ensure_browser", lambda: True)

    def _make(binary: Path, **overrides) -> Config:
        settings = dict(
            binary=str(binary),
            port=free_port,
            host_alias="host.docker.internal",
            state_dir=tmp_path / "state",
            probe_interval=0.1,
            probe_attempts=50,
            probe_timeout=0.5,
            stop_timeout=5,
        )
        settings.update(overrides)
        return Config(**settings)

    return _make


@pytest.fixture
def make_supervisor(make_driver, make_config):
    """Build supervisors around fake drivers; stop whatever they left running."""
    created: list[DaemonSupervisor] = []

    def _make(kind: str = "ready", **overrides) -> DaemonSupervisor:
        cfg = make_config(make_driver(kind), **overrides)
        supervisor = DaemonSupervisor(CHROMEDRIVER, cfg=cfg)
        created.append(supervisor)
        return supervisor

    yield _make

    for supervisor in created:
        try:
            supervisor.stop()
        except SupervisorError:
            pass
