"""
Command line interface for the host supervisor.

One operation per subcommand: start (the default), stop, status, restart,
install and logs. Results go to stdout, diagnostics to stderr. Exit code is 0
on success or no-op and 1 on any failure; status exits 1 when not running.
"""

import argparse
import json
import logging
import sys
from logging.handlers import RotatingFileHandler

from .config import Config, config
from .errors import InstallationError, SignalError, StartupTimeoutError, SupervisorError
from .models import CHROMEDRIVER
from .process import DaemonSupervisor

logger = logging.getLogger(__name__)


def setup_logging(cfg: Config, verbose: bool = False):
    """Log to a rotating file and to stderr."""
    if logging.getLogger().handlers:
        return

    log_formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Rotating file handler (auto-compaction)
    file_handler = RotatingFileHandler(
        cfg.supervisor_log,
        maxBytes=cfg.log_max_bytes,
        backupCount=cfg.log_backup_count,
    )
    file_handler.setFormatter(log_formatter)
    file_handler.setLevel(logging.DEBUG)

    # Console handler
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(logging.Formatter(f"[{CHROMEDRIVER.name}] %(message)s"))
    console_handler.setLevel(logging.DEBUG if verbose else cfg.log_level.upper())

    logging.basicConfig(
        level=logging.DEBUG,
        handlers=[file_handler, console_handler],
    )


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hostsupervisor",
        description="Run ChromeDriver on the host, reachable from Docker containers",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to bind (default: $CHROMEDRIVER_PORT or 9515)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug output")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("start", help="Install if needed and start (default)")
    sub.add_parser("stop", help="Stop the running instance")
    p_status = sub.add_parser("status", help="Exit 0 and print health if running, else exit 1")
    p_status.add_argument("--json", action="store_true", help="Print the full status report as JSON")
    sub.add_parser("restart", help="Stop, then start")
    sub.add_parser("install", help="Install the binary if missing")

    p_logs = sub.add_parser("logs", help="Show the captured daemon log")
    p_logs.add_argument("-n", "--lines", type=positive_int, default=None, help="Number of lines")

    return parser


def _report_error(e: SupervisorError):
    logger.error(str(e))
    if isinstance(e, InstallationError) and e.output:
        sys.stderr.write(e.output.rstrip() + "\n")
    if isinstance(e, StartupTimeoutError) and e.log_tail:
        sys.stderr.write(e.log_tail if e.log_tail.endswith("\n") else e.log_tail + "\n")


def do_start(supervisor: DaemonSupervisor) -> int:
    try:
        result = supervisor.start()
    except SupervisorError as e:
        _report_error(e)
        return 1
    print(result.url)
    return 0


def do_stop(supervisor: DaemonSupervisor) -> int:
    try:
        supervisor.stop()
    except SignalError as e:
        _report_error(e)
        return 1
    return 0


def do_status(supervisor: DaemonSupervisor, as_json: bool = False) -> int:
    report = supervisor.status()
    if as_json:
        print(json.dumps(report.to_dict(), indent=4))
        return 0 if report.running else 1

    if not report.running:
        logger.info("Not running")
        return 1

    logger.info(f"Running (pid {report.pid}) on port {report.port}")
    if report.health is not None:
        print(json.dumps(report.health, indent=4))
    return 0


def do_restart(supervisor: DaemonSupervisor) -> int:
    if do_stop(supervisor) != 0:
        return 1
    return do_start(supervisor)


def do_install(supervisor: DaemonSupervisor) -> int:
    try:
        print(supervisor.install())
    except InstallationError as e:
        _report_error(e)
        return 1
    return 0


def do_logs(supervisor: DaemonSupervisor, lines: int = None) -> int:
    sys.stdout.write(supervisor.tail_log(lines))
    return 0


def main(argv: list[str] = None, cfg: Config = None) -> int:
    cfg = cfg or config
    args = build_parser().parse_args(argv)
    setup_logging(cfg, verbose=args.verbose)

    supervisor = DaemonSupervisor(CHROMEDRIVER, port=args.port, cfg=cfg)
    command = args.command or "start"

    if command == "start":
        return do_start(supervisor)
    if command == "stop":
        return do_stop(supervisor)
    if command == "status":
        return do_status(supervisor, as_json=args.json)
    if command == "restart":
        return do_restart(supervisor)
    if command == "install":
        return do_install(supervisor)
    return do_logs(supervisor, args.lines)


if __name__ == "__main__":
    sys.exit(main())
