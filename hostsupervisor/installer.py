"""
Daemon installation bootstrap.

Installation is two separate steps: acquiring the package through Homebrew,
then remediating the installed binary so the OS lets it run (on macOS, clearing
the quarantine attribute). Each step can be retried on its own.
"""

import logging
import os
import platform
import shutil
import subprocess
from pathlib import Path

from .errors import InstallationError, InstallReason
from .models import DaemonProfile

logger = logging.getLogger(__name__)

QUARANTINE_ATTRIBUTE = "com.apple.quarantine"
HOMEBREW_PREFIXES = ("/opt/homebrew/bin", "/usr/local/bin")
CHROME_APP = Path("/Applications/Google Chrome.app")
CHROME_BINARIES = ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser")
GOOGLE_CHROME = DaemonProfile(
    name="google-chrome",
    binary="google-chrome",
    package="google-chrome",
    cask=True,
)


def is_macos() -> bool:
    return platform.system() == "Darwin"


def find_binary(binary: str) -> str | None:
    """Resolve a binary on PATH, or accept an executable path as given."""
    if os.sep in binary:
        path = Path(binary)
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
        return None
    return shutil.which(binary)


def binary_version(path: str, profile: DaemonProfile) -> str:
    """First line of the binary's version output, or empty string."""
    try:
        result = subprocess.run(
            [path, *profile.version_args],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Could not query {path} version: {e}")
        return ""
    lines = (result.stdout or result.stderr).strip().splitlines()
    return lines[0] if lines else ""


def acquire(profile: DaemonProfile):
    """Install a profile's package with Homebrew."""
    brew = shutil.which("brew")
    if not brew:
        raise InstallationError(
            InstallReason.PACKAGE_MANAGER_UNAVAILABLE,
            f"Homebrew not found. Install {profile.package} manually:\n"
            f"  brew install {'--cask ' if profile.cask else ''}{profile.package}",
        )

    cmd = [brew, "install"]
    if profile.cask:
        cmd.append("--cask")
    cmd.append(profile.package)

    logger.info(f"{profile.name} not found, installing via Homebrew...")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise InstallationError(
            InstallReason.INSTALL_FAILED,
            f"Could not run {' '.join(cmd)}: {e}",
        ) from e

    if result.returncode != 0:
        raise InstallationError(
            InstallReason.INSTALL_FAILED,
            f"{' '.join(cmd)} exited with code {result.returncode}",
            output=(result.stdout or "") + (result.stderr or ""),
        )


def locate_installed(profile: DaemonProfile) -> str | None:
    """Find a freshly installed binary, including Homebrew's default prefixes."""
    path = find_binary(profile.binary)
    if path:
        return path
    for prefix in HOMEBREW_PREFIXES:
        candidate = Path(prefix) / profile.binary
        if candidate.is_file():
            return str(candidate)
    return None


def remediate(path: str) -> bool:
    """
    Clear the macOS quarantine flag so the binary may run.

    Returns True if the attribute was removed. A binary without the attribute
    is left as is.
    """
    if not is_macos():
        return False

    logger.info("Removing macOS quarantine attribute...")
    try:
        result = subprocess.run(
            ["xattr", "-d", QUARANTINE_ATTRIBUTE, path],
            capture_output=True,
            text=True,
        )
    except OSError as e:
        logger.warning(f"Could not run xattr on {path}: {e}")
        return False

    if result.returncode != 0:
        logger.debug(f"No quarantine attribute on {path}: {result.stderr.strip()}")
        return False
    return True


def browser_present() -> bool:
    if is_macos() and CHROME_APP.exists():
        return True
    return any(shutil.which(name) for name in CHROME_BINARIES)


def ensure_browser() -> bool:
    """
    Make sure Google Chrome is installed; the driver needs it to open sessions.

    On macOS a missing browser is installed with Homebrew. Elsewhere, or when
    Homebrew is missing, a warning is logged and the caller carries on.
    Raises InstallationError if the Homebrew install itself fails.
    """
    if browser_present():
        logger.info("Google Chrome found")
        return True

    if not is_macos():
        logger.warning("Google Chrome not found. Install it for your distro before creating sessions")
        return False

    try:
        acquire(GOOGLE_CHROME)
    except InstallationError as e:
        if e.reason != InstallReason.PACKAGE_MANAGER_UNAVAILABLE:
            raise
        logger.warning("Google Chrome not found. Install it with: brew install --cask google-chrome")
        return False

    logger.info("Installed Google Chrome")
    return True


def install(profile: DaemonProfile) -> str:
    """
    Ensure the daemon binary is present and runnable.

    Returns the resolved binary path. Raises InstallationError when the
    package manager is missing or the install does not produce a binary.
    """
    path = find_binary(profile.binary)
    if path:
        logger.info(f"Found {profile.name}: {binary_version(path, profile) or path}")
        return path

    acquire(profile)

    installed = locate_installed(profile)
    if installed:
        remediate(installed)

    path = find_binary(profile.binary)
    if not path:
        raise InstallationError(
            InstallReason.INSTALL_FAILED,
            f"Installation failed: {profile.binary} not in PATH",
        )

    logger.info(f"Installed: {binary_version(path, profile) or path}")
    return path
