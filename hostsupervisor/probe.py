"""
Readiness and health probing.

The daemon is ready once a plain GET against its status endpoint on the
loopback address answers 2xx. Start polls this in a bounded loop; status
calls it once.
"""

import logging
import time
from typing import Callable, Optional

import httpx

logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"


def local_url(port: int, path: str = "") -> str:
    """Address the host uses to reach the daemon."""
    return f"http://{LOOPBACK}:{port}{path}"


def published_url(host_alias: str, port: int) -> str:
    """Address containers use to reach the daemon on the host."""
    return f"http://{host_alias}:{port}"


def probe(url: str, timeout: float = 1.0, client: httpx.Client = None) -> dict:
    """
    Query the status endpoint once.

    Returns the decoded JSON payload, or ``{"text": ...}`` for a non-JSON body.
    Raises httpx.HTTPError on connection failure or a non-2xx response.
    """
    if client is None:
        # Loopback only; never route through a proxy from the environment
        response = httpx.get(url, timeout=timeout, trust_env=False)
    else:
        response = client.get(url, timeout=timeout)
    response.raise_for_status()

    try:
        payload = response.json()
    except ValueError:
        return {"text": response.text}
    return payload if isinstance(payload, dict) else {"value": payload}


def wait_until_ready(
    url: str,
    attempts: int,
    interval: float,
    timeout: float = 1.0,
    should_continue: Optional[Callable[[], bool]] = None,
    client: httpx.Client = None,
) -> dict | None:
    """
    Poll the status endpoint until it answers or the deadline passes.

    The deadline is ``attempts * interval`` seconds from the first attempt.
    ``should_continue`` is checked before every attempt so the loop can stop
    early, e.g. when the process has died. Returns the health payload, or None
    on timeout.
    """
    deadline = time.monotonic() + attempts * interval

    for attempt in range(1, attempts + 1):
        if should_continue is not None and not should_continue():
            logger.debug(f"Readiness polling of {url} stopped after {attempt - 1} attempt(s)")
            return None

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break

        try:
            return probe(url, timeout=min(timeout, remaining), client=client)
        except httpx.HTTPError as e:
            logger.debug(f"Readiness attempt {attempt}/{attempts} failed: {e}")

        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(interval, remaining))

    return None
