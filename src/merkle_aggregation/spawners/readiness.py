"""Bounded readiness probing for freshly started workers."""

from __future__ import annotations

import asyncio
import logging
import socket

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

logger = logging.getLogger(__name__)


def find_unused_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a free TCP port on ``host``."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


def split_address(address: str) -> tuple[str, int]:
    """Return (host, port) of an ``http://host:port`` worker address."""
    url = httpx.URL(address)
    if not url.host or url.port is None:
        raise ValueError(f"Worker address must include host and port: {address!r}")
    return url.host, url.port


async def _probe(host: str, port: int, timeout: float) -> None:
    _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    writer.close()
    await writer.wait_closed()


async def wait_until_reachable(
    address: str, timeout: float, interval: float = 0.25
) -> None:
    """Wait until ``address`` accepts TCP connections.

    Raises:
        TimeoutError: If the port is still closed after ``timeout`` seconds.
    """
    host, port = split_address(address)
    retrying = AsyncRetrying(
        retry=retry_if_exception_type((OSError, asyncio.TimeoutError)),
        wait=wait_fixed(interval),
        stop=stop_after_delay(timeout),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                await _probe(host, port, max(interval, 1.0))
    except (OSError, asyncio.TimeoutError) as exc:
        raise TimeoutError(
            f"{address} not reachable after {timeout}s: {exc}"
        ) from exc
    logger.debug("Worker %s is accepting connections", address)
