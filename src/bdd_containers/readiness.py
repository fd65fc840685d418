"""Readiness strategies for freshly started containers.

A container is usable once its strategy says so:

- LogPattern: a literal (or regex) shows up in the combined log output
- PortListening: a TCP connect to the published port succeeds
- HttpHealth: an HTTP GET on the published port returns the expected status
- FixedDelay: a fixed sleep; cannot tell a slow service from a broken one

Every sleep and probe is an await, so cancelling the scenario stops the wait
immediately.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Union

import httpx

from .engine.base import LiveContainer, normalize_port
from .errors import ReadinessTimeoutError
from .shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_STARTUP_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 0.1
CONNECT_TIMEOUT = 1.0


class ReadinessState(Enum):
    """Progress of a readiness wait."""

    STARTING = "starting"
    WAITING = "waiting"
    READY = "ready"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class LogPattern:
    """Wait until ``pattern`` appears in the logs ``occurrences`` times."""

    pattern: str
    timeout: float = DEFAULT_STARTUP_TIMEOUT
    regex: bool = False
    occurrences: int = 1

    def count(self, output: str) -> int:
        """Number of matches of the pattern in ``output``."""
        if self.regex:
            return len(re.findall(self.pattern, output, flags=re.MULTILINE))
        return output.count(self.pattern)


@dataclass(frozen=True)
class PortListening:
    """Wait until the published counterpart of ``port`` accepts TCP connections."""

    port: str
    timeout: float = DEFAULT_STARTUP_TIMEOUT


@dataclass(frozen=True)
class HttpHealth:
    """Wait until ``GET http://host:<mapped port><path>`` returns ``status``."""

    port: str
    path: str = "/"
    status: int = 200
    timeout: float = DEFAULT_STARTUP_TIMEOUT


@dataclass(frozen=True)
class FixedDelay:
    """Sleep for ``duration`` seconds, then consider the container ready."""

    duration: float


WaitStrategy = Union[LogPattern, PortListening, HttpHealth, FixedDelay]


def describe(strategy: WaitStrategy) -> str:
    """Short human-readable description used in logs and errors."""
    if isinstance(strategy, LogPattern):
        return f"log {strategy.pattern!r}"
    if isinstance(strategy, PortListening):
        return f"port {normalize_port(strategy.port)}"
    if isinstance(strategy, HttpHealth):
        return f"http {normalize_port(strategy.port)}{strategy.path} -> {strategy.status}"
    return f"delay {strategy.duration}s"


async def _port_open(host: str, port: int, timeout: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class ReadinessWaiter:
    """Runs one wait strategy against one container."""

    def __init__(self, strategy: WaitStrategy, poll_interval: float = DEFAULT_POLL_INTERVAL):
        """Initialize the waiter.

        Args:
            strategy: Strategy deciding when the container is ready
            poll_interval: Seconds between two probes
        """
        self.strategy = strategy
        self.poll_interval = poll_interval
        self._state = ReadinessState.STARTING
        self.attempts = 0

    @property
    def state(self) -> ReadinessState:
        """Current state of the wait."""
        return self._state

    async def wait(self, container: LiveContainer) -> None:
        """Block until the container is ready.

        Raises:
            ReadinessTimeoutError: If the signal is not observed in time
            ProvisioningError: If the engine cannot report logs, host or port
        """
        self._state = ReadinessState.WAITING
        strategy = self.strategy

        if isinstance(strategy, FixedDelay):
            logger.info("readiness_fixed_delay", container=container.name, seconds=strategy.duration)
            await asyncio.sleep(strategy.duration)
            self._state = ReadinessState.READY
            return

        if isinstance(strategy, LogPattern):
            await self._poll(container, strategy.timeout, self._log_probe(container, strategy))
        elif isinstance(strategy, PortListening):
            host = await container.host()
            port = int(await container.mapped_port(strategy.port))
            await self._poll(container, strategy.timeout, self._port_probe(host, port))
        elif isinstance(strategy, HttpHealth):
            host = await container.host()
            port = await container.mapped_port(strategy.port)
            url = f"http://{host}:{port}{strategy.path}"
            async with httpx.AsyncClient(timeout=CONNECT_TIMEOUT) as client:
                await self._poll(container, strategy.timeout, self._http_probe(client, url, strategy.status))
        else:
            raise TypeError(f"Unknown wait strategy: {strategy!r}")

    def _log_probe(self, container: LiveContainer, strategy: LogPattern):
        async def probe() -> bool:
            output = await container.logs()
            return strategy.count(output) >= strategy.occurrences

        return probe

    def _port_probe(self, host: str, port: int):
        async def probe() -> bool:
            return await _port_open(host, port, CONNECT_TIMEOUT)

        return probe

    def _http_probe(self, client: httpx.AsyncClient, url: str, status: int):
        async def probe() -> bool:
            try:
                response = await client.get(url)
            except httpx.HTTPError:
                return False
            return response.status_code == status

        return probe

    async def _poll(self, container: LiveContainer, timeout: float, probe) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            self.attempts += 1
            if await probe():
                self._state = ReadinessState.READY
                logger.info(
                    "container_ready",
                    container=container.name,
                    strategy=describe(self.strategy),
                    attempts=self.attempts,
                )
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                self._state = ReadinessState.TIMED_OUT
                raise ReadinessTimeoutError(
                    message=(
                        f"Container {container.name} not ready after {timeout}s "
                        f"waiting for {describe(self.strategy)}"
                    ),
                    data={"container_id": container.id, "attempts": self.attempts},
                    timeout=timeout,
                )
            await asyncio.sleep(min(self.poll_interval, remaining))
