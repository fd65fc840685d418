"""Container engine boundary.

The orchestrator only talks to an engine through the ContainerEngine
protocol. Engine methods are blocking; the live handles expose async
wrappers that run them in a worker thread so a scenario yields to its
siblings while the engine works.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Protocol, TypeVar, runtime_checkable

R = TypeVar("R")


class NetworkDriver(Enum):
    """Driver used to create a network."""

    BRIDGE = "bridge"
    OVERLAY = "overlay"
    MACVLAN = "macvlan"


def normalize_port(port: str | int) -> str:
    """Return a port in ``<number>/<proto>`` form, defaulting to tcp."""
    text = str(port).strip()
    if "/" in text:
        number, proto = text.split("/", 1)
        return f"{int(number)}/{proto.lower()}"
    return f"{int(text)}/tcp"


def port_number(port: str | int) -> str:
    """Return only the numeric part of a port (``"5432/tcp"`` -> ``"5432"``)."""
    return normalize_port(port).split("/", 1)[0]


async def create_owned(
    create: Callable[..., R], *args: Any, on_created: Callable[[R], None] | None = None
) -> R:
    """Run a blocking engine creation call in a worker thread.

    A cancelled await cannot stop the thread, so on cancellation this waits
    for the call to finish and still hands the created resource to
    ``on_created`` before re-raising. The caller can then clean it up.
    """
    task = asyncio.ensure_future(asyncio.to_thread(create, *args))
    try:
        result = await asyncio.shield(task)
    except asyncio.CancelledError:
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                continue
            except Exception:
                break
        created = not task.cancelled() and task.exception() is None
        if created and on_created is not None:
            on_created(task.result())
        raise

    if on_created is not None:
        on_created(result)
    return result


@dataclass(frozen=True)
class ContainerFile:
    """File shipped into a container before it starts."""

    content: bytes = field(repr=False)
    container_path: str
    mode: int = 0o644


@dataclass(frozen=True)
class BuildContext:
    """Directory an image is built from instead of pulling one."""

    context: Path
    dockerfile: str = "Dockerfile"
    build_args: dict[str, str] = field(default_factory=dict)
    keep_image: bool = False


@dataclass(frozen=True)
class ContainerRequest:
    """Everything an engine needs to create and start one container."""

    image: str | None = None
    build: BuildContext | None = None
    exposed_ports: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    network: str | None = None
    network_aliases: tuple[str, ...] = ()
    files: tuple[ContainerFile, ...] = ()
    labels: dict[str, str] = field(default_factory=dict)
    command: tuple[str, ...] | None = None
    name: str | None = None


@dataclass(frozen=True)
class NetworkRequest:
    """Everything an engine needs to create one network."""

    name: str
    driver: NetworkDriver = NetworkDriver.BRIDGE
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class LiveNetwork:
    """Handle to a network created by an engine."""

    id: str
    name: str
    engine: ContainerEngine = field(repr=False, compare=False)
    removed: bool = False

    async def remove(self) -> None:
        """Remove the network; calling it again is a no-op."""
        if self.removed:
            return
        await asyncio.to_thread(self.engine.remove_network, self)
        self.removed = True


@dataclass
class LiveContainer:
    """Handle to a started container created by an engine."""

    id: str
    name: str
    request: ContainerRequest = field(repr=False)
    engine: ContainerEngine = field(repr=False, compare=False)
    image_id: str | None = None
    terminated: bool = False

    @property
    def network_aliases(self) -> tuple[str, ...]:
        """Aliases the container answers to on its attached network."""
        return self.request.network_aliases

    async def host(self) -> str:
        """Host the test process uses to reach published ports."""
        return await asyncio.to_thread(self.engine.host, self)

    async def mapped_port(self, port: str | int) -> str:
        """Host port published for the declared container ``port``."""
        return await asyncio.to_thread(self.engine.mapped_port, self, normalize_port(port))

    async def logs(self) -> str:
        """Combined stdout/stderr output so far."""
        return await asyncio.to_thread(self.engine.logs, self)

    async def terminate(self) -> None:
        """Stop and remove the container; calling it again is a no-op."""
        if self.terminated:
            return
        await asyncio.to_thread(self.engine.terminate, self)
        self.terminated = True


@runtime_checkable
class ContainerEngine(Protocol):
    """Capability set the orchestrator needs from a container runtime."""

    def create_container(self, request: ContainerRequest) -> LiveContainer:
        """Create, populate and start a container."""
        ...

    def terminate(self, container: LiveContainer) -> None:
        """Stop and remove a container."""
        ...

    def host(self, container: LiveContainer) -> str:
        """Host under which the container's published ports are reachable."""
        ...

    def mapped_port(self, container: LiveContainer, port: str) -> str:
        """Host port bound to a declared container port."""
        ...

    def logs(self, container: LiveContainer) -> str:
        """Combined log output of a container."""
        ...

    def create_network(self, request: NetworkRequest) -> LiveNetwork:
        """Create a network."""
        ...

    def remove_network(self, network: LiveNetwork) -> None:
        """Remove a network."""
        ...

    def prune(self, labels: dict[str, str]) -> list[str]:
        """Remove every container and network carrying ``labels``."""
        ...
