"""Shared test fixtures for bdd-containers tests.

This module provides:
- FakeEngine: in-memory ContainerEngine recording every call
- fake_engine / orchestrator fixtures wired to it
- docker_available: skips docker-marked tests without a daemon
"""

import itertools
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest

from bdd_containers.config import ContainersConfig
from bdd_containers.engine.base import ContainerRequest, LiveContainer, LiveNetwork, NetworkRequest
from bdd_containers.errors import ProvisioningError
from bdd_containers.orchestrator import Orchestrator

# =============================================================================
# Fake engine - records calls instead of talking to a daemon
# =============================================================================


@dataclass
class FakeEngineState:
    """Behavior switches and call records of a FakeEngine."""

    # Engine-reported values
    host: str = "127.0.0.1"
    ports: dict[str, str] = field(default_factory=lambda: {"5432/tcp": "54321"})
    logs: str | Callable[[LiveContainer], str] = ""

    # Failure injection, by image name
    fail_create: set[str] = field(default_factory=set)
    fail_terminate: set[str] = field(default_factory=set)
    fail_network_create: bool = False
    fail_network_remove: bool = False

    # Seconds each blocking call takes, after it is recorded
    create_delay: float = 0.0
    terminate_delay: float = 0.0
    network_create_delay: float = 0.0

    # Call tracking
    events: list[tuple[str, str]] = field(default_factory=list)
    created: list[LiveContainer] = field(default_factory=list)
    terminated: list[LiveContainer] = field(default_factory=list)
    networks_created: list[LiveNetwork] = field(default_factory=list)
    networks_removed: list[LiveNetwork] = field(default_factory=list)
    pruned: list[dict[str, str]] = field(default_factory=list)


class FakeEngine:
    """ContainerEngine keeping everything in memory."""

    def __init__(self, state: FakeEngineState | None = None):
        self.state = state or FakeEngineState()
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def _record(self, event: str, subject: str) -> None:
        with self._lock:
            self.state.events.append((event, subject))

    def create_container(self, request: ContainerRequest) -> LiveContainer:
        image = request.image or "built-image"
        self._record("create_container", image)
        time.sleep(self.state.create_delay)
        if image in self.state.fail_create:
            raise ProvisioningError(message=f"Failed to create the container: {image}")
        number = next(self._ids)
        container = LiveContainer(
            id=f"container-{number}",
            name=f"fake-{number}",
            request=request,
            engine=self,
        )
        with self._lock:
            self.state.created.append(container)
        return container

    def terminate(self, container: LiveContainer) -> None:
        self._record("terminate", container.name)
        time.sleep(self.state.terminate_delay)
        if container.request.image in self.state.fail_terminate:
            raise RuntimeError(f"terminate failed for {container.name}")
        with self._lock:
            self.state.terminated.append(container)

    def host(self, container: LiveContainer) -> str:
        return self.state.host

    def mapped_port(self, container: LiveContainer, port: str) -> str:
        if port not in self.state.ports:
            raise ProvisioningError(message=f"Port {port} not found")
        return self.state.ports[port]

    def logs(self, container: LiveContainer) -> str:
        if callable(self.state.logs):
            return self.state.logs(container)
        return self.state.logs

    def create_network(self, request: NetworkRequest) -> LiveNetwork:
        self._record("create_network", request.name)
        time.sleep(self.state.network_create_delay)
        if self.state.fail_network_create:
            raise ProvisioningError(message="Failed to create the network")
        network = LiveNetwork(id=f"network-{next(self._ids)}", name=request.name, engine=self)
        with self._lock:
            self.state.networks_created.append(network)
        return network

    def remove_network(self, network: LiveNetwork) -> None:
        self._record("remove_network", network.name)
        if self.state.fail_network_remove:
            raise RuntimeError(f"remove failed for {network.name}")
        with self._lock:
            self.state.networks_removed.append(network)

    def prune(self, labels: dict[str, str]) -> list[str]:
        self.state.pruned.append(dict(labels))
        return []


@pytest.fixture
def fake_engine() -> FakeEngine:
    """Fresh FakeEngine per test."""
    return FakeEngine()


@pytest.fixture
def config() -> ContainersConfig:
    """Config with a fast poll interval."""
    return ContainersConfig(poll_interval=0.01)


@pytest.fixture
def orchestrator(fake_engine: FakeEngine, config: ContainersConfig) -> Orchestrator:
    """Orchestrator wired to the fake engine."""
    return Orchestrator(engine=fake_engine, config=config, session_id="test-session")


# =============================================================================
# Docker availability
# =============================================================================


@pytest.fixture(scope="session")
def docker_client():
    """Docker client, skipping the test when no daemon is reachable."""
    docker = pytest.importorskip("docker")
    try:
        client = docker.from_env()
        client.ping()
    except Exception as e:
        pytest.skip(f"Docker daemon not reachable: {e}")
    return client
