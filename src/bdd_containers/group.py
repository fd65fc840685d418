"""Per-scenario resource groups and the registry that tracks them."""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field

from .engine.base import LiveContainer, LiveNetwork
from .errors import ConfigurationError, aggregate_teardown_failures
from .shared.logging import get_logger

logger = get_logger(__name__)


@dataclass
class GroupEntry:
    """Live resources owned by one scenario."""

    network: LiveNetwork | None = None
    containers: list[LiveContainer] = field(default_factory=list)

    def add_container(self, container: LiveContainer) -> None:
        """Record a container as soon as it exists."""
        self.containers.append(container)

    def attach_network(self, network: LiveNetwork) -> None:
        """Record the group's network; a group owns at most one.

        Raises:
            ConfigurationError: If a different network is already recorded
        """
        if self.network is not None and self.network is not network:
            raise ConfigurationError(
                message=f"Group already owns network '{self.network.name}'",
                problems=[f"second network: {network.name}"],
            )
        self.network = network

    @property
    def is_empty(self) -> bool:
        """Whether nothing was created for the scenario."""
        return self.network is None and not self.containers


class GroupRegistry:
    """Thread-safe mapping of scenario id to GroupEntry.

    Scenarios running in parallel only ever touch their own key, but they all
    share the underlying dict, so every access goes through one lock.
    """

    def __init__(self) -> None:
        self._entries: dict[str, GroupEntry] = {}
        self._lock = threading.Lock()

    def register(self, scenario_id: str, entry: GroupEntry) -> None:
        """Insert or replace the entry for ``scenario_id``."""
        with self._lock:
            replaced = self._entries.get(scenario_id)
            self._entries[scenario_id] = entry
        if replaced is not None and replaced is not entry:
            logger.warning("group_replaced", scenario_id=scenario_id)

    def get(self, scenario_id: str) -> GroupEntry | None:
        """Entry for ``scenario_id``, or None."""
        with self._lock:
            return self._entries.get(scenario_id)

    def pop(self, scenario_id: str) -> GroupEntry | None:
        """Remove and return the entry for ``scenario_id``."""
        with self._lock:
            return self._entries.pop(scenario_id, None)

    def scenario_ids(self) -> list[str]:
        """Snapshot of the registered scenario ids."""
        with self._lock:
            return list(self._entries)

    def __contains__(self, scenario_id: object) -> bool:
        with self._lock:
            return scenario_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    async def destroy(self, scenario_id: str) -> None:
        """Tear down every resource of a scenario and forget the entry.

        Containers are terminated first, concurrently, and a failure on one
        never keeps the others alive. The network is removed afterwards. The
        entry is deleted whatever happened.

        Raises:
            TeardownError: Aggregating every failure, after all cleanup ran
        """
        entry = self.get(scenario_id)
        if entry is None:
            logger.debug("group_not_found", scenario_id=scenario_id)
            return

        failures: list[BaseException] = []
        try:
            results = await asyncio.gather(
                *(container.terminate() for container in entry.containers),
                return_exceptions=True,
            )
            for container, result in zip(entry.containers, results):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    logger.error(
                        "container_teardown_failed",
                        scenario_id=scenario_id,
                        container=container.name,
                        error=str(result),
                    )
                    failures.append(result)

            if entry.network is not None:
                try:
                    await entry.network.remove()
                except Exception as e:
                    logger.error(
                        "network_teardown_failed",
                        scenario_id=scenario_id,
                        network=entry.network.name,
                        error=str(e),
                    )
                    failures.append(e)
        finally:
            self.pop(scenario_id)

        if failures:
            raise aggregate_teardown_failures(scenario_id, failures)
        logger.debug("group_destroyed", scenario_id=scenario_id, containers=len(entry.containers))
