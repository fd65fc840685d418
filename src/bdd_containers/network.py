"""Network definitions shared by the containers of one scenario."""

from __future__ import annotations

import asyncio
import uuid
from typing import Callable

from .engine.base import ContainerEngine, LiveNetwork, NetworkDriver, NetworkRequest, create_owned
from .shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ALIAS = "network"


class NetworkDefinition:
    """Lazily built network plus the alias containers attach under.

    ``build()`` is idempotent: the first call creates the network and caches
    the handle, later calls return that same handle.
    """

    def __init__(
        self,
        alias: str = DEFAULT_ALIAS,
        driver: NetworkDriver = NetworkDriver.BRIDGE,
        labels: dict[str, str] | None = None,
    ):
        """Initialize a network definition.

        Args:
            alias: DNS name dependent containers attach under (default: "network")
            driver: Network driver (default: bridge)
            labels: Extra labels put on the created network
        """
        self.alias = alias
        self.driver = driver
        self.labels = dict(labels or {})
        self._instance: LiveNetwork | None = None
        self._lock = asyncio.Lock()

    @property
    def instance(self) -> LiveNetwork | None:
        """Cached network handle, or None until built."""
        return self._instance

    @property
    def is_built(self) -> bool:
        """Whether the network has been created."""
        return self._instance is not None

    async def build(
        self,
        engine: ContainerEngine,
        labels: dict[str, str] | None = None,
        on_created: Callable[[LiveNetwork], None] | None = None,
    ) -> LiveNetwork:
        """Create the network once and return the cached handle.

        Args:
            engine: Engine that creates the network
            labels: Run labels merged over the definition's own labels
            on_created: Called with the handle when this call created the
                network, even if the awaiting task is cancelled meanwhile

        Returns:
            The live network handle

        Raises:
            ProvisioningError: If the engine cannot create the network
        """
        if self._instance is not None:
            return self._instance

        async with self._lock:
            # Another container of the scenario may have built it while we waited
            if self._instance is not None:
                return self._instance

            request = NetworkRequest(
                name=f"{self.alias}-{uuid.uuid4().hex[:12]}",
                driver=self.driver,
                labels={**self.labels, **(labels or {})},
            )
            network = await create_owned(engine.create_network, request, on_created=self._created(on_created))
            logger.debug("network_built", alias=self.alias, name=request.name)
            return network

    def _created(self, callback: Callable[[LiveNetwork], None] | None) -> Callable[[LiveNetwork], None]:
        def cache(network: LiveNetwork) -> None:
            self._instance = network
            if callback is not None:
                callback(network)

        return cache

    def __repr__(self) -> str:
        state = self._instance.name if self._instance else "not built"
        return f"NetworkDefinition(alias={self.alias!r}, driver={self.driver.value!r}, {state})"


def new_network(alias: str = DEFAULT_ALIAS, driver: NetworkDriver = NetworkDriver.BRIDGE) -> NetworkDefinition:
    """Shorthand for ``NetworkDefinition(alias, driver)``."""
    return NetworkDefinition(alias=alias, driver=driver)
