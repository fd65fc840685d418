"""Run-scoped orchestration of scenario resources.

One Orchestrator is created per test run and handed to the Before/After
hooks. It owns the engine and the GroupRegistry, labels everything it creates
with the run's session id, and makes sure partial builds are always torn
down.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .config import ContainersConfig, load_config
from .container import ContainerDefinition
from .engine.base import ContainerEngine
from .engine.docker import DockerEngine
from .errors import ConfigurationError, ContainersError, TeardownError
from .group import GroupEntry, GroupRegistry
from .network import NetworkDefinition
from .shared.logging import get_logger, log_context

logger = get_logger(__name__)


class Orchestrator:
    """Provisions and tears down the resource group of each scenario."""

    def __init__(
        self,
        engine: ContainerEngine | None = None,
        config: ContainersConfig | None = None,
        session_id: str | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            engine: Container engine (default: DockerEngine from the environment)
            config: Run configuration (default: load_config())
            session_id: Identifier stamped on every resource of this run
        """
        self.config = config or load_config()
        self.engine = engine or DockerEngine(host_override=self.config.host_override)
        self.registry = GroupRegistry()
        self.session_id = session_id or uuid.uuid4().hex[:12]

    @property
    def labels(self) -> dict[str, str]:
        """Labels identifying resources created by this run."""
        return {
            self.config.label("managed"): "true",
            self.config.label("session"): self.session_id,
        }

    def scenario_labels(self, scenario_id: str) -> dict[str, str]:
        """Run labels plus the owning scenario."""
        return {**self.labels, self.config.label("scenario"): scenario_id}

    def _resolve_network(
        self, network: NetworkDefinition | None, definitions: tuple[ContainerDefinition, ...]
    ) -> NetworkDefinition | None:
        candidates = [network] if network is not None else []
        for definition in definitions:
            if definition.network is not None and all(definition.network is not c for c in candidates):
                candidates.append(definition.network)

        if len(candidates) > 1:
            raise ConfigurationError(
                message="A scenario group can hold only one network",
                problems=[f"networks: {[c.alias for c in candidates]}"],
            )
        resolved = candidates[0] if candidates else None
        if resolved is not None and resolved.instance is not None and resolved.instance.removed:
            raise ConfigurationError(
                message=f"Network '{resolved.alias}' was already torn down; create a new definition per scenario",
                problems=["network already removed"],
            )
        return resolved

    async def provision(
        self,
        scenario_id: str,
        *definitions: ContainerDefinition,
        network: NetworkDefinition | None = None,
    ) -> GroupEntry:
        """Build a scenario's network and containers and register them.

        The network is built first, then the containers in the given order,
        each waiting for readiness before the next one starts. Every resource
        is recorded in the registry the moment it exists; if anything fails or
        the task is cancelled, whatever was built is torn down before the
        error propagates.

        Args:
            scenario_id: Key of the scenario in the registry
            definitions: Containers to build, in dependency order
            network: Network the containers attach to, if not already
                referenced by the definitions

        Returns:
            The scenario's GroupEntry

        Raises:
            ConfigurationError: If the group references several networks, or
                the scenario already owns a different network
            ProvisioningError: If the engine fails or a container is not ready
        """
        network = self._resolve_network(network, definitions)

        entry = self.registry.get(scenario_id) or GroupEntry()
        if network is not None and entry.network is not None and network.instance is not entry.network:
            raise ConfigurationError(
                message=f"Scenario '{scenario_id}' already owns network '{entry.network.name}'",
                problems=[f"second network: {network.alias}"],
            )
        self.registry.register(scenario_id, entry)
        labels = self.scenario_labels(scenario_id)

        with log_context(session_id=self.session_id, scenario_id=scenario_id):
            try:
                if network is not None:
                    entry.attach_network(
                        await network.build(self.engine, labels, on_created=entry.attach_network)
                    )
                for definition in definitions:
                    await definition.build(
                        self.engine,
                        labels,
                        on_created=entry.add_container,
                        poll_interval=self.config.poll_interval,
                    )
            except BaseException as e:
                logger.error(
                    "provision_failed",
                    error=str(e) or type(e).__name__,
                    built=len(entry.containers),
                )
                await asyncio.shield(self._destroy_quietly(scenario_id, e))
                raise

            logger.info(
                "scenario_provisioned",
                containers=len(entry.containers),
                network=entry.network.name if entry.network else None,
            )
        return entry

    async def teardown(self, scenario_id: str) -> None:
        """Tear down a scenario's group.

        Raises:
            TeardownError: Aggregating every failure, after all cleanup ran
        """
        await self.registry.destroy(scenario_id)

    async def _destroy_quietly(self, scenario_id: str, cause: BaseException | None = None) -> None:
        try:
            await self.registry.destroy(scenario_id)
        except TeardownError as teardown_error:
            logger.error("cleanup_after_failure_failed", scenario_id=scenario_id, error=str(teardown_error))
            if cause is not None:
                cause.add_note(f"cleanup also failed: {teardown_error}")

    @asynccontextmanager
    async def scenario(
        self,
        scenario_id: str,
        *definitions: ContainerDefinition,
        network: NetworkDefinition | None = None,
    ) -> AsyncIterator[GroupEntry]:
        """Provision a group for the duration of an ``async with`` block.

        Teardown errors are raised when the block succeeded, and only logged
        when the block itself raised.
        """
        entry = await self.provision(scenario_id, *definitions, network=network)
        try:
            yield entry
        except BaseException as e:
            await asyncio.shield(self._destroy_quietly(scenario_id, e))
            raise
        else:
            await self.teardown(scenario_id)

    async def close(self) -> None:
        """Tear down every remaining group and prune stragglers of this run.

        Anything carrying the session label that never made it into the
        registry, such as containers of a crashed earlier attempt, is removed
        by the prune.
        """
        for scenario_id in self.registry.scenario_ids():
            await self._destroy_quietly(scenario_id)

        try:
            removed = await asyncio.to_thread(self.engine.prune, self.labels)
        except ContainersError as e:
            logger.warning("session_prune_failed", session_id=self.session_id, error=str(e))
            return
        if removed:
            logger.warning("session_leftovers_pruned", session_id=self.session_id, resources=removed)

    async def __aenter__(self) -> Orchestrator:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
