"""Unit tests for building containers from definitions."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from bdd_containers.container import ContainerBuilder
from bdd_containers.errors import ProvisioningError, ReadinessTimeoutError
from bdd_containers.network import NetworkDefinition


class TestContainerBuild:
    """Tests for ContainerDefinition.build."""

    @pytest.mark.asyncio
    async def test_builds_network_before_container(self, fake_engine):
        """Test the attached network exists before the container is created."""
        network = NetworkDefinition(alias="db-net")
        definition = ContainerBuilder().image("postgres").network(network).define()

        container = await definition.build(fake_engine)

        events = [event for event, _ in fake_engine.state.events]
        assert events == ["create_network", "create_container"]
        assert container.request.network == network.instance.name
        assert container.network_aliases == ("db-net",)

    @pytest.mark.asyncio
    async def test_shared_network_built_once(self, fake_engine):
        """Test containers sharing a network reuse it."""
        network = NetworkDefinition()
        db = ContainerBuilder().image("postgres").network(network).define()
        app = ContainerBuilder().image("app").network(network, alias="app").define()

        await db.build(fake_engine)
        await app.build(fake_engine)

        assert len(fake_engine.state.networks_created) == 1

    @pytest.mark.asyncio
    async def test_on_created_called_before_readiness(self, fake_engine):
        """Test the handle is reported before readiness is awaited."""
        fake_engine.state.logs = "starting\n"
        definition = ContainerBuilder().image("postgres").waiting_for_log("ready", 0.05).define()
        created = []

        with pytest.raises(ReadinessTimeoutError):
            await definition.build(fake_engine, on_created=created.append, poll_interval=0.01)

        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_readiness_failure_terminates_container(self, fake_engine):
        """Test a container that never becomes ready is discarded."""
        fake_engine.state.logs = "starting\n"
        definition = ContainerBuilder().image("postgres").waiting_for_log("ready", 0.05).define()

        with pytest.raises(ReadinessTimeoutError):
            await definition.build(fake_engine, poll_interval=0.01)

        assert fake_engine.state.terminated == fake_engine.state.created
        assert fake_engine.state.created[0].terminated

    @pytest.mark.asyncio
    async def test_create_failure(self, fake_engine):
        """Test engine failures propagate as ProvisioningError."""
        fake_engine.state.fail_create = {"broken"}
        definition = ContainerBuilder().image("broken").define()
        created = []

        with pytest.raises(ProvisioningError):
            await definition.build(fake_engine, on_created=created.append)

        assert created == []

    @pytest.mark.asyncio
    async def test_cancelled_during_creation_reports_container(self, fake_engine):
        """Test a container started after cancellation is still handed to on_created."""
        fake_engine.state.create_delay = 0.2
        definition = ContainerBuilder().image("postgres").define()
        created = []

        task = asyncio.create_task(definition.build(fake_engine, on_created=created.append))
        while not fake_engine.state.events:
            await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert created == fake_engine.state.created
        assert len(created) == 1

    @pytest.mark.asyncio
    async def test_ready_container_is_returned(self, fake_engine):
        """Test a ready container is returned with run labels applied."""
        fake_engine.state.logs = "ready\n"
        definition = (
            ContainerBuilder()
            .image("postgres")
            .exposed_ports("5432")
            .labels({"team": "qa"})
            .waiting_for_log("ready", 1)
            .define()
        )

        container = await definition.build(fake_engine, {"session": "s1"}, poll_interval=0.01)

        assert container.terminated is False
        assert container.request.labels == {"team": "qa", "session": "s1"}
        assert await container.mapped_port(5432) == "54321"

    @pytest.mark.asyncio
    async def test_force_wait(self, fake_engine):
        """Test the extra delay runs after readiness."""
        definition = ContainerBuilder().image("postgres").force_wait(0.5).define()

        with patch("bdd_containers.container.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await definition.build(fake_engine)

        mock_sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_each_build_creates_new_container(self, fake_engine):
        """Test a definition is a template, not a singleton."""
        definition = ContainerBuilder().image("postgres").define()

        first = await definition.build(fake_engine)
        second = await definition.build(fake_engine)

        assert first.id != second.id
        assert len(fake_engine.state.created) == 2

    def test_repr(self):
        """Test definitions have a readable repr."""
        definition = ContainerBuilder().image("postgres").exposed_ports("5432").define()
        assert repr(definition) == "ContainerDefinition('postgres', ports=['5432/tcp'])"
