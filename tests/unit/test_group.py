"""Unit tests for the group registry."""

import threading

import pytest

from bdd_containers.engine.base import ContainerRequest, LiveContainer, LiveNetwork
from bdd_containers.errors import ConfigurationError, TeardownError
from bdd_containers.group import GroupEntry, GroupRegistry


def make_container(engine, number, image="postgres"):
    return LiveContainer(
        id=f"container-{number}",
        name=f"fake-{number}",
        request=ContainerRequest(image=image),
        engine=engine,
    )


@pytest.fixture
def registry() -> GroupRegistry:
    return GroupRegistry()


class TestGroupEntry:
    """Tests for GroupEntry."""

    def test_empty(self):
        """Test a fresh entry holds nothing."""
        assert GroupEntry().is_empty

    def test_add_container(self, fake_engine):
        """Test containers are recorded in order."""
        entry = GroupEntry()
        entry.add_container(make_container(fake_engine, 1))
        entry.add_container(make_container(fake_engine, 2))
        assert [c.name for c in entry.containers] == ["fake-1", "fake-2"]
        assert not entry.is_empty

    def test_attach_network(self, fake_engine):
        """Test the same network can be recorded twice, a different one cannot."""
        entry = GroupEntry()
        first = LiveNetwork(id="network-1", name="net-1", engine=fake_engine)
        second = LiveNetwork(id="network-2", name="net-2", engine=fake_engine)

        entry.attach_network(first)
        entry.attach_network(first)
        with pytest.raises(ConfigurationError, match="already owns network 'net-1'"):
            entry.attach_network(second)

        assert entry.network is first


class TestGroupRegistry:
    """Tests for GroupRegistry bookkeeping."""

    def test_register_and_get(self, registry):
        """Test entries are stored per scenario."""
        entry = GroupEntry()
        registry.register("s1", entry)
        assert registry.get("s1") is entry
        assert "s1" in registry
        assert len(registry) == 1

    def test_get_unknown(self, registry):
        """Test unknown ids return None."""
        assert registry.get("missing") is None
        assert "missing" not in registry

    def test_register_replaces(self, registry):
        """Test registering again replaces the entry."""
        registry.register("s1", GroupEntry())
        replacement = GroupEntry()
        registry.register("s1", replacement)
        assert registry.get("s1") is replacement
        assert len(registry) == 1

    def test_pop(self, registry):
        """Test pop removes the entry."""
        entry = GroupEntry()
        registry.register("s1", entry)
        assert registry.pop("s1") is entry
        assert registry.pop("s1") is None

    def test_concurrent_register(self, registry):
        """Test registration from many threads keeps every entry."""

        def register(worker):
            for i in range(100):
                registry.register(f"w{worker}-{i}", GroupEntry())

        threads = [threading.Thread(target=register, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(registry) == 800
        assert len(set(registry.scenario_ids())) == 800


class TestDestroy:
    """Tests for GroupRegistry.destroy."""

    @pytest.mark.asyncio
    async def test_destroy_terminates_everything(self, fake_engine, registry):
        """Test containers go first, then the network, then the entry."""
        network = LiveNetwork(id="network-1", name="net-1", engine=fake_engine)
        entry = GroupEntry(network=network)
        entry.add_container(make_container(fake_engine, 1))
        entry.add_container(make_container(fake_engine, 2))
        registry.register("s1", entry)

        await registry.destroy("s1")

        assert {c.name for c in fake_engine.state.terminated} == {"fake-1", "fake-2"}
        assert fake_engine.state.events[-1] == ("remove_network", "net-1")
        assert "s1" not in registry

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_siblings(self, fake_engine, registry):
        """Test a failing terminate still tears down the rest."""
        fake_engine.state.fail_terminate = {"broken"}
        network = LiveNetwork(id="network-1", name="net-1", engine=fake_engine)
        entry = GroupEntry(network=network)
        entry.add_container(make_container(fake_engine, 1, image="broken"))
        entry.add_container(make_container(fake_engine, 2))
        registry.register("s1", entry)

        with pytest.raises(TeardownError) as exc_info:
            await registry.destroy("s1")

        assert [c.name for c in fake_engine.state.terminated] == ["fake-2"]
        assert fake_engine.state.networks_removed == [network]
        assert "s1" not in registry
        assert len(exc_info.value.failures) == 1
        assert "fake-1" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_failures_are_aggregated(self, fake_engine, registry):
        """Test container and network failures are all reported."""
        fake_engine.state.fail_terminate = {"broken"}
        fake_engine.state.fail_network_remove = True
        entry = GroupEntry(network=LiveNetwork(id="network-1", name="net-1", engine=fake_engine))
        entry.add_container(make_container(fake_engine, 1, image="broken"))
        entry.add_container(make_container(fake_engine, 2, image="broken"))
        registry.register("s1", entry)

        with pytest.raises(TeardownError) as exc_info:
            await registry.destroy("s1")

        assert len(exc_info.value.failures) == 3
        assert exc_info.value.data == {"scenario_id": "s1", "failure_count": 3}
        assert "s1" not in registry

    @pytest.mark.asyncio
    async def test_unknown_scenario_is_noop(self, fake_engine, registry):
        """Test destroying an unknown id does nothing."""
        await registry.destroy("missing")
        assert fake_engine.state.events == []

    @pytest.mark.asyncio
    async def test_already_terminated_containers_are_skipped(self, fake_engine, registry):
        """Test terminate is idempotent per handle."""
        container = make_container(fake_engine, 1)
        await container.terminate()
        entry = GroupEntry()
        entry.add_container(container)
        registry.register("s1", entry)

        await registry.destroy("s1")

        assert fake_engine.state.terminated == [container]
