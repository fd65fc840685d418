"""Unit tests for the error taxonomy."""

from bdd_containers.errors import (
    CancellationError,
    ConfigurationError,
    ContainersError,
    ProvisioningError,
    ReadinessTimeoutError,
    TeardownError,
    aggregate_teardown_failures,
)


class TestErrorHierarchy:
    """Tests for error classes."""

    def test_str_is_message(self):
        """Test errors render as their message."""
        error = ProvisioningError(message="Failed to create the container", data={"image": "x"})
        assert str(error) == "Failed to create the container"
        assert error.data == {"image": "x"}

    def test_hierarchy(self):
        """Test every error derives from ContainersError."""
        assert issubclass(ConfigurationError, ContainersError)
        assert issubclass(ReadinessTimeoutError, ProvisioningError)
        assert issubclass(CancellationError, ProvisioningError)
        assert issubclass(TeardownError, ContainersError)
        assert not issubclass(TeardownError, ProvisioningError)

    def test_configuration_problems(self):
        """Test problems are kept."""
        error = ConfigurationError(message="Invalid", problems=["files must not be empty"])
        assert error.problems == ["files must not be empty"]


class TestAggregateTeardownFailures:
    """Tests for aggregate_teardown_failures."""

    def test_aggregates_messages(self):
        """Test every failure shows up in the message."""
        failures = [RuntimeError("container a stuck"), RuntimeError("network busy")]

        error = aggregate_teardown_failures("s1", failures)

        assert error.failures == failures
        assert "container a stuck" in str(error)
        assert "network busy" in str(error)
        assert "2 resource(s)" in str(error)
        assert error.data == {"scenario_id": "s1", "failure_count": 2}

    def test_empty_message_uses_type(self):
        """Test failures without a message are named by type."""
        error = aggregate_teardown_failures("s1", [TimeoutError()])
        assert "TimeoutError" in str(error)
