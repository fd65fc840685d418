"""Error taxonomy for container provisioning and teardown.

Every error raised by the package derives from ContainersError so hooks can
catch the whole family at once while still telling the causes apart.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ContainersError(Exception):
    """Base error class for provisioning errors."""

    message: str
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass
class ConfigurationError(ContainersError):
    """Invalid definition detected before any engine call."""

    problems: list[str] = field(default_factory=list)


@dataclass
class ProvisioningError(ContainersError):
    """Engine failed to create or inspect a network or container."""


@dataclass
class ReadinessTimeoutError(ProvisioningError):
    """Readiness signal not observed within the startup timeout."""

    timeout: float | None = None


@dataclass
class CancellationError(ProvisioningError):
    """Run-level cancellation observed while a scenario was in flight."""


@dataclass
class TeardownError(ContainersError):
    """One or more resources could not be removed during cleanup.

    Cleanup never stops at the first failure, so ``failures`` holds every
    error raised while tearing a group down.
    """

    failures: list[BaseException] = field(default_factory=list)


def aggregate_teardown_failures(scenario_id: str, failures: list[BaseException]) -> TeardownError:
    """Build a TeardownError summarizing every failure of one group.

    Args:
        scenario_id: Scenario whose resources were being removed
        failures: Errors collected while removing them

    Returns:
        TeardownError listing each failure in its message
    """
    details = "; ".join(str(f) or type(f).__name__ for f in failures)
    return TeardownError(
        message=f"Teardown of scenario '{scenario_id}' failed for {len(failures)} resource(s): {details}",
        data={"scenario_id": scenario_id, "failure_count": len(failures)},
        failures=list(failures),
    )
