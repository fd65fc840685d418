"""bdd-containers - ephemeral containers and per-scenario state for behavioral tests."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bdd-containers")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for editable installs without metadata

from .address import AddressMode, Endpoint, resolve_endpoint
from .config import ContainersConfig, load_config
from .container import ContainerBuilder, ContainerDefinition, ContainerSpec, new_container_definition
from .engine import ContainerEngine, DockerEngine, LiveContainer, LiveNetwork, NetworkDriver
from .errors import (
    CancellationError,
    ConfigurationError,
    ContainersError,
    ProvisioningError,
    ReadinessTimeoutError,
    TeardownError,
)
from .group import GroupEntry, GroupRegistry
from .network import NetworkDefinition, new_network
from .orchestrator import Orchestrator
from .readiness import FixedDelay, HttpHealth, LogPattern, PortListening, ReadinessState, ReadinessWaiter
from .state import ScenarioContext, ScenarioState
from .suite import Scenario, ScenarioResult, ScenarioStatus, ScenarioSuite, SuiteResult

__all__ = [
    "__version__",
    # State
    "ScenarioContext",
    "ScenarioState",
    # Definitions
    "ContainerBuilder",
    "ContainerDefinition",
    "ContainerSpec",
    "new_container_definition",
    "NetworkDefinition",
    "NetworkDriver",
    "new_network",
    # Readiness
    "FixedDelay",
    "HttpHealth",
    "LogPattern",
    "PortListening",
    "ReadinessState",
    "ReadinessWaiter",
    # Engine
    "ContainerEngine",
    "DockerEngine",
    "LiveContainer",
    "LiveNetwork",
    # Addresses
    "AddressMode",
    "Endpoint",
    "resolve_endpoint",
    # Orchestration
    "GroupEntry",
    "GroupRegistry",
    "Orchestrator",
    "Scenario",
    "ScenarioResult",
    "ScenarioStatus",
    "ScenarioSuite",
    "SuiteResult",
    # Configuration
    "ContainersConfig",
    "load_config",
    # Errors
    "CancellationError",
    "ConfigurationError",
    "ContainersError",
    "ProvisioningError",
    "ReadinessTimeoutError",
    "TeardownError",
]
