"""Container engine boundary and its Docker implementation."""

from .base import (
    BuildContext,
    ContainerEngine,
    ContainerFile,
    ContainerRequest,
    LiveContainer,
    LiveNetwork,
    NetworkDriver,
    NetworkRequest,
    create_owned,
    normalize_port,
    port_number,
)
from .docker import DockerEngine

__all__ = [
    "BuildContext",
    "ContainerEngine",
    "ContainerFile",
    "ContainerRequest",
    "DockerEngine",
    "LiveContainer",
    "LiveNetwork",
    "NetworkDriver",
    "NetworkRequest",
    "create_owned",
    "normalize_port",
    "port_number",
]
