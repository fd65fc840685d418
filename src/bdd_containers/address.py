"""Address derivation for live containers.

Two modes, always chosen by the caller:

- EXTERNAL: engine host + published host port, for calls from the test process
- INTERNAL: network alias + declared port, for calls between containers on
  the same network
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .engine.base import LiveContainer, port_number
from .errors import ProvisioningError


class AddressMode(Enum):
    """Who is going to connect to the address."""

    EXTERNAL = "external"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Endpoint:
    """Host and port of a service."""

    host: str
    port: str

    @property
    def netloc(self) -> str:
        """``host:port`` form used in URLs."""
        return f"{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"host={self.host} port={self.port}"


async def resolve_endpoint(
    container: LiveContainer,
    port: str | int,
    mode: AddressMode = AddressMode.EXTERNAL,
    network_alias: str | None = None,
) -> Endpoint:
    """Resolve where ``port`` of ``container`` can be reached.

    Args:
        container: Started container
        port: Declared (container-side) port
        mode: EXTERNAL or INTERNAL addressing
        network_alias: Host to use in INTERNAL mode. Defaults to the alias the
            container was attached under.

    Returns:
        Endpoint for the requested mode

    Raises:
        ProvisioningError: If the engine cannot report the host or mapped port,
            or INTERNAL mode is requested for a container without an alias
    """
    if mode is AddressMode.INTERNAL:
        alias = network_alias or next(iter(container.network_aliases), None)
        if not alias:
            raise ProvisioningError(
                message=f"Container {container.name} is not attached to a network alias",
                data={"container_id": container.id},
            )
        return Endpoint(host=alias, port=port_number(port))

    host = await container.host()
    mapped = await container.mapped_port(port)
    return Endpoint(host=host, port=port_number(mapped))
