"""LocalStack container preset for emulated AWS services.

Clients talking to LocalStack still need credentials; ``credentials()`` reads
them from the usual AWS environment variables and falls back to the dummy
values LocalStack accepts.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from ..address import resolve_endpoint
from ..container import ContainerBuilder, ContainerOption
from ..engine.base import LiveContainer

IMAGE = "localstack/localstack:3.4"
BASE_PATH = "/etc/localstack/init/ready.d"
EXPOSED_PORT = "4566"
DEBUG = "false"
DOCKER_HOST = "unix:///var/run/docker.sock"
READY_LOG = "Initialization complete!"
STARTUP_TIMEOUT = 30.0

DEFAULT_CREDENTIALS = {
    "AWS_ACCESS_KEY_ID": "test",
    "AWS_SECRET_ACCESS_KEY": "test",
    "AWS_DEFAULT_REGION": "us-east-1",
}


@dataclass
class LocalStackOptions:
    """Settings of a LocalStack container."""

    exposed_port: str = EXPOSED_PORT
    debug: str = DEBUG
    docker_host: str = DOCKER_HOST


def credentials() -> dict[str, str]:
    """AWS credentials for clients of the emulator."""
    return {key: os.environ.get(key) or default for key, default in DEFAULT_CREDENTIALS.items()}


def localstack_container(options: LocalStackOptions | None = None, image: str = IMAGE) -> ContainerOption:
    """Container option configuring LocalStack.

    Init scripts copied to BASE_PATH run once the services are up; READY_LOG
    is printed after the last of them finished.
    """
    options = options or LocalStackOptions()

    def apply(builder: ContainerBuilder) -> None:
        builder.image(image).exposed_ports(options.exposed_port).env(
            {
                "DEBUG": options.debug,
                "DOCKER_HOST": options.docker_host,
            }
        ).waiting_for_log(READY_LOG, STARTUP_TIMEOUT)

    return apply


async def build_endpoint(container: LiveContainer, options: LocalStackOptions | None = None) -> str:
    """Endpoint URL for AWS clients, e.g. ``http://localhost:4566``."""
    options = options or LocalStackOptions()
    endpoint = await resolve_endpoint(container, options.exposed_port)
    return f"http://{endpoint.netloc}"
