"""Container definitions.

A ContainerBuilder collects settings through chained setters, then
``define()`` validates them and freezes them into a ContainerSpec wrapped by
a ContainerDefinition. Setters apply in call order and a later setter for a
field replaces what an earlier one set.

Example:

    definition = (
        ContainerBuilder()
        .image("postgres:16")
        .exposed_ports("5432")
        .env({"POSTGRES_PASSWORD": "postgres"})
        .network(network, alias="db")
        .waiting_for_log("database system is ready to accept connections", 30)
        .define()
    )
    container = await definition.build(engine)
"""

from __future__ import annotations

import asyncio
import posixpath
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .engine.base import (
    BuildContext,
    ContainerEngine,
    ContainerFile,
    ContainerRequest,
    LiveContainer,
    create_owned,
    normalize_port,
)
from .errors import ConfigurationError, ProvisioningError
from .network import NetworkDefinition
from .readiness import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_STARTUP_TIMEOUT,
    FixedDelay,
    HttpHealth,
    LogPattern,
    PortListening,
    ReadinessWaiter,
    WaitStrategy,
    describe,
)
from .shared.logging import get_logger

logger = get_logger(__name__)

FILE_MODE = 0o644
EXECUTABLE_FILE_MODE = 0o755

ContainerOption = Callable[["ContainerBuilder"], Any]


@dataclass(frozen=True)
class ContainerSpec:
    """Validated, immutable description of a container."""

    image: str | None = None
    build: BuildContext | None = None
    exposed_ports: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    network: NetworkDefinition | None = None
    network_alias: str | None = None
    files: tuple[ContainerFile, ...] = ()
    readiness: WaitStrategy | None = None
    force_wait: float | None = None
    labels: dict[str, str] = field(default_factory=dict)
    command: tuple[str, ...] | None = None
    name: str | None = None

    def to_request(
        self, network_name: str | None = None, labels: dict[str, str] | None = None
    ) -> ContainerRequest:
        """Engine request for this spec attached to ``network_name``."""
        aliases: tuple[str, ...] = ()
        if network_name and self.network is not None:
            aliases = (self.network_alias or self.network.alias,)
        return ContainerRequest(
            image=self.image,
            build=self.build,
            exposed_ports=self.exposed_ports,
            env=dict(self.env),
            network=network_name,
            network_aliases=aliases,
            files=self.files,
            labels={**self.labels, **(labels or {})},
            command=self.command,
            name=self.name,
        )


def _read_files(kind: str, base_path: str, paths: tuple[str | Path, ...], mode: int) -> tuple[list[ContainerFile], str | None]:
    if not paths:
        return [], f"{kind} must not be empty"

    loaded = []
    for path in paths:
        source = Path(path)
        try:
            content = source.read_bytes()
        except OSError as e:
            return [], f"failed to open file '{source}': {e}"
        loaded.append(
            ContainerFile(
                content=content,
                container_path=posixpath.join(base_path, source.name),
                mode=mode,
            )
        )
    return loaded, None


class ContainerBuilder:
    """Chained-setter builder for container definitions."""

    def __init__(self) -> None:
        self._image: str | None = None
        self._build: BuildContext | None = None
        self._exposed_ports: tuple[str, ...] = ()
        self._env: dict[str, str] = {}
        self._network: NetworkDefinition | None = None
        self._network_alias: str | None = None
        self._files: tuple[ContainerFile, ...] = ()
        self._readiness: WaitStrategy | None = None
        self._force_wait: float | None = None
        self._labels: dict[str, str] = {}
        self._command: tuple[str, ...] | None = None
        self._name: str | None = None
        # Problems are keyed by field so a later valid setter clears them
        self._problems: dict[str, str] = {}

    def apply(self, *options: ContainerOption) -> ContainerBuilder:
        """Apply option callables in order."""
        for option in options:
            option(self)
        return self

    def image(self, image: str) -> ContainerBuilder:
        """Pull and run ``image``. Replaces any build context."""
        self._image = image
        self._build = None
        return self

    def dockerfile(
        self,
        context: str | Path,
        dockerfile: str = "Dockerfile",
        build_args: dict[str, str] | None = None,
        keep_image: bool = False,
    ) -> ContainerBuilder:
        """Build the image from ``context``. Replaces any image reference."""
        self._build = BuildContext(
            context=Path(context),
            dockerfile=dockerfile,
            build_args=dict(build_args or {}),
            keep_image=keep_image,
        )
        self._image = None
        return self

    def exposed_ports(self, *ports: str | int) -> ContainerBuilder:
        """Ports published on random host ports."""
        try:
            self._exposed_ports = tuple(normalize_port(p) for p in ports)
            self._problems.pop("exposed_ports", None)
        except ValueError:
            self._problems["exposed_ports"] = f"invalid exposed ports: {list(ports)!r}"
        return self

    def env(self, env: dict[str, str]) -> ContainerBuilder:
        """Environment variables of the container."""
        self._env = {str(k): str(v) for k, v in env.items()}
        return self

    def network(self, network: NetworkDefinition, alias: str | None = None) -> ContainerBuilder:
        """Attach to ``network`` under ``alias`` (default: the network alias)."""
        self._network = network
        self._network_alias = alias
        return self

    def files(self, base_path: str, *paths: str | Path) -> ContainerBuilder:
        """Copy files into ``base_path`` before start, mode 0644."""
        return self._set_files("files", base_path, paths, FILE_MODE)

    def executable_files(self, base_path: str, *paths: str | Path) -> ContainerBuilder:
        """Copy files into ``base_path`` before start, mode 0755."""
        return self._set_files("executable files", base_path, paths, EXECUTABLE_FILE_MODE)

    def _set_files(self, kind: str, base_path: str, paths: tuple[str | Path, ...], mode: int) -> ContainerBuilder:
        loaded, problem = _read_files(kind, base_path, paths, mode)
        if problem:
            self._problems["files"] = problem
        else:
            self._problems.pop("files", None)
            self._files = tuple(loaded)
        return self

    def waiting_for(self, strategy: WaitStrategy | None) -> ContainerBuilder:
        """Use ``strategy`` to decide when the container is ready."""
        self._readiness = strategy
        return self

    def waiting_for_log(
        self,
        pattern: str,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
        regex: bool = False,
        occurrences: int = 1,
    ) -> ContainerBuilder:
        """Ready once ``pattern`` shows up in the logs."""
        return self.waiting_for(LogPattern(pattern, startup_timeout, regex, occurrences))

    def waiting_for_port(self, port: str | int, startup_timeout: float = DEFAULT_STARTUP_TIMEOUT) -> ContainerBuilder:
        """Ready once the published ``port`` accepts connections."""
        return self.waiting_for(PortListening(str(port), startup_timeout))

    def waiting_for_http(
        self,
        port: str | int,
        path: str = "/",
        status: int = 200,
        startup_timeout: float = DEFAULT_STARTUP_TIMEOUT,
    ) -> ContainerBuilder:
        """Ready once ``GET path`` on the published ``port`` returns ``status``."""
        return self.waiting_for(HttpHealth(str(port), path, status, startup_timeout))

    def waiting_for_delay(self, duration: float) -> ContainerBuilder:
        """Ready after sleeping ``duration`` seconds."""
        return self.waiting_for(FixedDelay(duration))

    def force_wait(self, duration: float | None) -> ContainerBuilder:
        """Extra sleep after the container is ready."""
        self._force_wait = duration
        return self

    def labels(self, labels: dict[str, str]) -> ContainerBuilder:
        """Labels put on the container."""
        self._labels = dict(labels)
        return self

    def command(self, *args: str) -> ContainerBuilder:
        """Override the image command."""
        self._command = tuple(args) if args else None
        return self

    def name(self, name: str | None) -> ContainerBuilder:
        """Fixed container name (default: engine-generated)."""
        self._name = name
        return self

    def define(self) -> ContainerDefinition:
        """Validate the settings and freeze them into a definition.

        Raises:
            ConfigurationError: If a setter received invalid input or neither
                an image nor a build context was given
        """
        problems = list(self._problems.values())
        if self._image is None and self._build is None:
            problems.append("an image or a Dockerfile build context is required")
        if problems:
            raise ConfigurationError(
                message=f"Invalid container definition: {'; '.join(problems)}",
                problems=problems,
            )

        return ContainerDefinition(
            ContainerSpec(
                image=self._image,
                build=self._build,
                exposed_ports=self._exposed_ports,
                env=dict(self._env),
                network=self._network,
                network_alias=self._network_alias,
                files=self._files,
                readiness=self._readiness,
                force_wait=self._force_wait,
                labels=dict(self._labels),
                command=self._command,
                name=self._name,
            )
        )


class ContainerDefinition:
    """Immutable template a container is built from.

    A definition holds no live state, so one definition may be built by
    several scenarios; every ``build()`` creates a new container.
    """

    def __init__(self, spec: ContainerSpec):
        self.spec = spec

    @property
    def network(self) -> NetworkDefinition | None:
        """Network the container attaches to, if any."""
        return self.spec.network

    async def build(
        self,
        engine: ContainerEngine,
        labels: dict[str, str] | None = None,
        on_created: Callable[[LiveContainer], None] | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> LiveContainer:
        """Create and start the container, then wait until it is ready.

        The attached network is built first (idempotently).

        Args:
            engine: Engine that realizes the container
            labels: Run labels merged over the definition's labels
            on_created: Called with the handle as soon as the engine reports the
                container started, before readiness is awaited. Also called when
                the task is cancelled while the engine is still creating it.
            poll_interval: Seconds between readiness probes

        Returns:
            Handle to the ready container

        Raises:
            ProvisioningError: If the engine cannot create the container
            ReadinessTimeoutError: If readiness was not observed in time; the
                container is terminated before this is raised
        """
        spec = self.spec
        network_name = None
        if spec.network is not None:
            network_name = (await spec.network.build(engine, labels)).name

        container = await create_owned(
            engine.create_container, spec.to_request(network_name, labels), on_created=on_created
        )

        if spec.readiness is not None:
            waiter = ReadinessWaiter(spec.readiness, poll_interval=poll_interval)
            try:
                await waiter.wait(container)
            except ProvisioningError:
                logger.warning(
                    "container_not_ready",
                    container=container.name,
                    strategy=describe(spec.readiness),
                    state=waiter.state.value,
                )
                await self._discard(container)
                raise

        if spec.force_wait:
            logger.info("force_wait", container=container.name, seconds=spec.force_wait)
            await asyncio.sleep(spec.force_wait)

        return container

    async def _discard(self, container: LiveContainer) -> None:
        try:
            await container.terminate()
        except Exception as e:
            logger.error("container_discard_failed", container=container.name, error=str(e))

    def __repr__(self) -> str:
        source = self.spec.image or (self.spec.build and str(self.spec.build.context))
        return f"ContainerDefinition({source!r}, ports={list(self.spec.exposed_ports)!r})"


def new_container_definition(*options: ContainerOption) -> ContainerDefinition:
    """Apply option callables to a fresh builder and finalize it.

    Raises:
        ConfigurationError: If the resulting settings are invalid
    """
    return ContainerBuilder().apply(*options).define()
