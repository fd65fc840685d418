"""Container engine backed by the Docker SDK."""

from __future__ import annotations

import io
import tarfile
import time
from typing import Any
from urllib.parse import urlparse

import docker
import docker.errors

from ..errors import ProvisioningError, TeardownError
from ..shared.logging import get_logger
from .base import ContainerFile, ContainerRequest, LiveContainer, LiveNetwork, NetworkRequest

logger = get_logger(__name__)


def _label_filters(labels: dict[str, str]) -> dict[str, list[str]]:
    return {"label": [f"{key}={value}" for key, value in labels.items()]}


def build_archive(files: tuple[ContainerFile, ...]) -> bytes:
    """Pack files into a tar archive rooted at ``/``.

    Args:
        files: Files with absolute destination paths

    Returns:
        Uncompressed tar bytes suitable for ``put_archive("/", ...)``
    """
    buffer = io.BytesIO()
    now = time.time()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        for item in files:
            info = tarfile.TarInfo(name=item.container_path.lstrip("/"))
            info.size = len(item.content)
            info.mode = item.mode
            info.mtime = now
            archive.addfile(info, io.BytesIO(item.content))
    return buffer.getvalue()


class DockerEngine:
    """ContainerEngine implementation talking to a local or remote Docker daemon."""

    def __init__(self, client: Any | None = None, host_override: str | None = None):
        """Initialize the engine.

        Args:
            client: Preconfigured ``docker.DockerClient``. Created lazily with
                ``docker.from_env()`` when omitted.
            host_override: Host to report for published ports instead of the
                one derived from the daemon URL.
        """
        self._client = client
        self.host_override = host_override

    @property
    def client(self) -> Any:
        """Docker client, connecting on first use."""
        if self._client is None:
            try:
                self._client = docker.from_env()
            except docker.errors.DockerException as e:
                raise ProvisioningError(
                    message=f"Docker daemon not reachable: {e}",
                    data={"original_error": str(e)},
                ) from e
        return self._client

    # -- containers -----------------------------------------------------------

    def _resolve_image(self, request: ContainerRequest) -> tuple[str, str | None]:
        """Return (image reference, image id to delete on terminate)."""
        if request.build is not None:
            build = request.build
            logger.info("image_build_started", context=str(build.context), dockerfile=build.dockerfile)
            image, _ = self.client.images.build(
                path=str(build.context),
                dockerfile=build.dockerfile,
                buildargs=build.build_args or None,
                labels=request.labels or None,
                rm=True,
            )
            return image.id, None if build.keep_image else image.id

        if request.image is None:
            raise ProvisioningError(
                message="Container request names neither an image nor a build context",
                data={"name": request.name},
            )
        try:
            self.client.images.get(request.image)
        except docker.errors.ImageNotFound:
            logger.info("image_pull_started", image=request.image)
            self.client.images.pull(request.image)
        return request.image, None

    def create_container(self, request: ContainerRequest) -> LiveContainer:
        try:
            image, owned_image = self._resolve_image(request)
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to prepare image: {e}",
                data={"image": request.image, "original_error": str(e)},
            ) from e

        kwargs: dict[str, Any] = {
            "image": image,
            "detach": True,
            "environment": dict(request.env),
            "labels": dict(request.labels),
            "ports": {port: None for port in request.exposed_ports},
        }
        if request.name:
            kwargs["name"] = request.name
        if request.command:
            kwargs["command"] = list(request.command)
        if request.network:
            kwargs["network"] = request.network
            kwargs["networking_config"] = {
                request.network: self.client.api.create_endpoint_config(
                    aliases=list(request.network_aliases)
                )
            }

        try:
            container = self.client.containers.create(**kwargs)
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to create the container: {e}",
                data={"image": image, "original_error": str(e)},
            ) from e

        try:
            if request.files:
                if not container.put_archive("/", build_archive(request.files)):
                    raise ProvisioningError(
                        message="Failed to copy files into the container",
                        data={"container_id": container.id},
                    )
            container.start()
            container.reload()
        except (docker.errors.DockerException, ProvisioningError) as e:
            try:
                container.remove(force=True, v=True)
            except docker.errors.DockerException as cleanup_error:
                logger.warning(
                    "container_cleanup_failed", container_id=container.id, error=str(cleanup_error)
                )
            if isinstance(e, ProvisioningError):
                raise
            raise ProvisioningError(
                message=f"Failed to start the container: {e}",
                data={"container_id": container.id, "original_error": str(e)},
            ) from e

        logger.info("container_started", container_id=container.id[:12], name=container.name, image=image)
        return LiveContainer(
            id=container.id,
            name=container.name,
            request=request,
            engine=self,
            image_id=owned_image,
        )

    def terminate(self, container: LiveContainer) -> None:
        try:
            self.client.containers.get(container.id).remove(force=True, v=True)
        except docker.errors.NotFound:
            logger.debug("container_already_gone", container_id=container.id[:12])
        except docker.errors.DockerException as e:
            raise TeardownError(
                message=f"Failed to terminate container {container.name}: {e}",
                data={"container_id": container.id},
                failures=[e],
            ) from e

        if container.image_id:
            try:
                self.client.images.remove(container.image_id, force=True)
            except docker.errors.DockerException as e:
                logger.warning("image_remove_failed", image_id=container.image_id, error=str(e))

        logger.info("container_terminated", container_id=container.id[:12], name=container.name)

    def host(self, container: LiveContainer) -> str:
        if self.host_override:
            return self.host_override
        parsed = urlparse(self.client.api.base_url)
        if parsed.scheme == "http+docker" or not parsed.hostname:
            return "localhost"
        return parsed.hostname

    def mapped_port(self, container: LiveContainer, port: str) -> str:
        try:
            attrs = self.client.containers.get(container.id).attrs
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to inspect container {container.name}: {e}",
                data={"container_id": container.id},
            ) from e

        bindings = (attrs.get("NetworkSettings", {}).get("Ports") or {}).get(port) or []
        if not bindings:
            raise ProvisioningError(
                message=f"Port {port} not found",
                data={"container_id": container.id, "port": port},
            )
        # Prefer the IPv4 binding when the daemon publishes both families
        for binding in bindings:
            if ":" not in binding.get("HostIp", ""):
                return str(binding["HostPort"])
        return str(bindings[0]["HostPort"])

    def logs(self, container: LiveContainer) -> str:
        try:
            raw = self.client.containers.get(container.id).logs(stdout=True, stderr=True)
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to read logs of container {container.name}: {e}",
                data={"container_id": container.id},
            ) from e
        return raw.decode("utf-8", errors="replace")

    # -- networks -------------------------------------------------------------

    def create_network(self, request: NetworkRequest) -> LiveNetwork:
        try:
            network = self.client.networks.create(
                request.name,
                driver=request.driver.value,
                labels=dict(request.labels),
            )
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to create the network: {e}",
                data={"network": request.name, "original_error": str(e)},
            ) from e
        logger.info("network_created", network=request.name, driver=request.driver.value)
        return LiveNetwork(id=network.id, name=request.name, engine=self)

    def remove_network(self, network: LiveNetwork) -> None:
        try:
            self.client.networks.get(network.id).remove()
        except docker.errors.NotFound:
            logger.debug("network_already_gone", network=network.name)
        except docker.errors.DockerException as e:
            raise TeardownError(
                message=f"Failed to remove network {network.name}: {e}",
                data={"network_id": network.id},
                failures=[e],
            ) from e
        else:
            logger.info("network_removed", network=network.name)

    # -- maintenance ----------------------------------------------------------

    def prune(self, labels: dict[str, str]) -> list[str]:
        """Kill and remove containers and networks carrying ``labels``.

        Failures are logged and skipped so one stuck resource does not keep the
        rest alive.

        Returns:
            Names of the removed resources
        """
        removed: list[str] = []
        filters = _label_filters(labels)
        try:
            containers = self.client.containers.list(all=True, filters=filters)
            networks = self.client.networks.list(filters=filters)
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to list resources to prune: {e}",
                data={"labels": labels},
            ) from e

        for container in containers:
            try:
                container.remove(force=True, v=True)
                removed.append(container.name)
            except docker.errors.APIError as e:
                logger.error("prune_container_failed", name=container.name, error=str(e))

        for network in networks:
            try:
                network.remove()
                removed.append(network.name)
            except docker.errors.APIError as e:
                logger.error("prune_network_failed", name=network.name, error=str(e))

        if removed:
            logger.info("pruned_resources", count=len(removed), labels=labels)
        return removed

    def list_managed(self, labels: dict[str, str]) -> list[dict[str, Any]]:
        """Describe containers and networks carrying ``labels``."""
        filters = _label_filters(labels)
        try:
            containers = self.client.containers.list(all=True, filters=filters)
            networks = self.client.networks.list(filters=filters)
        except docker.errors.DockerException as e:
            raise ProvisioningError(
                message=f"Failed to list managed resources: {e}",
                data={"labels": labels},
            ) from e

        resources = [
            {
                "kind": "container",
                "name": c.name,
                "id": c.id[:12],
                "status": c.status,
                "labels": c.labels,
            }
            for c in containers
        ]
        resources.extend(
            {
                "kind": "network",
                "name": n.name,
                "id": n.id[:12],
                "status": "-",
                "labels": n.attrs.get("Labels") or {},
            }
            for n in networks
        )
        return resources
