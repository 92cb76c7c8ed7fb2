"""Container runtime contract and its Docker Engine adapter."""

import asyncio
from typing import AsyncIterator, List, Optional, Protocol, Tuple

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from pgd.constants import (
    CONTAINER_PORT,
    DATABASE,
    LOCALHOST,
    POSTGRES_IMAGE,
    USERNAME,
    VERSION_LABEL,
)
from pgd.errors import (
    ContainerNotFoundError,
    RuntimeConnectivityError,
    RuntimeOperationError,
)
from pgd.errors_catalog import actionable_error
from pgd.models import PostgresVersion
from pgd.services.image_pull import ImagePullProgress


class RuntimeClient(Protocol):
    """Operations the reconciler and controller need from a container runtime.

    ``container_exists`` reports a missing container as False; every other
    call raises ContainerNotFoundError for it. Unreachable daemons raise
    RuntimeConnectivityError and failed calls raise RuntimeOperationError.
    """

    async def ensure_image_present(self, version: PostgresVersion) -> None: ...

    async def container_exists(self, container_id: str) -> bool: ...

    async def is_running(self, container_id: str) -> bool: ...

    async def get_version_label(self, container_id: str) -> PostgresVersion: ...

    async def create_container(
        self, name: str, version: PostgresVersion, password: str, port: int
    ) -> str: ...

    async def start(self, container_id: str) -> None: ...

    async def stop(self, container_id: str, timeout: int) -> None: ...

    async def restart(self, container_id: str, timeout: int) -> None: ...

    async def remove(self, container_id: str, force: bool) -> None: ...

    async def exec(self, container_id: str, argv: List[str]) -> Tuple[int, bytes]: ...

    def stream_logs(self, container_id: str, follow: bool) -> AsyncIterator[bytes]: ...


class DockerRuntimeService:
    """RuntimeClient backed by the docker SDK.

    The SDK is blocking, so every call runs in a worker thread.
    """

    def __init__(self, client, logger, console, image_repository: str = POSTGRES_IMAGE):
        self.client = client
        self.logger = logger
        self.console = console
        self.image_repository = image_repository

    @classmethod
    async def connect(
        cls,
        logger,
        console,
        base_url: Optional[str] = None,
        docker_module=docker,
    ) -> "DockerRuntimeService":
        """Builds a client and probes the daemon before any work starts."""

        def _connect():
            client = docker_module.DockerClient(base_url=base_url) if base_url else docker_module.from_env()
            client.ping()
            return client

        try:
            client = await asyncio.to_thread(_connect)
        except (DockerException, requests.RequestException) as exc:
            raise RuntimeConnectivityError(actionable_error("docker_unreachable", detail=str(exc))) from exc

        logger.debug("docker.connected")
        return cls(client, logger, console)

    async def _call(self, description: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except NotFound as exc:
            raise ContainerNotFoundError(f"{description}: {exc}") from exc
        except APIError as exc:
            raise RuntimeOperationError(f"{description}: {exc}") from exc
        except (DockerException, requests.RequestException) as exc:
            raise RuntimeConnectivityError(actionable_error("docker_unreachable", detail=str(exc))) from exc

    async def _get(self, container_id: str):
        return await self._call("Failed to inspect container", self.client.containers.get, container_id)

    def _has_image(self, image: str) -> bool:
        try:
            self.client.images.get(image)
        except ImageNotFound:
            return False
        return True

    def _pull(self, version: PostgresVersion) -> int:
        events = self.client.api.pull(self.image_repository, tag=str(version), stream=True, decode=True)
        return ImagePullProgress(self.console).consume(events)

    async def ensure_image_present(self, version: PostgresVersion):
        image = version.image(self.image_repository)
        if await self._call("Failed to list installed docker images", self._has_image, image):
            self.logger.debug("Image %s already present", image)
            return

        self.console.print(f"[blue]Downloading {image}[/blue]")
        layers = await self._call(f"Failed to pull {image}", self._pull, version)
        self.logger.info("Pulled %s (%s layers)", image, layers)
        self.console.print("[green]Download complete![/green]")

    async def container_exists(self, container_id: str) -> bool:
        try:
            await self._get(container_id)
        except ContainerNotFoundError:
            return False
        return True

    async def is_running(self, container_id: str) -> bool:
        container = await self._get(container_id)
        state = container.attrs.get("State") or {}
        return bool(state.get("Running"))

    async def get_version_label(self, container_id: str) -> PostgresVersion:
        container = await self._get(container_id)
        raw = (container.labels or {}).get(VERSION_LABEL)
        if raw is None:
            raise RuntimeOperationError(f"Container {container_id} is missing the {VERSION_LABEL} label")

        try:
            return PostgresVersion.parse(raw)
        except ValueError as exc:
            raise RuntimeOperationError(f"Invalid version in label: {raw}") from exc

    def _create(self, name: str, version: PostgresVersion, password: str, port: int) -> str:
        try:
            container = self.client.containers.create(
                version.image(self.image_repository),
                name=name,
                environment={
                    "POSTGRES_PASSWORD": password,
                    "POSTGRES_USER": USERNAME,
                    "POSTGRES_DB": DATABASE,
                },
                ports={CONTAINER_PORT: (LOCALHOST, port)},
                labels={VERSION_LABEL: str(version)},
            )
        except ImageNotFound as exc:
            raise RuntimeOperationError(
                f"Image {version.image(self.image_repository)} is not available locally"
            ) from exc
        except APIError as exc:
            if exc.status_code == 409:
                raise RuntimeOperationError(actionable_error("container_name_conflict", name=name)) from exc
            raise
        return container.id

    async def create_container(self, name: str, version: PostgresVersion, password: str, port: int) -> str:
        container_id = await self._call("Failed to create container", self._create, name, version, password, port)
        self.logger.debug("Created container %s (%s)", name, container_id)
        return container_id

    async def start(self, container_id: str):
        await self._call("Failed to start container", self.client.api.start, container_id)

    async def stop(self, container_id: str, timeout: int):
        await self._call("Failed to stop container", self.client.api.stop, container_id, timeout=timeout)

    async def restart(self, container_id: str, timeout: int):
        await self._call("Failed to restart container", self.client.api.restart, container_id, timeout=timeout)

    async def remove(self, container_id: str, force: bool):
        await self._call("Failed to remove container", self.client.api.remove_container, container_id, force=force)

    async def exec(self, container_id: str, argv: List[str]) -> Tuple[int, bytes]:
        container = await self._get(container_id)
        result = await self._call(f"Failed to run {argv[0]} in container", container.exec_run, argv)
        return result.exit_code, result.output

    async def stream_logs(self, container_id: str, follow: bool) -> AsyncIterator[bytes]:
        container = await self._get(container_id)
        chunks = await self._call("Failed to read container logs", container.logs, stream=True, follow=follow)

        # Closing the stream unblocks a worker thread still waiting in next().
        try:
            while True:
                chunk = await self._call("Failed to read container logs", next, chunks, None)
                if chunk is None:
                    return
                yield chunk
        finally:
            chunks.close()
