"""Docker Engine API client.

Provides async Docker API access for images and containers.
Supports both Unix socket and TCP connections.

Every failure is wrapped with the operation and target it concerns:
- transport failures (daemon unreachable) -> InfrastructureUnavailableError
- HTTP failures -> the operation's error type (ImagePullError, ...)
Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from pydantic import BaseModel

from spindb.config import get_config
from spindb.errors import (
    ContainerCreateError,
    ContainerNotFoundError,
    ContainerOperationError,
    ImagePullError,
    InfrastructureUnavailableError,
    SpinDBError,
)
from spindb.logging_schema import LogEvent

logger = logging.getLogger(__name__)

PUBLIC_BIND_IP = "0.0.0.0"
PRIVATE_BIND_IP = "127.0.0.1"


# =============================================================================
# Pydantic Models
# =============================================================================


class HostConfig(BaseModel):
    """Docker HostConfig for container creation.

    port_bindings maps container port to host port. public selects the
    host bind address: all interfaces when True, loopback otherwise.
    """

    port_bindings: dict[int, int] = {}
    binds: list[str] = []
    restart_policy: str = "unless-stopped"
    public: bool = False

    model_config = {"frozen": True}

    @property
    def bind_ip(self) -> str:
        return PUBLIC_BIND_IP if self.public else PRIVATE_BIND_IP

    def to_api(self) -> dict:
        """Convert to Docker API format."""
        return {
            "PortBindings": {
                f"{container_port}/tcp": [
                    {"HostIp": self.bind_ip, "HostPort": str(host_port)}
                ]
                for container_port, host_port in self.port_bindings.items()
            },
            "Binds": self.binds,
            "RestartPolicy": {"Name": self.restart_policy},
        }


class ContainerConfig(BaseModel):
    """Docker container configuration for creation."""

    image: str
    name: str
    env: list[str] = []
    labels: dict[str, str] = {}
    host_config: HostConfig = HostConfig()

    model_config = {"frozen": True}

    def to_api(self) -> dict:
        """Convert to Docker API JSON format."""
        result: dict = {
            "Image": self.image,
            "ExposedPorts": {f"{port}/tcp": {} for port in self.host_config.port_bindings},
            "HostConfig": self.host_config.to_api(),
        }
        if self.env:
            result["Env"] = self.env
        if self.labels:
            result["Labels"] = self.labels
        return result


# =============================================================================
# Error wrapping
# =============================================================================


def _error_message(response: httpx.Response) -> str:
    """Extract Docker's error message from a response body."""
    try:
        return response.json().get("message", response.text)
    except ValueError:
        return response.text or f"HTTP {response.status_code}"


@asynccontextmanager
async def _docker_call(
    operation: str,
    target: str,
    error_cls: type[SpinDBError] = ContainerOperationError,
) -> AsyncIterator[None]:
    """Translate httpx failures into spindb errors with operation context."""
    try:
        yield
    except (httpx.ConnectError, httpx.ConnectTimeout) as e:
        raise InfrastructureUnavailableError(
            f"{operation} {target}: Docker daemon is not reachable ({e})"
        ) from e
    except httpx.TimeoutException as e:
        raise error_cls(f"{operation} {target}: timed out") from e
    except httpx.TransportError as e:
        raise InfrastructureUnavailableError(f"{operation} {target}: {e}") from e
    except httpx.HTTPStatusError as e:
        raise error_cls(f"{operation} {target}: {_error_message(e.response)}") from e


def _demux_logs(raw: bytes) -> str:
    """Strip Docker's multiplexed stream framing from log output.

    Non-TTY containers prefix each frame with an 8 byte header:
    stream type (1 byte), 3 zero bytes, payload size (4 bytes, big endian).
    """
    if len(raw) < 8 or raw[0] not in (0, 1, 2) or raw[1:4] != b"\x00\x00\x00":
        return raw.decode(errors="replace")

    chunks = []
    offset = 0
    while offset + 8 <= len(raw):
        size = int.from_bytes(raw[offset + 4 : offset + 8], "big")
        chunks.append(raw[offset + 8 : offset + 8 + size])
        offset += 8 + size
    return b"".join(chunks).decode(errors="replace")


# =============================================================================
# Docker Client (Singleton)
# =============================================================================


class DockerClient:
    """Async Docker API client."""

    def __init__(
        self,
        docker_host: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        docker_config = get_config().docker
        self._host = docker_host or docker_config.host
        self._timeout = timeout if timeout is not None else docker_config.api_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def timeout(self) -> float:
        return self._timeout

    def _create_client(self) -> httpx.AsyncClient:
        """Create a new HTTP client."""
        if self._transport is not None:
            return httpx.AsyncClient(
                transport=self._transport,
                base_url="http://localhost",
                timeout=self._timeout,
            )
        if self._host.startswith("unix://"):
            socket_path = self._host.replace("unix://", "")
            transport = httpx.AsyncHTTPTransport(uds=socket_path)
            return httpx.AsyncClient(
                transport=transport,
                base_url="http://localhost",
                timeout=self._timeout,
            )
        base_url = self._host
        if base_url.startswith("tcp://"):
            base_url = base_url.replace("tcp://", "http://")
        return httpx.AsyncClient(base_url=base_url, timeout=self._timeout)

    async def get(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = self._create_client()
        return self._client

    async def ping(self) -> None:
        """Check that the daemon answers.

        Raises:
            InfrastructureUnavailableError: Daemon unreachable or unhealthy
        """
        client = await self.get()
        try:
            resp = await client.get("/_ping")
        except httpx.TransportError as e:
            raise InfrastructureUnavailableError(
                f"Docker is not running or accessible at {self._host}: {e}"
            ) from e
        if resp.status_code != 200:
            raise InfrastructureUnavailableError(
                f"Docker ping failed at {self._host}: HTTP {resp.status_code}"
            )

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None


_docker_client: DockerClient | None = None


def get_docker_client() -> DockerClient:
    """Get the global Docker client singleton."""
    global _docker_client
    if _docker_client is None:
        _docker_client = DockerClient()
    return _docker_client


async def close_docker() -> None:
    """Close the global Docker client."""
    global _docker_client
    if _docker_client:
        await _docker_client.close()
        _docker_client = None


# =============================================================================
# Container API
# =============================================================================


class ContainerAPI:
    """Docker Container API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def list(self, filters: dict | None = None) -> list[dict]:
        """List containers, including stopped ones."""
        client = await self._docker.get()
        params: dict = {"all": "true"}
        if filters:
            params["filters"] = json.dumps(filters)
        async with _docker_call("list", "containers"):
            resp = await client.get("/containers/json", params=params)
            resp.raise_for_status()
        return resp.json()

    async def list_by_label(self, label: str) -> list[dict]:
        """List containers carrying a label (``key`` or ``key=value``)."""
        return await self.list(filters={"label": [label]})

    async def inspect(self, name_or_id: str) -> dict | None:
        """Inspect a container. Returns None when it does not exist."""
        client = await self._docker.get()
        async with _docker_call("inspect", name_or_id):
            resp = await client.get(f"/containers/{name_or_id}/json")
            if resp.status_code == 404:
                return None
            resp.raise_for_status()
        return resp.json()

    async def find(self, name_or_id: str) -> dict:
        """Resolve a container by exact id, then declared name, then id-prefix.

        Raises:
            ContainerNotFoundError: Nothing matches
        """
        containers = await self.list()
        for container in containers:
            if container.get("Id") == name_or_id:
                return container
        for container in containers:
            if name_or_id in [n.lstrip("/") for n in container.get("Names", [])]:
                return container
        if name_or_id:
            for container in containers:
                if container.get("Id", "").startswith(name_or_id):
                    return container
        raise ContainerNotFoundError(f"container {name_or_id} not found")

    async def is_running(self, name_or_id: str) -> bool:
        """Check whether a container is running.

        Raises:
            ContainerNotFoundError: Nothing matches
        """
        container = await self.find(name_or_id)
        return container.get("State") == "running"

    async def create(self, config: ContainerConfig, timeout: float | None = None) -> str:
        """Create a container and return its id.

        Raises:
            ContainerCreateError: Name collision or invalid configuration
        """
        client = await self._docker.get()
        async with _docker_call("create", config.name, ContainerCreateError):
            resp = await client.post(
                "/containers/create",
                params={"name": config.name},
                json=config.to_api(),
                timeout=timeout or self._docker.timeout,
            )
            if resp.status_code == 409:
                raise ContainerCreateError(
                    f"create {config.name}: name already in use ({_error_message(resp)})"
                )
            resp.raise_for_status()
        container_id = resp.json()["Id"]
        logger.info(
            "Created container",
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "container": config.name,
                "container_id": container_id[:12],
                "image": config.image,
            },
        )
        return container_id

    async def start(self, handle: str, timeout: float | None = None) -> None:
        """Start a container. Already running is not an error."""
        client = await self._docker.get()
        async with _docker_call("start", handle):
            resp = await client.post(
                f"/containers/{handle}/start",
                timeout=timeout or self._docker.timeout,
            )
            if resp.status_code == 404:
                raise ContainerNotFoundError(f"start {handle}: container not found")
            if resp.status_code not in (204, 304):
                resp.raise_for_status()
        logger.info(
            "Started container",
            extra={"event": LogEvent.CONTAINER_STARTED, "container_id": handle[:12]},
        )

    async def stop(self, handle: str, grace_period: int = 10, timeout: float | None = None) -> None:
        """Stop a container, killing it after grace_period seconds."""
        client = await self._docker.get()
        # The daemon holds the request open for up to grace_period
        http_timeout = timeout or (grace_period + self._docker.timeout)
        async with _docker_call("stop", handle):
            resp = await client.post(
                f"/containers/{handle}/stop",
                params={"t": str(grace_period)},
                timeout=http_timeout,
            )
            if resp.status_code == 404:
                raise ContainerNotFoundError(f"stop {handle}: container not found")
            if resp.status_code not in (204, 304):
                resp.raise_for_status()
        logger.info(
            "Stopped container",
            extra={"event": LogEvent.CONTAINER_STOPPED, "container_id": handle[:12]},
        )

    async def remove(self, handle: str, force: bool = False, timeout: float | None = None) -> None:
        """Remove a container."""
        client = await self._docker.get()
        async with _docker_call("remove", handle):
            resp = await client.delete(
                f"/containers/{handle}",
                params={"force": "true" if force else "false"},
                timeout=timeout or self._docker.timeout,
            )
            if resp.status_code == 404:
                raise ContainerNotFoundError(f"remove {handle}: container not found")
            resp.raise_for_status()
        logger.info(
            "Removed container",
            extra={"event": LogEvent.CONTAINER_REMOVED, "container_id": handle[:12]},
        )

    async def logs(self, handle: str, tail: int = 100) -> str:
        """Get the last ``tail`` lines of container output (stdout and stderr)."""
        client = await self._docker.get()
        params = {"stdout": "true", "stderr": "true", "tail": str(tail)}
        async with _docker_call("logs", handle):
            resp = await client.get(f"/containers/{handle}/logs", params=params)
            if resp.status_code == 404:
                raise ContainerNotFoundError(f"logs {handle}: container not found")
            resp.raise_for_status()
        return _demux_logs(resp.content)


# =============================================================================
# Image API
# =============================================================================


def split_image_ref(image_ref: str) -> tuple[str, str]:
    """Split ``repo[:tag]`` into (repo, tag), defaulting tag to latest."""
    repo, sep, tag = image_ref.rpartition(":")
    if not sep or "/" in tag:
        return image_ref, "latest"
    return repo, tag


def _raise_pull_error(image_ref: str, line: str) -> None:
    """Raise ImagePullError if a pull progress line reports an error."""
    if not line.strip():
        return
    try:
        message = json.loads(line)
    except ValueError:
        return
    if isinstance(message, dict) and message.get("error"):
        raise ImagePullError(f"pull {image_ref}: {message['error']}")


class ImageAPI:
    """Docker Image API operations."""

    def __init__(self, client: DockerClient | None = None) -> None:
        self._docker = client or get_docker_client()

    async def pull(self, image_ref: str, timeout: float | None = None) -> None:
        """Pull image from registry. Idempotent; blocks until complete.

        The timeout bounds the whole pull, including the progress stream.

        Raises:
            ImagePullError: Registry or daemon reported a failure, or the
                pull did not finish within the timeout
        """
        client = await self._docker.get()
        image, tag = split_image_ref(image_ref)
        pull_timeout = timeout or get_config().docker.image_pull_timeout

        logger.info("Pulling image: %s:%s", image, tag)

        try:
            async with asyncio.timeout(pull_timeout):
                async with _docker_call("pull", image_ref, ImagePullError):
                    async with client.stream(
                        "POST",
                        "/images/create",
                        params={"fromImage": image, "tag": tag},
                        timeout=pull_timeout,
                    ) as resp:
                        if resp.is_error:
                            await resp.aread()
                            resp.raise_for_status()
                        # Failures after the 200 show up in the JSON progress lines.
                        async for line in resp.aiter_lines():
                            _raise_pull_error(image_ref, line)
        except TimeoutError as e:
            raise ImagePullError(f"pull {image_ref}: timed out after {pull_timeout}s") from e

        logger.info(
            "Pulled image",
            extra={"event": LogEvent.IMAGE_PULLED, "image": f"{image}:{tag}"},
        )
