"""Integration test fixtures.

These tests talk to a real Docker daemon and are skipped when none is
reachable at SPINDB_DOCKER_HOST (default: the local unix socket).
"""

import uuid
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

import spindb.infra.docker as docker_module
from spindb.config import ReadinessConfig, SpinDBConfig, StorageConfig
from spindb.errors import InfrastructureUnavailableError
from spindb.infra import ContainerAPI, DockerClient, ImageAPI


@pytest.fixture(autouse=True)
async def reset_docker_client() -> AsyncIterator[None]:
    """Reset global Docker client before each test.

    Prevents 'Event loop is closed' errors from a client bound to a
    previous test's loop.
    """
    docker_module._docker_client = None
    yield
    if docker_module._docker_client:
        await docker_module._docker_client.close()
        docker_module._docker_client = None


@pytest.fixture
async def docker_client() -> AsyncIterator[DockerClient]:
    client = DockerClient()
    try:
        await client.ping()
    except InfrastructureUnavailableError as e:
        await client.close()
        pytest.skip(f"Docker not available: {e.message}")
    yield client
    await client.close()


@pytest.fixture
def container_api(docker_client: DockerClient) -> ContainerAPI:
    return ContainerAPI(docker_client)


@pytest.fixture
def image_api(docker_client: DockerClient) -> ImageAPI:
    return ImageAPI(docker_client)


@pytest.fixture
def test_prefix() -> str:
    """Unique name suffix per test to avoid collisions with real instances."""
    return f"it{uuid.uuid4().hex[:8]}"


@pytest.fixture
def integration_config(tmp_path: Path) -> SpinDBConfig:
    return SpinDBConfig(
        storage=StorageConfig(home=tmp_path / "spindb"),
        readiness=ReadinessConfig(timeout=90.0),
    )
