"""Fixtures for spindb unit tests."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from spindb.config import (
    OrchestratorConfig,
    ReadinessConfig,
    SpinDBConfig,
    StorageConfig,
)
from spindb.infra import ContainerAPI, DockerClient, ImageAPI, PortAllocator, ReadinessProbe
from spindb.models import ProbeResult
from spindb.services.orchestrator import Orchestrator
from spindb.services.shell import Confirmer, ShellLauncher
from spindb.store import EnvironmentStore, Registry

CONTAINER_ID = "3f2a9c1b7e4d5a6b8c9d0e1f2a3b4c5d6e7f8a9b0c1d2e3f4a5b6c7d8e9f0a1b"


@pytest.fixture
def spindb_home(tmp_path: Path) -> Path:
    return tmp_path / "spindb"


@pytest.fixture
def config(spindb_home: Path) -> SpinDBConfig:
    """Config rooted in a temp dir with fast timings."""
    return SpinDBConfig(
        storage=StorageConfig(home=spindb_home),
        readiness=ReadinessConfig(timeout=1.0, interval=0.01, connect_timeout=0.5),
        orchestrator=OrchestratorConfig(restart_delay=0.0),
    )


@pytest.fixture
def registry(config: SpinDBConfig) -> Registry:
    return Registry(config.storage.registry_file)


@pytest.fixture
def env_store(config: SpinDBConfig) -> EnvironmentStore:
    return EnvironmentStore(config.storage.environments_dir)


@pytest.fixture
def mock_docker() -> AsyncMock:
    """Mock DockerClient whose daemon always answers."""
    client = AsyncMock(spec=DockerClient)
    client.ping = AsyncMock()
    return client


@pytest.fixture
def mock_container_api() -> AsyncMock:
    """Mock ContainerAPI for testing."""
    api = AsyncMock(spec=ContainerAPI)
    api.list = AsyncMock(return_value=[])
    api.list_by_label = AsyncMock(return_value=[])
    api.inspect = AsyncMock(return_value=None)
    api.is_running = AsyncMock(return_value=True)
    api.create = AsyncMock(return_value=CONTAINER_ID)
    api.start = AsyncMock()
    api.stop = AsyncMock()
    api.remove = AsyncMock()
    api.logs = AsyncMock(return_value="")
    return api


@pytest.fixture
def mock_image_api() -> AsyncMock:
    """Mock ImageAPI for testing."""
    api = AsyncMock(spec=ImageAPI)
    api.pull = AsyncMock()
    return api


@pytest.fixture
def mock_probe() -> AsyncMock:
    """Mock ReadinessProbe that reports every instance as ready."""
    probe = AsyncMock(spec=ReadinessProbe)
    probe.wait_ready = AsyncMock(return_value=ProbeResult(success=True, message="ok"))
    probe.test_once = AsyncMock(return_value=ProbeResult(success=True, message="ok"))
    return probe


@pytest.fixture
def mock_confirmer() -> AsyncMock:
    confirmer = AsyncMock(spec=Confirmer)
    confirmer.confirm = AsyncMock(return_value=True)
    return confirmer


@pytest.fixture
def mock_shell() -> AsyncMock:
    shell = AsyncMock(spec=ShellLauncher)
    shell.launch = AsyncMock(return_value=0)
    return shell


@pytest.fixture
def free_ports() -> PortAllocator:
    """PortAllocator that treats every port as free."""
    return PortAllocator(is_available=lambda port: True)


@pytest.fixture
def orchestrator(
    config: SpinDBConfig,
    registry: Registry,
    mock_docker: AsyncMock,
    mock_container_api: AsyncMock,
    mock_image_api: AsyncMock,
    free_ports: PortAllocator,
    mock_probe: AsyncMock,
    mock_confirmer: AsyncMock,
    mock_shell: AsyncMock,
) -> Orchestrator:
    """Orchestrator wired to mocks and a temp registry."""
    return Orchestrator(
        config,
        registry=registry,
        docker=mock_docker,
        containers=mock_container_api,
        images=mock_image_api,
        ports=free_ports,
        probe=mock_probe,
        confirmer=mock_confirmer,
        shell=mock_shell,
        sleep=AsyncMock(),
    )
