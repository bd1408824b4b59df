"""spindb infrastructure layer."""

from spindb.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
    close_docker,
    get_docker_client,
)
from spindb.infra.ports import PortAllocator, is_port_available
from spindb.infra.probes import ReadinessProbe

__all__ = [
    # Docker
    "ContainerAPI",
    "ContainerConfig",
    "DockerClient",
    "HostConfig",
    "ImageAPI",
    "close_docker",
    "get_docker_client",
    # Ports
    "PortAllocator",
    "is_port_available",
    # Readiness
    "ReadinessProbe",
]
