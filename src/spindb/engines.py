"""Engine kinds and their per-kind strategies.

Every engine-specific decision (image, ports, data mount, container
environment, capabilities, defaults) lives in the ENGINES table so that
adding an engine kind touches one entry.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Flag, StrEnum, auto

from spindb.config import SpinDBConfig


class EngineKind(StrEnum):
    """Database technology tag."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"


class Capability(Flag):
    """What an engine kind supports."""

    NONE = 0
    NETWORK = auto()  # reachable on a host port
    LIFECYCLE = auto()  # process can be started/stopped


@dataclass(frozen=True)
class EngineDefaults:
    version: str | None
    port: int | None
    user: str | None


@dataclass(frozen=True)
class EngineStrategy:
    """Per-kind provisioning strategy."""

    kind: EngineKind
    capabilities: Capability
    image_repo: str | None = None
    container_port: int | None = None
    data_mount: str | None = None
    build_env: Callable[[str, str, str], list[str]] | None = None
    defaults: Callable[[SpinDBConfig], EngineDefaults] | None = None

    @property
    def is_network(self) -> bool:
        return Capability.NETWORK in self.capabilities

    @property
    def is_controllable(self) -> bool:
        return Capability.LIFECYCLE in self.capabilities

    def image(self, version: str) -> str:
        return f"{self.image_repo}:{version}"

    def container_env(self, database: str, user: str, password: str) -> list[str]:
        if self.build_env is None:
            return []
        return self.build_env(database, user, password)

    def resolve_defaults(self, config: SpinDBConfig) -> EngineDefaults:
        if self.defaults is None:
            return EngineDefaults(version=None, port=None, user=None)
        return self.defaults(config)


def _postgres_env(database: str, user: str, password: str) -> list[str]:
    return [
        f"POSTGRES_DB={database}",
        f"POSTGRES_USER={user}",
        f"POSTGRES_PASSWORD={password}",
    ]


def _mysql_env(database: str, user: str, password: str) -> list[str]:
    env = [
        f"MYSQL_DATABASE={database}",
        f"MYSQL_ROOT_PASSWORD={password}",
    ]
    # The mysql image rejects MYSQL_USER=root; root is configured via MYSQL_ROOT_PASSWORD.
    if user != "root":
        env.extend([f"MYSQL_USER={user}", f"MYSQL_PASSWORD={password}"])
    return env


ENGINES: dict[EngineKind, EngineStrategy] = {
    EngineKind.POSTGRES: EngineStrategy(
        kind=EngineKind.POSTGRES,
        capabilities=Capability.NETWORK | Capability.LIFECYCLE,
        image_repo="postgres",
        container_port=5432,
        data_mount="/var/lib/postgresql/data",
        build_env=_postgres_env,
        defaults=lambda c: EngineDefaults(c.postgres.version, c.postgres.port, c.postgres.user),
    ),
    EngineKind.MYSQL: EngineStrategy(
        kind=EngineKind.MYSQL,
        capabilities=Capability.NETWORK | Capability.LIFECYCLE,
        image_repo="mysql",
        container_port=3306,
        data_mount="/var/lib/mysql",
        build_env=_mysql_env,
        defaults=lambda c: EngineDefaults(c.mysql.version, c.mysql.port, c.mysql.user),
    ),
    EngineKind.SQLITE: EngineStrategy(
        kind=EngineKind.SQLITE,
        capabilities=Capability.NONE,
    ),
}


def get_engine(kind: EngineKind | str) -> EngineStrategy:
    """Look up the strategy for an engine kind."""
    return ENGINES[EngineKind(kind)]
