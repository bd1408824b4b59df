"""spindb configuration using pydantic-settings.

Configuration hierarchy:
- DockerConfig: Container control-plane settings
- StorageConfig: On-disk layout (registry, environments, data dirs)
- EngineDefaults: Per-engine version/port/user defaults
- ReadinessConfig: Readiness polling behavior
- OrchestratorConfig: Lifecycle timings
- LoggingConfig: Logging behavior
- SpinDBConfig: Main config aggregating all sub-configs

Environment variable prefix: SPINDB_
Example: SPINDB_DOCKER_HOST=tcp://localhost:2375
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DockerConfig(BaseSettings):
    """Docker control-plane configuration."""

    model_config = SettingsConfigDict(env_prefix="SPINDB_DOCKER_")

    # Connection
    host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Docker daemon socket or TCP address",
    )

    # Resource naming
    container_prefix: str = Field(default="spindb", description="Container name prefix")
    managed_label: str = Field(
        default="spindb",
        description="Label key marking containers managed by spindb",
    )

    # Timeouts
    api_timeout: float = Field(default=30.0, description="Docker API call timeout (seconds)")
    image_pull_timeout: float = Field(default=600.0, description="Image pull timeout (seconds)")
    stop_timeout: int = Field(default=10, description="Grace period before SIGKILL on stop (seconds)")


class StorageConfig(BaseSettings):
    """On-disk layout.

    Everything lives under a single home directory (~/.spindb by default)
    so that existing persisted state from earlier installs is picked up.
    """

    model_config = SettingsConfigDict(env_prefix="SPINDB_STORAGE_")

    home: Path = Field(
        default_factory=lambda: Path.home() / ".spindb",
        description="spindb home directory",
    )

    @property
    def data_dir(self) -> Path:
        return self.home / "data"

    @property
    def registry_file(self) -> Path:
        return self.home / "databases.yaml"

    @property
    def environments_dir(self) -> Path:
        return self.home / "environments"


class PostgresDefaults(BaseSettings):
    """Defaults applied to postgres create requests."""

    model_config = SettingsConfigDict(env_prefix="SPINDB_POSTGRES_")

    version: str = "15"
    port: int = 5432
    user: str = "postgres"


class MySQLDefaults(BaseSettings):
    """Defaults applied to mysql create requests."""

    model_config = SettingsConfigDict(env_prefix="SPINDB_MYSQL_")

    version: str = "8.0"
    port: int = 3306
    user: str = "root"


class ReadinessConfig(BaseSettings):
    """Readiness polling configuration.

    timeout bounds the whole wait, connect_timeout bounds a single
    handshake attempt.
    """

    model_config = SettingsConfigDict(env_prefix="SPINDB_READINESS_")

    timeout: float = Field(default=60.0, description="Readiness deadline (seconds)")
    interval: float = Field(default=2.0, description="Delay between attempts (seconds)")
    connect_timeout: float = Field(default=10.0, description="Single attempt timeout (seconds)")
    host: str = Field(default="localhost", description="Host used to reach published ports")


class OrchestratorConfig(BaseSettings):
    """Lifecycle timings and container defaults."""

    model_config = SettingsConfigDict(env_prefix="SPINDB_ORCHESTRATOR_")

    restart_delay: float = Field(default=2.0, description="Pause between stop and start (seconds)")
    restart_policy: str = Field(default="unless-stopped", description="Docker restart policy")
    port_search_range: int = Field(default=100, description="Ports probed above the base port")


class LoggingConfig(BaseSettings):
    """Logging configuration.

    Supports both text and JSON formats:
    - text: Human-readable for interactive use
    - json: Structured logging for log aggregation
    """

    model_config = SettingsConfigDict(env_prefix="SPINDB_LOGGING_")

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="text", description="Log format (text, json)")
    service_name: str = Field(default="spindb", description="Service identifier in logs")


class SpinDBConfig(BaseSettings):
    """Main configuration aggregating all sub-configs.

    Environment variable prefix: SPINDB_
    Sub-configs use their own prefixes (SPINDB_DOCKER_, SPINDB_STORAGE_, etc.)
    """

    model_config = SettingsConfigDict(
        env_prefix="SPINDB_",
        env_nested_delimiter="__",
    )

    docker: DockerConfig = Field(default_factory=DockerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    postgres: PostgresDefaults = Field(default_factory=PostgresDefaults)
    mysql: MySQLDefaults = Field(default_factory=MySQLDefaults)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


@lru_cache
def get_config() -> SpinDBConfig:
    """Get cached configuration singleton."""
    return SpinDBConfig()
