"""Domain models for instances, environments and operation results."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from spindb.engines import EngineKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Instance records
# =============================================================================


class InstanceRecord(BaseModel):
    """A managed database instance as persisted in the registry.

    YAML keys are part of the on-disk contract and must not change:
    name, type, version, port, user, password, file_path, public,
    container_id, created, last_used.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    engine: EngineKind = Field(alias="type")
    version: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    file_path: str | None = None
    public: bool = False
    container_id: str | None = None
    created: datetime = Field(default_factory=utcnow)
    last_used: datetime | None = None

    @model_validator(mode="before")
    @classmethod
    def _drop_zero_values(cls, data: Any) -> Any:
        # Older files may carry 0 / "" for absent port and container id.
        if isinstance(data, dict):
            data = dict(data)
            if data.get("port") == 0:
                data["port"] = None
            for key in ("container_id", "file_path", "version", "user", "password"):
                if data.get(key) == "":
                    data[key] = None
        return data

    @model_validator(mode="after")
    def _check_invariants(self) -> "InstanceRecord":
        if (self.port is None) != (self.container_id is None):
            raise ValueError("port and container_id must be both set or both absent")
        if (self.engine == EngineKind.SQLITE) != (self.file_path is not None):
            raise ValueError("file_path must be set for sqlite and only for sqlite")
        return self

    @property
    def key(self) -> tuple[str, EngineKind]:
        return (self.name, self.engine)

    def to_yaml(self) -> dict[str, Any]:
        """Serialize with persisted keys, omitting empty values."""
        data = self.model_dump(mode="python", by_alias=True, exclude_none=True)
        data["type"] = self.engine.value
        if not self.public:
            data.pop("public", None)
        return data


class ConnectionParams(BaseModel):
    """Everything a readiness probe or shell needs to reach an instance."""

    model_config = {"frozen": True}

    host: str = "localhost"
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    file_path: str | None = None

    @classmethod
    def from_record(cls, record: InstanceRecord, host: str = "localhost") -> "ConnectionParams":
        return cls(
            host=host,
            port=record.port,
            user=record.user,
            password=record.password,
            database=record.name,
            file_path=record.file_path,
        )


class CreateInstanceRequest(BaseModel):
    """Input to Orchestrator.create.

    Unset fields fall back to the engine defaults from configuration.
    For sqlite, name defaults to the file's basename.
    """

    engine: EngineKind
    name: str | None = None
    version: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    file_path: str | None = None
    public: bool = False
    readiness_timeout: float | None = None


# =============================================================================
# Results
# =============================================================================


class InstanceState(str, Enum):
    """Observed state of an instance."""

    RUNNING = "running"
    STOPPED = "stopped"
    MISSING = "missing"  # container gone from the control-plane
    UNKNOWN = "unknown"  # control-plane unreachable or no handle
    AVAILABLE = "available"  # sqlite file present
    FILE_MISSING = "file_missing"


class InstanceInfo(BaseModel):
    """Instance record plus live status. Credentials hidden unless revealed."""

    name: str
    engine: EngineKind
    version: str | None = None
    status: InstanceState
    port: int | None = None
    file_path: str | None = None
    public: bool = False
    container_id: str | None = None
    user: str | None = None
    password: str | None = None
    created: datetime
    last_used: datetime | None = None

    @classmethod
    def from_record(
        cls,
        record: InstanceRecord,
        status: InstanceState,
        reveal_secrets: bool = False,
    ) -> "InstanceInfo":
        return cls(
            name=record.name,
            engine=record.engine,
            version=record.version,
            status=status,
            port=record.port,
            file_path=record.file_path,
            public=record.public,
            container_id=record.container_id,
            user=record.user if reveal_secrets else None,
            password=record.password if reveal_secrets else None,
            created=record.created,
            last_used=record.last_used,
        )


class OperationStatus(str, Enum):
    """Operation status values."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeleteResult(BaseModel):
    """Outcome of a delete. Cleanup failures are warnings, not errors."""

    name: str
    engine: EngineKind
    status: OperationStatus
    warnings: list[str] = []

    @property
    def deleted(self) -> bool:
        return self.status == OperationStatus.COMPLETED


class ProbeResult(BaseModel):
    """Outcome of a single connectivity check."""

    success: bool
    message: str = ""
    latency_ms: float = 0.0


# =============================================================================
# Environments
# =============================================================================


class Environment(BaseModel):
    """Named grouping of instances.

    databases maps instance name to a snapshot of its record taken when
    it was added; later registry changes are not reflected here.
    """

    name: str
    description: str = ""
    active: bool = False
    databases: dict[str, InstanceRecord] = {}
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _null_databases(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("databases") is None:
            data = {**data, "databases": {}}
        return data

    def to_yaml(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "active": self.active,
            "databases": {name: rec.to_yaml() for name, rec in self.databases.items()},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class BulkOperation(str, Enum):
    START = "start"
    STOP = "stop"
    RESTART = "restart"


class BulkOperationResult(BaseModel):
    """Per-member report of a bulk operation. Never raised."""

    environment: str
    operation: BulkOperation
    databases: list[str] = []
    succeeded: list[str] = []
    failed: dict[str, str] = {}

    @property
    def ok(self) -> bool:
        return not self.failed
