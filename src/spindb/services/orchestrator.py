"""Database instance lifecycle orchestrator.

Composes the port allocator, the Docker client, the readiness probe and
the registry into create/start/stop/restart/delete/list/info/connect.

Provisioning (network engines) is a linear state machine:

    VALIDATING_INPUT -> PULLING_IMAGE -> ALLOCATING_PORT
      -> CREATING_CONTAINER -> STARTING_CONTAINER -> AWAITING_READINESS
      -> PERSISTING_RECORD -> DONE

with FAILED reachable from any state. A failure before CREATING_CONTAINER
has no side effects. From CREATING_CONTAINER onward the new container is
stopped and removed (best effort) before the original error surfaces.
A readiness timeout is the exception: the container is left running so
its logs can be inspected, and no record is written.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from spindb.config import SpinDBConfig, get_config
from spindb.engines import EngineKind, EngineStrategy, get_engine
from spindb.errors import (
    ConnectionFailedError,
    ContainerNotFoundError,
    InstanceNotFoundError,
    ProvisioningError,
    ReadinessTimeoutError,
    SpinDBError,
    UnsupportedOperationError,
    ValidationError,
    wrap_error,
)
from spindb.infra import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HostConfig,
    ImageAPI,
    PortAllocator,
    ReadinessProbe,
)
from spindb.logging_schema import LogEvent
from spindb.models import (
    ConnectionParams,
    CreateInstanceRequest,
    DeleteResult,
    InstanceInfo,
    InstanceRecord,
    InstanceState,
    OperationStatus,
    ProbeResult,
    utcnow,
)
from spindb.services.shell import Confirmer, DenyConfirmer, ShellLauncher, SubprocessShellLauncher
from spindb.store import Registry

logger = logging.getLogger(__name__)

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
# sqlite names default to the file's basename, which usually has an extension.
FILE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.-]+$")
MIN_PORT = 1024
MAX_PORT = 65535


class ProvisionState(str, Enum):
    """Provisioning steps for network engines."""

    VALIDATING_INPUT = "validating_input"
    PULLING_IMAGE = "pulling_image"
    ALLOCATING_PORT = "allocating_port"
    CREATING_CONTAINER = "creating_container"
    STARTING_CONTAINER = "starting_container"
    AWAITING_READINESS = "awaiting_readiness"
    PERSISTING_RECORD = "persisting_record"
    DONE = "done"
    FAILED = "failed"


# States whose failure leaves a container behind that must be cleaned up.
COMPENSATED_STATES = frozenset(
    {
        ProvisionState.CREATING_CONTAINER,
        ProvisionState.STARTING_CONTAINER,
        ProvisionState.AWAITING_READINESS,
        ProvisionState.PERSISTING_RECORD,
    }
)


@dataclass
class ProvisionRun:
    """Progress of one provisioning request."""

    engine: EngineKind
    name: str
    state: ProvisionState = ProvisionState.VALIDATING_INPUT
    container_id: str | None = None
    history: list[ProvisionState] = field(default_factory=list)

    def advance(self, state: ProvisionState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(
            "Provisioning %s '%s': %s",
            self.engine,
            self.name,
            state.value,
            extra={
                "event": LogEvent.PROVISION_STATE,
                "engine": str(self.engine),
                "name": self.name,
                "state": state.value,
            },
        )


@dataclass(frozen=True)
class _NetworkPlan:
    """Validated, defaulted input for a network engine."""

    name: str
    version: str
    base_port: int
    user: str
    password: str
    public: bool
    readiness_timeout: float


class Orchestrator:
    """Lifecycle operations over managed database instances.

    Instances are addressed by name. When the same name exists for more
    than one engine kind, callers pass ``engine`` to disambiguate.
    """

    def __init__(
        self,
        config: SpinDBConfig | None = None,
        registry: Registry | None = None,
        docker: DockerClient | None = None,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
        ports: PortAllocator | None = None,
        probe: ReadinessProbe | None = None,
        confirmer: Confirmer | None = None,
        shell: ShellLauncher | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._config = config or get_config()
        self._registry = registry or Registry(self._config.storage.registry_file)
        self._docker = docker or DockerClient(
            self._config.docker.host, self._config.docker.api_timeout
        )
        self._containers = containers or ContainerAPI(self._docker)
        self._images = images or ImageAPI(self._docker)
        self._ports = ports or PortAllocator(self._config.orchestrator.port_search_range)
        self._probe = probe or ReadinessProbe(
            interval=self._config.readiness.interval,
            connect_timeout=self._config.readiness.connect_timeout,
        )
        self._confirmer = confirmer or DenyConfirmer()
        self._shell = shell or SubprocessShellLauncher()
        self._sleep = sleep

    async def close(self) -> None:
        """Release the Docker connection pool."""
        await self._docker.close()

    # =========================================================================
    # Naming
    # =========================================================================

    def container_name(self, engine: EngineKind, name: str) -> str:
        return f"{self._config.docker.container_prefix}-{engine}-{name}"

    def data_dir(self, engine: EngineKind, name: str) -> Path:
        return self._config.storage.data_dir / str(engine) / name

    def _labels(self, engine: EngineKind, name: str) -> dict[str, str]:
        label = self._config.docker.managed_label
        return {
            label: "true",
            f"{label}.engine": str(engine),
            f"{label}.name": name,
        }

    # =========================================================================
    # Create
    # =========================================================================

    async def create(self, request: CreateInstanceRequest) -> InstanceRecord:
        """Provision a new instance and persist its record.

        Raises:
            ValidationError: Bad input, nothing was touched
            InfrastructureUnavailableError: Docker daemon unreachable
            ImagePullError: Image could not be pulled
            PortRangeExhaustedError: No free host port near the requested one
            ProvisioningError: A step after container creation failed
            ReadinessTimeoutError: Container left running, no record written
        """
        strategy = get_engine(request.engine)
        if strategy.is_network:
            return await self._provision_container(request, strategy)
        return await self._provision_file(request)

    def _plan_network(self, request: CreateInstanceRequest, strategy: EngineStrategy) -> _NetworkPlan:
        defaults = strategy.resolve_defaults(self._config)

        name = request.name
        if not name:
            raise ValidationError("database name is required")
        if not NAME_PATTERN.match(name):
            raise ValidationError(
                f"invalid database name '{name}': "
                "only letters, digits, underscores and hyphens are allowed"
            )
        if request.file_path:
            raise ValidationError(f"file path is only valid for sqlite, not {request.engine}")

        port = request.port if request.port is not None else defaults.port
        if port is None or not MIN_PORT <= port <= MAX_PORT:
            raise ValidationError(f"port must be between {MIN_PORT} and {MAX_PORT}, got {port}")

        if not request.password:
            raise ValidationError(f"password is required for {request.engine} databases")

        timeout = request.readiness_timeout
        if timeout is None:
            timeout = self._config.readiness.timeout
        if timeout <= 0:
            raise ValidationError("readiness timeout must be positive")

        if any(r.engine == request.engine for r in self._registry.find(name)):
            raise ValidationError(f"{request.engine} database '{name}' already exists")

        return _NetworkPlan(
            name=name,
            version=request.version or defaults.version or "latest",
            base_port=port,
            user=request.user or defaults.user or "",
            password=request.password,
            public=request.public,
            readiness_timeout=timeout,
        )

    async def _provision_container(
        self, request: CreateInstanceRequest, strategy: EngineStrategy
    ) -> InstanceRecord:
        run = ProvisionRun(engine=request.engine, name=request.name or "")
        run.advance(ProvisionState.VALIDATING_INPUT)
        try:
            plan = self._plan_network(request, strategy)
            await self._docker.ping()

            run.advance(ProvisionState.PULLING_IMAGE)
            image = strategy.image(plan.version)
            await self._images.pull(image, timeout=self._config.docker.image_pull_timeout)

            run.advance(ProvisionState.ALLOCATING_PORT)
            port = self._ports.find_available_port(plan.base_port)
            if port != plan.base_port:
                logger.info("Port %d is in use, using %d instead", plan.base_port, port)

            run.advance(ProvisionState.CREATING_CONTAINER)
            data_dir = self.data_dir(request.engine, plan.name)
            try:
                data_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ProvisioningError(f"failed to create data directory {data_dir}: {e}") from e

            config = ContainerConfig(
                image=image,
                name=self.container_name(request.engine, plan.name),
                env=strategy.container_env(plan.name, plan.user, plan.password),
                labels=self._labels(request.engine, plan.name),
                host_config=HostConfig(
                    port_bindings={strategy.container_port: port},
                    binds=[f"{data_dir}:{strategy.data_mount}"],
                    restart_policy=self._config.orchestrator.restart_policy,
                    public=plan.public,
                ),
            )
            run.container_id = await self._containers.create(config)

            run.advance(ProvisionState.STARTING_CONTAINER)
            await self._containers.start(run.container_id)

            run.advance(ProvisionState.AWAITING_READINESS)
            params = ConnectionParams(
                host=self._config.readiness.host,
                port=port,
                user=plan.user,
                password=plan.password,
                database=plan.name,
            )
            await self._probe.wait_ready(request.engine, params, plan.readiness_timeout)

            run.advance(ProvisionState.PERSISTING_RECORD)
            record = InstanceRecord(
                name=plan.name,
                engine=request.engine,
                version=plan.version,
                port=port,
                user=plan.user,
                password=plan.password,
                public=plan.public,
                container_id=run.container_id,
            )
            self._registry.save(record)
        except ReadinessTimeoutError as e:
            failed_at = run.state
            run.advance(ProvisionState.FAILED)
            logger.warning(
                "Database did not become ready, container left running for inspection",
                extra={
                    "event": LogEvent.READINESS_TIMEOUT,
                    "engine": str(request.engine),
                    "name": run.name,
                    "state": failed_at.value,
                    "container_id": run.container_id,
                },
            )
            raise ReadinessTimeoutError(
                f"{e.message}; container {run.container_id} was left running, "
                f"inspect it with 'logs {run.name}'",
                container_id=run.container_id,
            ) from e
        except Exception as e:
            failed_at = run.state
            run.advance(ProvisionState.FAILED)
            logger.error(
                "Provisioning failed at %s: %s",
                failed_at.value,
                e,
                extra={
                    "event": LogEvent.PROVISION_FAILED,
                    "engine": str(request.engine),
                    "name": run.name,
                    "state": failed_at.value,
                },
            )
            if failed_at not in COMPENSATED_STATES:
                raise
            if run.container_id:
                await self._compensate(run)
            message = e.message if isinstance(e, SpinDBError) else str(e)
            raise ProvisioningError(
                f"{failed_at.value}: {message}",
                state=failed_at.value,
                container_id=run.container_id,
            ) from e

        run.advance(ProvisionState.DONE)
        logger.info(
            "Created %s database '%s' on port %d",
            record.engine,
            record.name,
            port,
            extra={
                "event": LogEvent.PROVISION_COMPLETED,
                "engine": str(record.engine),
                "name": record.name,
                "port": port,
                "container_id": record.container_id,
            },
        )
        return record

    async def _compensate(self, run: ProvisionRun) -> None:
        """Best-effort stop+remove of a container created by a failed run."""
        handle = run.container_id
        logger.info(
            "Cleaning up container after failed provisioning",
            extra={"event": LogEvent.CLEANUP_STARTED, "container_id": handle},
        )

        failures = 0
        try:
            await self._containers.stop(handle, grace_period=self._config.docker.stop_timeout)
        except SpinDBError as e:
            failures += 1
            logger.warning(
                "Cleanup stop failed: %s",
                e.message,
                extra={"event": LogEvent.CLEANUP_FAILED, "container_id": handle, "step": "stop"},
            )
        try:
            await self._containers.remove(handle, force=True)
        except SpinDBError as e:
            failures += 1
            logger.warning(
                "Cleanup remove failed: %s",
                e.message,
                extra={"event": LogEvent.CLEANUP_FAILED, "container_id": handle, "step": "remove"},
            )

        if not failures:
            logger.info(
                "Cleaned up container",
                extra={"event": LogEvent.CLEANUP_COMPLETED, "container_id": handle},
            )

    async def _provision_file(self, request: CreateInstanceRequest) -> InstanceRecord:
        if not request.file_path:
            raise ValidationError("file path is required for sqlite databases")

        path = Path(request.file_path).expanduser().absolute()
        name = request.name or path.name
        if not FILE_NAME_PATTERN.match(name):
            raise ValidationError(f"invalid database name '{name}'")
        if any(r.engine == EngineKind.SQLITE for r in self._registry.find(name)):
            raise ValidationError(f"sqlite database '{name}' already exists")
        if path.exists():
            raise ValidationError(f"file {path} already exists")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch(exist_ok=False)
        except OSError as e:
            raise ProvisioningError(f"failed to create database file {path}: {e}") from e

        params = ConnectionParams(file_path=str(path))
        result = await self._probe.test_once(EngineKind.SQLITE, params)
        if not result.success:
            path.unlink(missing_ok=True)
            raise ProvisioningError(f"sqlite database {path} is not usable: {result.message}")

        record = InstanceRecord(
            name=name,
            engine=EngineKind.SQLITE,
            version="3",
            file_path=str(path),
        )
        self._registry.save(record)
        logger.info(
            "Created sqlite database '%s' at %s",
            name,
            path,
            extra={"event": LogEvent.PROVISION_COMPLETED, "engine": "sqlite", "name": name},
        )
        return record

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, name: str, engine: EngineKind | None = None) -> InstanceRecord:
        """Find the record for ``name``.

        Raises:
            InstanceNotFoundError: No such database
            ValidationError: Name exists for several engines and engine is None
        """
        if engine is not None:
            return self._registry.get(name, EngineKind(engine))

        matches = self._registry.find(name)
        if not matches:
            raise InstanceNotFoundError(f"database '{name}' not found")
        if len(matches) > 1:
            kinds = ", ".join(sorted(str(r.engine) for r in matches))
            raise ValidationError(
                f"database name '{name}' exists for several engines ({kinds}), specify one"
            )
        return matches[0]

    def _require_handle(self, record: InstanceRecord, operation: str) -> str:
        if not get_engine(record.engine).is_controllable:
            raise UnsupportedOperationError(
                f"cannot {operation} {record.engine} database '{record.name}': "
                "file-based databases have no process to control"
            )
        if not record.container_id:
            raise ValidationError(f"no container found for database '{record.name}'")
        return record.container_id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, name: str, engine: EngineKind | None = None) -> None:
        record = self.resolve(name, engine)
        handle = self._require_handle(record, "start")
        try:
            await self._containers.start(handle)
        except SpinDBError as e:
            raise wrap_error(e, f"failed to start database '{record.name}'") from e
        logger.info("Started %s database '%s'", record.engine, record.name)

    async def stop(self, name: str, engine: EngineKind | None = None) -> None:
        record = self.resolve(name, engine)
        handle = self._require_handle(record, "stop")
        try:
            await self._containers.stop(handle, grace_period=self._config.docker.stop_timeout)
        except SpinDBError as e:
            raise wrap_error(e, f"failed to stop database '{record.name}'") from e
        logger.info("Stopped %s database '%s'", record.engine, record.name)

    async def restart(self, name: str, engine: EngineKind | None = None) -> None:
        """Stop, wait restart_delay, start. A stop failure skips the start."""
        await self.stop(name, engine)
        await self._sleep(self._config.orchestrator.restart_delay)
        await self.start(name, engine)

    async def delete(
        self,
        name: str,
        force: bool = False,
        engine: EngineKind | None = None,
    ) -> DeleteResult:
        """Remove an instance. Container cleanup failures become warnings.

        Without force the Confirmer must approve first; a declined
        confirmation changes nothing.
        """
        record = self.resolve(name, engine)

        if not force:
            approved = await self._confirmer.confirm(
                f"Delete {record.engine} database '{record.name}'? This cannot be undone."
            )
            if not approved:
                logger.info("Delete of database '%s' cancelled", record.name)
                return DeleteResult(
                    name=record.name, engine=record.engine, status=OperationStatus.CANCELLED
                )

        warnings: list[str] = []
        if record.container_id:
            handle = record.container_id
            try:
                await self._containers.stop(handle, grace_period=self._config.docker.stop_timeout)
            except SpinDBError as e:
                warnings.append(f"failed to stop container: {e.message}")
            try:
                await self._containers.remove(handle, force=True)
            except SpinDBError as e:
                warnings.append(f"failed to remove container: {e.message}")
            for warning in warnings:
                logger.warning(
                    "Database '%s': %s",
                    record.name,
                    warning,
                    extra={"event": LogEvent.CLEANUP_FAILED, "container_id": handle},
                )

        self._registry.delete(record.name, record.engine)
        logger.info(
            "Deleted %s database '%s'",
            record.engine,
            record.name,
            extra={
                "event": LogEvent.INSTANCE_DELETED,
                "engine": str(record.engine),
                "name": record.name,
                "warnings": len(warnings),
            },
        )
        return DeleteResult(
            name=record.name,
            engine=record.engine,
            status=OperationStatus.COMPLETED,
            warnings=warnings,
        )

    # =========================================================================
    # Connect
    # =========================================================================

    def _connection_params(self, record: InstanceRecord) -> ConnectionParams:
        return ConnectionParams.from_record(record, host=self._config.readiness.host)

    async def test_connection(self, name: str, engine: EngineKind | None = None) -> ProbeResult:
        """One handshake, no retry.

        Raises:
            ConnectionFailedError: The handshake failed
        """
        record = self.resolve(name, engine)
        result = await self._probe.test_once(record.engine, self._connection_params(record))
        if not result.success:
            raise ConnectionFailedError(
                f"connection to {record.engine} database '{record.name}' failed: {result.message}"
            )
        return result

    async def open_shell(self, name: str, engine: EngineKind | None = None) -> int:
        """Record last use and hand over to the interactive shell."""
        record = self.resolve(name, engine)
        record = record.model_copy(update={"last_used": utcnow()})
        self._registry.save(record)
        logger.info(
            "Connecting to %s database '%s'",
            record.engine,
            record.name,
            extra={
                "event": LogEvent.INSTANCE_CONNECTED,
                "engine": str(record.engine),
                "name": record.name,
            },
        )
        return await self._shell.launch(record, self._connection_params(record))

    async def connect(
        self,
        name: str,
        test_only: bool = False,
        engine: EngineKind | None = None,
    ) -> ProbeResult | int:
        """test_only returns the ProbeResult, otherwise the shell's exit code."""
        if test_only:
            return await self.test_connection(name, engine)
        return await self.open_shell(name, engine)

    # =========================================================================
    # Queries
    # =========================================================================

    async def status(self, record: InstanceRecord) -> InstanceState:
        """Observed state of one instance. Never raises for control-plane errors."""
        if not get_engine(record.engine).is_network:
            if record.file_path and Path(record.file_path).exists():
                return InstanceState.AVAILABLE
            return InstanceState.FILE_MISSING

        if not record.container_id:
            return InstanceState.UNKNOWN
        try:
            running = await self._containers.is_running(record.container_id)
        except ContainerNotFoundError:
            return InstanceState.MISSING
        except SpinDBError as e:
            logger.debug("Could not determine status of '%s': %s", record.name, e.message)
            return InstanceState.UNKNOWN
        return InstanceState.RUNNING if running else InstanceState.STOPPED

    async def list(self, engine: EngineKind | None = None) -> list[InstanceInfo]:
        """All managed instances with live status, credentials hidden."""
        records = self._registry.list(EngineKind(engine) if engine is not None else None)
        return [
            InstanceInfo.from_record(record, await self.status(record)) for record in records
        ]

    async def info(
        self,
        name: str,
        reveal_secrets: bool = False,
        engine: EngineKind | None = None,
    ) -> InstanceInfo:
        record = self.resolve(name, engine)
        return InstanceInfo.from_record(record, await self.status(record), reveal_secrets)

    async def logs(self, name: str, tail: int = 100, engine: EngineKind | None = None) -> str:
        """Container output, e.g. to diagnose a readiness timeout."""
        record = self.resolve(name, engine)
        handle = self._require_handle(record, "read logs of")
        try:
            return await self._containers.logs(handle, tail=tail)
        except SpinDBError as e:
            raise wrap_error(e, f"failed to read logs of database '{record.name}'") from e

    async def list_orphans(self) -> list[dict]:
        """Labelled containers that no registry record points at.

        Typically leftovers of a readiness timeout or an interrupted create.
        """
        label = f"{self._config.docker.managed_label}=true"
        try:
            containers = await self._containers.list_by_label(label)
        except SpinDBError as e:
            raise wrap_error(e, "failed to list managed containers") from e

        known = {r.container_id for r in self._registry.list() if r.container_id}
        orphans = []
        for container in containers:
            container_id = container.get("Id", "")
            if container_id in known:
                continue
            orphans.append(
                {
                    "id": container_id,
                    "name": next(iter(container.get("Names") or []), "").lstrip("/"),
                    "state": container.get("State", ""),
                }
            )
        return orphans
