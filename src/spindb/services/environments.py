"""Environment management and bulk control.

An environment is a named group of databases. Bulk operations run the
orchestrator once per requested member, serially and in sorted name
order, and report per-member outcomes. One member's failure never stops
the others and nothing is rolled back.
"""

from __future__ import annotations

import logging
import re

from spindb.engines import EngineKind
from spindb.errors import (
    EnvironmentExistsError,
    EnvironmentNotEmptyError,
    MemberNotFoundError,
    ProtectedEnvironmentError,
    SpinDBError,
    ValidationError,
)
from spindb.logging_schema import LogEvent
from spindb.models import BulkOperation, BulkOperationResult, Environment, utcnow
from spindb.services.orchestrator import Orchestrator
from spindb.store import DEFAULT_ENVIRONMENT, EnvironmentStore

logger = logging.getLogger(__name__)

ENV_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
NOT_IN_ENVIRONMENT = "not found in environment"


def _validate_name(name: str) -> None:
    if not name:
        raise ValidationError("environment name is required")
    if not ENV_NAME_PATTERN.match(name):
        raise ValidationError(
            f"invalid environment name '{name}': "
            "only letters, digits, underscores and hyphens are allowed"
        )


class EnvironmentManager:
    """Create, switch and bulk-control environments."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: EnvironmentStore | None = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store or EnvironmentStore()

    # =========================================================================
    # Environment CRUD
    # =========================================================================

    def create(self, name: str, description: str = "") -> Environment:
        _validate_name(name)
        if self._store.exists(name):
            raise EnvironmentExistsError(f"environment '{name}' already exists")

        env = Environment(name=name, description=description)
        self._store.save(env)
        logger.info(
            "Created environment '%s'",
            name,
            extra={"event": LogEvent.ENVIRONMENT_CREATED, "environment": name},
        )
        return env

    def delete(self, name: str, force: bool = False) -> None:
        """Delete an environment. Member databases are left untouched.

        Raises:
            ProtectedEnvironmentError: name is the default environment
            EnvironmentNotFoundError: No such environment
            EnvironmentNotEmptyError: Has members and force is False
        """
        if name == DEFAULT_ENVIRONMENT:
            raise ProtectedEnvironmentError()

        env = self._store.load(name)
        if env.databases and not force:
            raise EnvironmentNotEmptyError(
                f"environment '{name}' contains {len(env.databases)} database(s), "
                "use force to delete anyway"
            )

        if self._store.current() == name:
            self.switch(DEFAULT_ENVIRONMENT)

        self._store.delete(name)
        logger.info(
            "Deleted environment '%s'",
            name,
            extra={"event": LogEvent.ENVIRONMENT_DELETED, "environment": name},
        )

    def _ensure_default(self) -> None:
        if not self._store.exists(DEFAULT_ENVIRONMENT):
            self._store.save(
                Environment(name=DEFAULT_ENVIRONMENT, description="Default environment")
            )

    def switch(self, name: str) -> Environment:
        """Make ``name`` the active environment.

        The previous one is marked inactive with a separate write; there is
        no lock spanning both writes.
        """
        _validate_name(name)
        self._ensure_default()
        target = self._store.load(name)

        previous = self._store.current()
        if previous != name and self._store.exists(previous):
            old = self._store.load(previous)
            if old.active:
                self._store.save(old.model_copy(update={"active": False, "updated_at": utcnow()}))

        target = target.model_copy(update={"active": True, "updated_at": utcnow()})
        self._store.save(target)
        self._store.set_current(name)
        logger.info(
            "Switched to environment '%s'",
            name,
            extra={
                "event": LogEvent.ENVIRONMENT_SWITCHED,
                "environment": name,
                "previous": previous,
            },
        )
        return target

    def list(self) -> list[Environment]:
        self._ensure_default()
        return self._store.list()

    def show(self, name: str) -> Environment:
        return self._store.load(name)

    def current(self) -> str:
        return self._store.current()

    # =========================================================================
    # Membership
    # =========================================================================

    def add(self, env_name: str, db_name: str, engine: EngineKind | None = None) -> Environment:
        """Add a snapshot of a registered database to an environment.

        Raises:
            EnvironmentNotFoundError: No such environment
            InstanceNotFoundError: No such database
        """
        env = self._store.load(env_name)
        record = self._orchestrator.resolve(db_name, engine)

        databases = {**env.databases, record.name: record}
        env = env.model_copy(update={"databases": databases, "updated_at": utcnow()})
        self._store.save(env)
        logger.info(
            "Added database '%s' to environment '%s'",
            record.name,
            env_name,
            extra={
                "event": LogEvent.ENVIRONMENT_MEMBER_ADDED,
                "environment": env_name,
                "name": record.name,
            },
        )
        return env

    def remove(self, env_name: str, db_name: str) -> Environment:
        """Drop a member. The database itself is not touched."""
        env = self._store.load(env_name)
        if db_name not in env.databases:
            raise MemberNotFoundError(f"database '{db_name}' {NOT_IN_ENVIRONMENT} '{env_name}'")

        databases = {k: v for k, v in env.databases.items() if k != db_name}
        env = env.model_copy(update={"databases": databases, "updated_at": utcnow()})
        self._store.save(env)
        logger.info(
            "Removed database '%s' from environment '%s'",
            db_name,
            env_name,
            extra={
                "event": LogEvent.ENVIRONMENT_MEMBER_REMOVED,
                "environment": env_name,
                "name": db_name,
            },
        )
        return env

    # =========================================================================
    # Bulk control
    # =========================================================================

    async def bulk(
        self,
        env_name: str,
        operation: BulkOperation,
        names: list[str],
    ) -> BulkOperationResult:
        """Run ``operation`` once per distinct requested member. Never raises."""
        operation = BulkOperation(operation)
        requested = sorted(names)
        result = BulkOperationResult(
            environment=env_name, operation=operation, databases=requested
        )

        try:
            env = self._store.load(env_name)
        except SpinDBError as e:
            result.failed = {name: str(e) for name in requested}
            return result

        actions = {
            BulkOperation.START: self._orchestrator.start,
            BulkOperation.STOP: self._orchestrator.stop,
            BulkOperation.RESTART: self._orchestrator.restart,
        }
        action = actions[operation]

        for name in sorted(set(requested)):
            member = env.databases.get(name)
            if member is None:
                result.failed[name] = NOT_IN_ENVIRONMENT
                continue
            try:
                await action(name, member.engine)
            except Exception as e:  # one member must never abort the rest
                result.failed[name] = str(e)
                logger.warning(
                    "%s of database '%s' failed: %s",
                    operation.value,
                    name,
                    e,
                    extra={
                        "event": LogEvent.BULK_MEMBER_FAILED,
                        "environment": env_name,
                        "name": name,
                        "operation": operation.value,
                    },
                )
            else:
                result.succeeded.append(name)

        logger.info(
            "Bulk %s in '%s': %d succeeded, %d failed",
            operation.value,
            env_name,
            len(result.succeeded),
            len(result.failed),
            extra={
                "event": LogEvent.BULK_COMPLETED,
                "environment": env_name,
                "operation": operation.value,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
            },
        )
        return result

    async def bulk_start(self, env_name: str, names: list[str]) -> BulkOperationResult:
        return await self.bulk(env_name, BulkOperation.START, names)

    async def bulk_stop(self, env_name: str, names: list[str]) -> BulkOperationResult:
        return await self.bulk(env_name, BulkOperation.STOP, names)

    async def bulk_restart(self, env_name: str, names: list[str]) -> BulkOperationResult:
        return await self.bulk(env_name, BulkOperation.RESTART, names)

    async def _all_members(self, env_name: str, operation: BulkOperation) -> BulkOperationResult:
        env = self._store.load(env_name)
        return await self.bulk(env_name, operation, list(env.databases))

    async def isolate(self, env_name: str) -> BulkOperationResult:
        """Stop every member of the environment."""
        return await self._all_members(env_name, BulkOperation.STOP)

    async def activate(self, env_name: str) -> BulkOperationResult:
        """Start every member of the environment."""
        return await self._all_members(env_name, BulkOperation.START)
