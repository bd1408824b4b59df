"""External collaborators for interactive use.

The orchestrator never talks to a terminal itself. Confirmation prompts
and interactive database shells are delegated to these interfaces so
callers can plug in their own (a CLI prompt, a test double, ...).
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import Callable

from spindb.engines import EngineKind
from spindb.errors import ConnectionFailedError, UnsupportedOperationError
from spindb.models import ConnectionParams, InstanceRecord

logger = logging.getLogger(__name__)


class Confirmer(ABC):
    """Interface for destructive-action confirmation."""

    @abstractmethod
    async def confirm(self, prompt: str) -> bool:
        """Return True if the user approved the action described by prompt."""
        ...


class DenyConfirmer(Confirmer):
    """Declines everything. Non-interactive callers must pass force."""

    async def confirm(self, prompt: str) -> bool:
        logger.info("Confirmation required but no interactive confirmer configured: %s", prompt)
        return False


class ShellLauncher(ABC):
    """Interface for handing a user over to an interactive database shell."""

    @abstractmethod
    async def launch(self, record: InstanceRecord, params: ConnectionParams) -> int:
        """Run the shell until the user exits. Returns the exit code."""
        ...


ShellCommand = tuple[list[str], dict[str, str]]


def _psql(params: ConnectionParams) -> ShellCommand:
    argv = ["psql", "-h", params.host, "-p", str(params.port), "-U", params.user or "", "-d", params.database or ""]
    return argv, {"PGPASSWORD": params.password or ""}


def _mysql(params: ConnectionParams) -> ShellCommand:
    argv = ["mysql", "-h", params.host, "-P", str(params.port), "-u", params.user or "", params.database or ""]
    return argv, {"MYSQL_PWD": params.password or ""}


def _sqlite3(params: ConnectionParams) -> ShellCommand:
    return ["sqlite3", params.file_path or ""], {}


SHELL_COMMANDS: dict[EngineKind, Callable[[ConnectionParams], ShellCommand]] = {
    EngineKind.POSTGRES: _psql,
    EngineKind.MYSQL: _mysql,
    EngineKind.SQLITE: _sqlite3,
}


class SubprocessShellLauncher(ShellLauncher):
    """Runs the engine's native client (psql, mysql, sqlite3) in the foreground.

    Passwords go through the client's environment variable rather than argv
    so they do not show up in the process list.
    """

    async def launch(self, record: InstanceRecord, params: ConnectionParams) -> int:
        builder = SHELL_COMMANDS.get(record.engine)
        if builder is None:
            raise UnsupportedOperationError(f"no interactive shell for engine {record.engine}")

        argv, extra_env = builder(params)
        logger.info("Opening %s shell for database '%s'", record.engine, record.name)
        try:
            proc = await asyncio.create_subprocess_exec(*argv, env={**os.environ, **extra_env})
        except FileNotFoundError as e:
            raise ConnectionFailedError(f"{argv[0]} is not installed or not on PATH") from e
        return await proc.wait()
