"""Application-level connectivity probes.

Readiness is a protocol handshake plus a trivial query, not "the
container process is up": a freshly started postgres or mysql container
accepts TCP connections well before it accepts logins.

Two entry points:
- test_once: one attempt, result reported immediately (user-invoked checks)
- wait_ready: poll every interval until success or deadline (provisioning)
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path

import aiomysql
import aiosqlite
import asyncpg

from spindb.config import get_config
from spindb.engines import EngineKind
from spindb.errors import ReadinessTimeoutError, UnsupportedOperationError
from spindb.logging_schema import LogEvent
from spindb.models import ConnectionParams, ProbeResult

logger = logging.getLogger(__name__)

Connector = Callable[[ConnectionParams, float], Awaitable[None]]


# =============================================================================
# Per-engine connectors
# =============================================================================


async def connect_postgres(params: ConnectionParams, timeout: float) -> None:
    conn = await asyncpg.connect(
        host=params.host,
        port=params.port,
        user=params.user,
        password=params.password,
        database=params.database,
        timeout=timeout,
    )
    try:
        await conn.fetchval("SELECT 1")
    finally:
        await conn.close()


async def connect_mysql(params: ConnectionParams, timeout: float) -> None:
    conn = await aiomysql.connect(
        host=params.host,
        port=params.port or 3306,
        user=params.user,
        password=params.password or "",
        db=params.database,
        connect_timeout=timeout,
    )
    try:
        async with conn.cursor() as cur:
            await cur.execute("SELECT 1")
    finally:
        conn.close()


async def connect_sqlite(params: ConnectionParams, timeout: float) -> None:
    if not params.file_path:
        raise ValueError("sqlite probe requires a file path")
    # mode=rw refuses to create the file when it is missing
    uri = f"{Path(params.file_path).resolve().as_uri()}?mode=rw"
    async with aiosqlite.connect(uri, uri=True, timeout=timeout) as db:
        await db.execute("SELECT 1")


DEFAULT_CONNECTORS: dict[EngineKind, Connector] = {
    EngineKind.POSTGRES: connect_postgres,
    EngineKind.MYSQL: connect_mysql,
    EngineKind.SQLITE: connect_sqlite,
}


# =============================================================================
# Probe
# =============================================================================


class ReadinessProbe:
    """Polls application-level connectivity for an instance."""

    def __init__(
        self,
        connectors: Mapping[EngineKind, Connector] | None = None,
        interval: float | None = None,
        connect_timeout: float | None = None,
    ) -> None:
        readiness = get_config().readiness
        self._connectors = dict(connectors or DEFAULT_CONNECTORS)
        self._interval = interval if interval is not None else readiness.interval
        self._connect_timeout = (
            connect_timeout if connect_timeout is not None else readiness.connect_timeout
        )

    async def _attempt(
        self,
        engine: EngineKind,
        params: ConnectionParams,
        timeout: float,
    ) -> ProbeResult:
        connector = self._connectors.get(EngineKind(engine))
        if connector is None:
            raise UnsupportedOperationError(f"no connectivity probe for engine {engine}")

        started = time.perf_counter()
        try:
            await asyncio.wait_for(connector(params, timeout), timeout=timeout)
        except TimeoutError:
            return ProbeResult(success=False, message=f"timed out after {timeout:g}s")
        except Exception as e:  # drivers raise their own unrelated hierarchies
            return ProbeResult(success=False, message=str(e) or type(e).__name__)

        latency_ms = (time.perf_counter() - started) * 1000
        return ProbeResult(success=True, message="connection successful", latency_ms=latency_ms)

    async def test_once(self, engine: EngineKind, params: ConnectionParams) -> ProbeResult:
        """Attempt exactly one handshake and report the outcome."""
        result = await self._attempt(engine, params, self._connect_timeout)
        logger.info(
            "Connection test %s",
            "succeeded" if result.success else "failed",
            extra={
                "event": LogEvent.CONNECTION_TESTED,
                "engine": str(engine),
                "success": result.success,
                "detail": result.message,
            },
        )
        return result

    async def wait_ready(
        self,
        engine: EngineKind,
        params: ConnectionParams,
        timeout: float,
    ) -> ProbeResult:
        """Poll until a handshake succeeds or ``timeout`` seconds elapse.

        Raises:
            ReadinessTimeoutError: Deadline passed without a successful handshake
        """
        deadline = time.monotonic() + timeout
        attempts = 0
        last_error = ""

        while True:
            attempts += 1
            remaining = deadline - time.monotonic()
            attempt_timeout = max(min(self._connect_timeout, remaining), 0.1)
            result = await self._attempt(engine, params, attempt_timeout)
            if result.success:
                return result

            last_error = result.message
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break

            logger.debug(
                "Waiting for database to accept connections",
                extra={
                    "event": LogEvent.READINESS_WAITING,
                    "engine": str(engine),
                    "attempt": attempts,
                    "detail": last_error,
                },
            )
            await asyncio.sleep(min(self._interval, remaining))

        raise ReadinessTimeoutError(
            f"{engine} did not become available within {timeout:g}s "
            f"({attempts} attempts, last error: {last_error})"
        )
