"""Tests for ReadinessProbe."""

import asyncio
import sqlite3
from pathlib import Path

import pytest

from spindb.engines import EngineKind
from spindb.errors import ReadinessTimeoutError, UnsupportedOperationError
from spindb.infra.probes import ReadinessProbe, connect_sqlite
from spindb.models import ConnectionParams

PARAMS = ConnectionParams(host="localhost", port=5432, user="postgres", password="pw", database="orders")


class FlakyConnector:
    """Fails ``failures`` times, then succeeds."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self, params: ConnectionParams, timeout: float) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionRefusedError("connection refused")


class TestTestOnce:
    """Tests for ReadinessProbe.test_once."""

    async def test_success(self) -> None:
        connector = FlakyConnector(failures=0)
        probe = ReadinessProbe(connectors={EngineKind.POSTGRES: connector})

        result = await probe.test_once(EngineKind.POSTGRES, PARAMS)

        assert result.success is True
        assert result.latency_ms >= 0
        assert connector.calls == 1

    async def test_failure_is_reported_not_retried(self) -> None:
        connector = FlakyConnector(failures=5)
        probe = ReadinessProbe(connectors={EngineKind.POSTGRES: connector}, interval=0.01)

        result = await probe.test_once(EngineKind.POSTGRES, PARAMS)

        assert result.success is False
        assert "connection refused" in result.message
        assert connector.calls == 1

    async def test_attempt_timeout(self) -> None:
        async def hangs(params: ConnectionParams, timeout: float) -> None:
            await asyncio.sleep(10)

        probe = ReadinessProbe(connectors={EngineKind.MYSQL: hangs}, connect_timeout=0.05)

        result = await probe.test_once(EngineKind.MYSQL, PARAMS)

        assert result.success is False
        assert "timed out" in result.message

    async def test_unknown_engine(self) -> None:
        probe = ReadinessProbe(connectors={})

        with pytest.raises(UnsupportedOperationError):
            await probe.test_once(EngineKind.POSTGRES, PARAMS)


class TestWaitReady:
    """Tests for ReadinessProbe.wait_ready."""

    async def test_polls_until_ready(self) -> None:
        connector = FlakyConnector(failures=2)
        probe = ReadinessProbe(connectors={EngineKind.POSTGRES: connector}, interval=0.01)

        result = await probe.wait_ready(EngineKind.POSTGRES, PARAMS, timeout=5.0)

        assert result.success is True
        assert connector.calls == 3

    async def test_deadline_raises_timeout(self) -> None:
        connector = FlakyConnector(failures=10_000)
        probe = ReadinessProbe(
            connectors={EngineKind.POSTGRES: connector},
            interval=0.01,
            connect_timeout=0.05,
        )

        with pytest.raises(ReadinessTimeoutError, match="connection refused"):
            await probe.wait_ready(EngineKind.POSTGRES, PARAMS, timeout=0.2)

        assert connector.calls > 1


class TestSqliteConnector:
    """Tests for the aiosqlite connector."""

    async def test_existing_file(self, tmp_path: Path) -> None:
        path = tmp_path / "app.db"
        sqlite3.connect(path).close()

        await connect_sqlite(ConnectionParams(file_path=str(path)), timeout=1.0)

    async def test_empty_file_stays_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.db"
        path.touch()

        await connect_sqlite(ConnectionParams(file_path=str(path)), timeout=1.0)

        assert path.stat().st_size == 0

    async def test_missing_file_is_not_created(self, tmp_path: Path) -> None:
        path = tmp_path / "missing.db"
        probe = ReadinessProbe()

        result = await probe.test_once(EngineKind.SQLITE, ConnectionParams(file_path=str(path)))

        assert result.success is False
        assert not path.exists()
