"""Persisted instance registry.

The registry file is the single source of truth for managed instances:

    databases:
      - name: orders
        type: postgres
        version: "15"
        port: 5433
        ...

Every write is a full load-modify-rewrite of the file. There is no
locking; concurrent writers from separate processes can lose updates.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pydantic
import yaml

from spindb.config import get_config
from spindb.engines import EngineKind
from spindb.errors import InstanceNotFoundError, RegistryError
from spindb.logging_schema import LogEvent
from spindb.models import InstanceRecord

logger = logging.getLogger(__name__)


class Registry:
    """YAML-backed store of InstanceRecords keyed by (name, engine)."""

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else get_config().storage.registry_file

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[InstanceRecord]:
        """Return all records. A missing file is an empty registry.

        Raises:
            RegistryError: File exists but cannot be read or parsed
        """
        if not self._path.exists():
            return []

        try:
            raw = yaml.safe_load(self._path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise RegistryError(f"failed to read registry file {self._path}: {e}") from e

        try:
            return [InstanceRecord.model_validate(item) for item in raw.get("databases") or []]
        except (AttributeError, pydantic.ValidationError) as e:
            raise RegistryError(f"failed to parse registry file {self._path}: {e}") from e

    def _write(self, records: list[InstanceRecord]) -> None:
        data = {"databases": [record.to_yaml() for record in records]}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(yaml.safe_dump(data, sort_keys=False))
        except OSError as e:
            raise RegistryError(f"failed to write registry file {self._path}: {e}") from e

    def save(self, record: InstanceRecord) -> None:
        """Insert or replace the record with the same (name, engine)."""
        records = self.load()
        for i, existing in enumerate(records):
            if existing.key == record.key:
                records[i] = record
                break
        else:
            records.append(record)

        self._write(records)
        logger.debug(
            "Saved registry record",
            extra={"event": LogEvent.REGISTRY_SAVED, "name": record.name, "engine": str(record.engine)},
        )

    def get(self, name: str, engine: EngineKind) -> InstanceRecord:
        """Raises InstanceNotFoundError if absent."""
        for record in self.load():
            if record.key == (name, engine):
                return record
        raise InstanceNotFoundError(f"database {name} of type {engine} not found")

    def delete(self, name: str, engine: EngineKind) -> None:
        """Raises InstanceNotFoundError if absent."""
        records = self.load()
        remaining = [r for r in records if r.key != (name, engine)]
        if len(remaining) == len(records):
            raise InstanceNotFoundError(f"database {name} of type {engine} not found")

        self._write(remaining)
        logger.debug(
            "Deleted registry record",
            extra={"event": LogEvent.REGISTRY_DELETED, "name": name, "engine": str(engine)},
        )

    def list(self, engine: EngineKind | None = None) -> list[InstanceRecord]:
        """All records, or only those of one engine kind."""
        records = self.load()
        if engine is None:
            return records
        return [r for r in records if r.engine == engine]

    def find(self, name: str) -> list[InstanceRecord]:
        """All records named ``name``, across engine kinds."""
        return [r for r in self.load() if r.name == name]
