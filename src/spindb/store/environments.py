"""Persisted environments.

One YAML file per environment (<dir>/<name>.yaml) plus a small
``.current`` state record naming the environment the user last switched
to. The current environment is only read and written here; everything
else takes the environment name as an explicit argument.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pydantic
import yaml

from spindb.config import get_config
from spindb.errors import EnvironmentNotFoundError, RegistryError
from spindb.models import Environment

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = "default"
CURRENT_FILE = ".current"


class EnvironmentStore:
    """File-per-environment YAML store."""

    def __init__(self, directory: Path | str | None = None) -> None:
        self._dir = Path(directory) if directory is not None else get_config().storage.environments_dir

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, name: str) -> Path:
        return self._dir / f"{name}.yaml"

    def exists(self, name: str) -> bool:
        return self._path(name).is_file()

    def load(self, name: str) -> Environment:
        """Raises EnvironmentNotFoundError if the file does not exist."""
        path = self._path(name)
        if not path.is_file():
            raise EnvironmentNotFoundError(f"environment '{name}' not found")
        try:
            raw = yaml.safe_load(path.read_text()) or {}
            return Environment.model_validate(raw)
        except (OSError, yaml.YAMLError, pydantic.ValidationError) as e:
            raise RegistryError(f"failed to parse environment file {path}: {e}") from e

    def save(self, env: Environment) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._path(env.name).write_text(yaml.safe_dump(env.to_yaml(), sort_keys=False))
        except OSError as e:
            raise RegistryError(f"failed to write environment {env.name}: {e}") from e

    def delete(self, name: str) -> None:
        path = self._path(name)
        if not path.is_file():
            raise EnvironmentNotFoundError(f"environment '{name}' not found")
        path.unlink()

    def list(self) -> list[Environment]:
        """All readable environments, sorted by name. Unreadable files are skipped."""
        if not self._dir.is_dir():
            return []

        environments = []
        for path in sorted(self._dir.glob("*.yaml")):
            try:
                environments.append(self.load(path.stem))
            except RegistryError as e:
                logger.warning("Skipping unreadable environment file %s: %s", path, e.message)
        return environments

    def current(self) -> str:
        """Name recorded by the last switch, or ``default``."""
        try:
            name = (self._dir / CURRENT_FILE).read_text().strip()
        except FileNotFoundError:
            return DEFAULT_ENVIRONMENT
        return name or DEFAULT_ENVIRONMENT

    def set_current(self, name: str) -> None:
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            (self._dir / CURRENT_FILE).write_text(name)
        except OSError as e:
            raise RegistryError(f"failed to record current environment: {e}") from e
