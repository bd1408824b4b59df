"""Persisted state: instance registry and environments."""

from spindb.store.environments import DEFAULT_ENVIRONMENT, EnvironmentStore
from spindb.store.registry import Registry

__all__ = [
    "DEFAULT_ENVIRONMENT",
    "EnvironmentStore",
    "Registry",
]
