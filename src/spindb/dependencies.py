"""Process-wide SpinDB instance for callers such as a CLI."""

from spindb.config import get_config
from spindb.infra import close_docker
from spindb.logging import setup_logging
from spindb.services import SpinDB
from spindb.services.shell import Confirmer, ShellLauncher

# Singleton instance
_spindb: SpinDB | None = None


def init_spindb(confirmer: Confirmer | None = None, shell: ShellLauncher | None = None) -> SpinDB:
    """Configure logging and create the SpinDB singleton.

    Must be called once at startup, before get_spindb().
    """
    global _spindb
    config = get_config()
    setup_logging(config.logging)
    _spindb = SpinDB(config, confirmer=confirmer, shell=shell)
    return _spindb


async def close_spindb() -> None:
    """Release the Docker connection pool."""
    global _spindb
    if _spindb:
        await _spindb.close()
    await close_docker()
    _spindb = None


def get_spindb() -> SpinDB:
    """Get SpinDB singleton.

    Raises:
        RuntimeError: If called before init_spindb().
    """
    if _spindb is None:
        raise RuntimeError("SpinDB not initialized. Call init_spindb() first.")
    return _spindb


def reset_spindb() -> None:
    """Reset singleton (for testing)."""
    global _spindb
    _spindb = None
