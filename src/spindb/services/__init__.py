"""spindb services."""

from spindb.config import SpinDBConfig, get_config
from spindb.services.environments import EnvironmentManager
from spindb.services.orchestrator import Orchestrator, ProvisionState
from spindb.services.shell import Confirmer, DenyConfirmer, ShellLauncher, SubprocessShellLauncher
from spindb.store import EnvironmentStore, Registry


class SpinDB:
    """Orchestrator and environment manager sharing one configuration."""

    def __init__(
        self,
        config: SpinDBConfig | None = None,
        confirmer: Confirmer | None = None,
        shell: ShellLauncher | None = None,
    ) -> None:
        self._config = config or get_config()

        self.orchestrator = Orchestrator(
            self._config,
            registry=Registry(self._config.storage.registry_file),
            confirmer=confirmer,
            shell=shell,
        )
        self.environments = EnvironmentManager(
            self.orchestrator,
            store=EnvironmentStore(self._config.storage.environments_dir),
        )

    async def close(self) -> None:
        await self.orchestrator.close()


__all__ = [
    "SpinDB",
    "Orchestrator",
    "ProvisionState",
    "EnvironmentManager",
    "Confirmer",
    "DenyConfirmer",
    "ShellLauncher",
    "SubprocessShellLauncher",
]
