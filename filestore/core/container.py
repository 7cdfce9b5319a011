"""
Dependency injection container.
Holds the process-wide storage manager built from settings.
"""

from typing import Optional
from dataclasses import dataclass, field

from filestore.core.config import Settings, get_settings
from filestore.services.storage_manager import StorageManager


@dataclass
class Container:
    """
    Dependency injection container.

    Example:
    ```python
    from filestore.core.container import container

    await container.initialize()
    meta = await container.storage.upload("file.txt", data)
    ```
    """

    settings: Settings = field(default_factory=get_settings)
    _storage: Optional[StorageManager] = None

    def configure(self, settings: Settings) -> None:
        """Replace the settings used by the next ``initialize()``."""
        self.settings = settings

    @property
    def storage(self) -> StorageManager:
        """Get the storage manager."""
        if self._storage is None:
            raise RuntimeError("Storage is not initialized; call container.initialize() first")
        return self._storage

    def set_storage(self, manager: Optional[StorageManager]) -> None:
        """Set a custom storage manager (for testing)."""
        self._storage = manager

    async def initialize(self) -> None:
        """Register providers and start the storage manager."""
        if self._storage is not None:
            return

        from filestore.core.plugins.registry import storage_providers
        from filestore.implementations.register import register_providers

        # Registrations outlive shutdown; a restart reuses them
        if not storage_providers.has("local"):
            register_providers()

        manager = StorageManager(self.settings.storage.manager_config())
        await manager.initialize()
        self._storage = manager

    async def shutdown(self) -> None:
        """Shutdown the storage manager gracefully."""
        manager, self._storage = self._storage, None
        if manager is not None:
            await manager.shutdown()


# Global container instance
container = Container()


# FastAPI dependency functions
async def get_storage() -> StorageManager:
    """FastAPI dependency for storage."""
    return container.storage
