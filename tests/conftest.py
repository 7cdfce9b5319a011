"""
Pytest fixtures for testing.

Provides:
- In-memory storage provider with injectable failures
- Local filesystem provider rooted in a temp directory
- Manager factory wired through a private provider registry
"""

import asyncio
from typing import Any, AsyncGenerator, Callable, Optional

import pytest
import pytest_asyncio

from filestore.core.exceptions import ObjectNotFoundError
from filestore.core.interfaces.storage import (
    DownloadOptions,
    ObjectMetadata,
    ObjectStream,
    ProviderConfig,
    UploadData,
    UploadOptions,
)
from filestore.core.plugins.registry import ProviderRegistry
from filestore.implementations.storage.base import (
    BaseStorageProvider,
    guess_content_type,
    validate_key,
)
from filestore.implementations.storage.local import LocalStorageProvider
from filestore.services.retry import RetryPolicy
from filestore.services.storage_manager import StorageManager, StorageManagerConfig
from filestore.utils.timezone import utc_now


# ============ Mock Implementations ============


class MemoryStorageProvider(BaseStorageProvider):
    """
    In-memory storage provider for testing.

    Set ``fail_with`` to make every operation raise, ``delay`` to make
    every operation slow, ``available`` to control health probes.
    ``fail_after_read`` fails uploads only after consuming the payload.
    """

    def __init__(
        self,
        name: str = "memory",
        fail_with: Optional[BaseException] = None,
        delay: float = 0.0,
        available: bool = True,
        init_error: Optional[Exception] = None,
        fail_after_read: Optional[BaseException] = None,
    ):
        super().__init__(name)
        self.files: dict[str, tuple[bytes, str, Optional[dict[str, str]]]] = {}
        self.fail_with = fail_with
        self.delay = delay
        self.available = available
        self.init_error = init_error
        self.fail_after_read = fail_after_read
        self.calls: list[str] = []
        self.uploaded: list[bytes] = []
        self.cleaned_up = False

    async def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    def _meta(self, key: str) -> ObjectMetadata:
        if key not in self.files:
            raise ObjectNotFoundError(key, self.name)
        data, content_type, metadata = self.files[key]
        return ObjectMetadata(
            key=key,
            size=len(data),
            mime_type=content_type,
            last_modified=utc_now(),
            url=f"memory://{self.name}/{key}",
            metadata=metadata,
        )

    async def is_available(self) -> bool:
        return self.available

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: Optional[UploadOptions] = None,
    ) -> ObjectMetadata:
        options = options or UploadOptions()
        self.validate_upload(key, data)
        await self._enter("upload")
        content = await self.read_payload(data)
        self.uploaded.append(content)
        if self.fail_after_read is not None:
            raise self.fail_after_read
        self.files[key] = (
            content,
            options.content_type or guess_content_type(key),
            options.metadata,
        )
        return self._meta(key)

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> bytes:
        validate_key(key)
        await self._enter("download")
        self._meta(key)
        return self.files[key][0]

    async def get_stream(self, key: str) -> ObjectStream:
        validate_key(key)
        await self._enter("get_stream")
        self._meta(key)
        data = self.files[key][0]

        async def chunks():
            for i in range(0, len(data), 4):
                yield data[i:i + 4]

        return ObjectStream(chunks())

    async def get_metadata(self, key: str) -> ObjectMetadata:
        validate_key(key)
        await self._enter("get_metadata")
        return self._meta(key)

    async def delete(self, key: str) -> None:
        validate_key(key)
        await self._enter("delete")
        self._meta(key)
        del self.files[key]

    async def exists(self, key: str) -> bool:
        validate_key(key)
        await self._enter("exists")
        return key in self.files

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        validate_key(key)
        await self._enter("get_signed_url")
        return f"memory://{self.name}/{key}?expires_in={expires_in}"

    async def get_public_url(self, key: str) -> str:
        validate_key(key)
        await self._enter("get_public_url")
        return f"memory://{self.name}/{key}"

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        await self._enter("list")
        keys = sorted(k for k in self.files if k.startswith(prefix))
        return [self._meta(k) for k in keys[:max_keys]]

    async def _perform_initialization(self) -> None:
        if self.init_error is not None:
            raise self.init_error

    async def _perform_cleanup(self) -> None:
        self.cleaned_up = True


# ============ Provider Fixtures ============


@pytest.fixture
def memory_provider() -> MemoryStorageProvider:
    return MemoryStorageProvider()


@pytest_asyncio.fixture
async def local_provider(tmp_path) -> AsyncGenerator[LocalStorageProvider, None]:
    """Initialized local provider rooted in a temp directory."""
    provider = LocalStorageProvider(name="local", base_path=str(tmp_path / "storage"))
    await provider.initialize()
    yield provider
    await provider.cleanup()


# ============ Manager Fixtures ============


def memory_registry(providers: list[BaseStorageProvider]) -> ProviderRegistry[Any]:
    """Registry whose "memory" factory hands out pre-built providers by name."""
    instances = {provider.name: provider for provider in providers}
    registry = ProviderRegistry[Any]("test-storage")
    registry.register("memory", lambda name, **config: instances[name])
    return registry


@pytest_asyncio.fixture
async def manager_factory() -> AsyncGenerator[Callable[..., Any], None]:
    """
    Build initialized managers over pre-built providers.

    Providers get priority in argument order. Backoff delay is zero and
    background health probing is off unless asked for.
    """
    managers: list[StorageManager] = []

    async def build(
        *providers: BaseStorageProvider,
        strategy: str = "primary",
        failover_timeout_ms: Optional[int] = 5000,
        health_check_interval_ms: int = 0,
        base_delay: float = 0.0,
    ) -> StorageManager:
        config = StorageManagerConfig(
            providers=[
                ProviderConfig(provider="memory", name=provider.name, priority=index)
                for index, provider in enumerate(providers)
            ],
            strategy=strategy,
            health_check_interval_ms=health_check_interval_ms,
            failover_timeout_ms=failover_timeout_ms,
            retry=RetryPolicy(base_delay=base_delay),
        )
        manager = StorageManager(config, registry=memory_registry(list(providers)))
        await manager.initialize()
        managers.append(manager)
        return manager

    yield build

    for manager in managers:
        await manager.shutdown()
