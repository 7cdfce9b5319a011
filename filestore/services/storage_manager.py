"""
Storage manager: one storage surface over several providers.

Every operation picks a healthy provider, runs the call with a per-attempt
timeout, and on backend failure marks that provider unhealthy, backs off
and tries the next one. A background task keeps the health registry fresh.

Usage:
    manager = StorageManager(StorageManagerConfig(
        providers=[
            ProviderConfig(provider="s3", priority=0, config={...}),
            ProviderConfig(provider="local", priority=1, config={"base_path": "./uploads"}),
        ],
        strategy=StorageStrategy.FAILOVER,
    ))

    async with manager:
        meta = await manager.upload("users/123/avatar.jpg", image_bytes)
        print(meta.provider)  # "s3", or "local" if S3 is down
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import threading
import time
from contextlib import suppress
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, BinaryIO, Callable, Optional, TypeVar, Union

import structlog

from filestore.core.exceptions import (
    BackendError,
    InvalidPayloadError,
    NoHealthyProvidersError,
    NoProvidersAvailableError,
    ObjectAlreadyExistsError,
    ObjectNotFoundError,
    StorageError,
    StorageOperationError,
)
from filestore.core.interfaces.storage import (
    DownloadOptions,
    HealthState,
    ObjectMetadata,
    ObjectStream,
    OperationResult,
    ProviderConfig,
    ProviderHealthStatus,
    StorageProvider,
    StorageStrategy,
    UploadData,
    UploadOptions,
)
from filestore.core.plugins.registry import ProviderRegistry, storage_providers
from filestore.implementations.storage.base import validate_key
from filestore.services.health_registry import HealthRegistry
from filestore.services.retry import RetryPolicy
from filestore.services.selection import ProviderSelector
from filestore.utils.timezone import utc_now

logger = structlog.get_logger()

T = TypeVar("T")

# Streamed upload payloads stay in memory up to this size, then spill to disk
SPOOL_MAX_MEMORY = 8 * 1024 * 1024


@dataclass
class StorageManagerConfig:
    """Provider list plus selection, health and retry settings."""

    providers: list[ProviderConfig] = field(default_factory=list)
    strategy: Union[StorageStrategy, str] = StorageStrategy.PRIMARY
    health_check_interval_ms: int = 30000
    failover_timeout_ms: Optional[int] = 5000
    retry: RetryPolicy = field(default_factory=RetryPolicy)


class AttemptReader:
    """
    Read-only view of a shared file with its own position.

    Every read seeks the shared file to this reader's offset under a lock,
    so a reader abandoned by a timed-out attempt cannot move the position
    another attempt is reading from.
    """

    def __init__(self, source: BinaryIO, start: int, lock: threading.Lock):
        self._source = source
        self._position = start
        self._lock = lock

    def read(self, size: Optional[int] = -1) -> bytes:
        with self._lock:
            self._source.seek(self._position)
            chunk = self._source.read(-1 if size is None else size)
            self._position += len(chunk)
        return chunk

    def tell(self) -> int:
        return self._position


class ReplayablePayload:
    """
    Upload payload that can be sent to several providers in turn.

    Bytes are reused as-is. Seekable file objects are re-read from where
    they started. Async streams and non-seekable files are spooled once.
    File payloads are handed out as a fresh AttemptReader per attempt.
    """

    def __init__(self, data: UploadData):
        self._data = data
        self._source: Optional[BinaryIO] = None
        self._start = 0
        self._spool: Optional[tempfile.SpooledTemporaryFile] = None
        self._lock = threading.Lock()

    async def prepare(self) -> None:
        data = self._data
        if data is None or isinstance(data, (bytes, bytearray, memoryview)):
            return

        if hasattr(data, "__aiter__"):
            spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
            try:
                async for chunk in data:
                    if not isinstance(chunk, (bytes, bytearray, memoryview)):
                        raise InvalidPayloadError("Stream chunks must be bytes")
                    spool.write(chunk)
            except BaseException:
                spool.close()
                raise
            self._spool = self._source = spool

        elif hasattr(data, "read"):
            seekable = getattr(data, "seekable", None)
            if seekable is not None and seekable():
                self._source = data
                self._start = data.tell()
            else:
                spool = tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_MEMORY)
                await asyncio.to_thread(shutil.copyfileobj, data, spool)
                self._spool = self._source = spool

    def get(self) -> UploadData:
        """Payload positioned at its start, ready for one attempt."""
        if self._source is None:
            return self._data
        return AttemptReader(self._source, self._start, self._lock)

    def close(self) -> None:
        if self._spool is not None:
            with self._lock:
                self._spool.close()
            self._spool = None


class StorageManager:
    """
    Health-aware front for a set of storage providers.

    Exposes the provider operations (upload, download, get_stream,
    get_metadata, delete, exists, signed/public URLs, copy, move, list) and
    adds failover: backend errors are retried on another healthy provider,
    caller errors (bad key, bad payload, missing object, occupied
    destination) are raised straight away.
    """

    def __init__(
        self,
        config: StorageManagerConfig,
        registry: Optional[ProviderRegistry] = None,
    ):
        self.config = config
        self.health = HealthRegistry()
        self._registry = registry if registry is not None else storage_providers
        self._selector = ProviderSelector(config.strategy)
        self._providers: dict[str, StorageProvider] = {}
        self._health_task: Optional[asyncio.Task] = None
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def strategy(self) -> StorageStrategy:
        return self._selector.strategy

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ============ Lifecycle ============

    async def initialize(self) -> None:
        """
        Build and initialize every enabled provider, then start health checks.

        Providers are tried in priority order. Disabled entries, invalid
        configs and providers whose ``initialize()`` fails are skipped.

        Raises:
            NoProvidersAvailableError: If no provider could be initialized
        """
        async with self._init_lock:
            if self._initialized:
                return

            for provider_config in sorted(self.config.providers, key=lambda c: c.priority):
                provider = await self._build_provider(provider_config)
                if provider is None:
                    continue
                self._providers[provider.name] = provider
                self.health.register(provider.name)

            if not self._providers:
                raise NoProvidersAvailableError()

            self._initialized = True
            self._start_health_checks()

        logger.info(
            "Storage manager initialized",
            providers=list(self._providers),
            strategy=self.strategy.value,
        )

    async def _build_provider(self, provider_config: ProviderConfig) -> Optional[StorageProvider]:
        name = provider_config.provider_name

        if not provider_config.enabled:
            logger.info("Skipping disabled storage provider", provider=name)
            return None

        if name in self._providers:
            logger.warning("Skipping duplicate storage provider name", provider=name)
            return None

        problems = self._registry.validate(provider_config)
        if problems:
            logger.error(
                "Skipping storage provider with invalid configuration",
                provider=name,
                problems=problems,
            )
            return None

        try:
            provider = self._registry.create(provider_config)
            await provider.initialize()
        except Exception as e:
            logger.error("Failed to initialize storage provider", provider=name, error=str(e))
            return None

        logger.info("Storage provider initialized", provider=name, type=provider_config.provider)
        return provider

    async def shutdown(self) -> None:
        """Stop health checks, clean up every provider and forget them."""
        await self._stop_health_checks()

        providers = list(self._providers.values())
        results = await asyncio.gather(
            *[provider.cleanup() for provider in providers],
            return_exceptions=True,
        )
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Storage provider cleanup failed",
                    provider=provider.name,
                    error=str(result),
                )

        self._providers.clear()
        self.health.clear()
        self._initialized = False
        logger.info("Storage manager shut down")

    async def __aenter__(self) -> "StorageManager":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.shutdown()

    # ============ Health ============

    def _start_health_checks(self) -> None:
        interval_ms = self.config.health_check_interval_ms
        if not interval_ms or interval_ms <= 0:
            return
        self._health_task = asyncio.create_task(
            self._health_loop(interval_ms / 1000),
            name="storage-health-checks",
        )

    async def _stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task

    async def _health_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.check_health()
            except Exception as e:
                logger.error("Storage health check round failed", error=str(e))

    async def _probe(self, provider: StorageProvider) -> ProviderHealthStatus:
        timeout_ms = self.config.failover_timeout_ms
        try:
            if timeout_ms:
                status = await asyncio.wait_for(provider.health_check(), timeout_ms / 1000)
            else:
                status = await provider.health_check()
        except asyncio.TimeoutError:
            status = ProviderHealthStatus(
                provider_name=provider.name,
                status=HealthState.UNHEALTHY,
                response_time_ms=float(timeout_ms),
                last_checked_at=utc_now(),
                error=f"Health check timed out after {timeout_ms} ms",
            )
        except Exception as e:
            status = ProviderHealthStatus(
                provider_name=provider.name,
                status=HealthState.UNHEALTHY,
                last_checked_at=utc_now(),
                error=str(e)[:200] or type(e).__name__,
            )

        # A shutdown may have dropped the provider while the probe ran
        if provider.name in self._providers:
            self.health.update(status)
        return status

    async def check_health(self) -> list[ProviderHealthStatus]:
        """Probe every provider now and refresh the health registry."""
        providers = list(self._providers.values())
        statuses = await asyncio.gather(*[self._probe(provider) for provider in providers])

        logger.debug(
            "Storage health check completed",
            healthy=sum(1 for s in statuses if s.is_healthy),
            total=len(statuses),
        )
        return list(statuses)

    def health_status(self) -> list[ProviderHealthStatus]:
        """Current health of every provider, in priority order."""
        return self.health.snapshot()

    @property
    def is_healthy(self) -> bool:
        """At least one provider is currently usable."""
        return bool(self.health.healthy(self._providers))

    def get_available_providers(self) -> list[str]:
        """Names of every initialized provider, in priority order."""
        return list(self._providers)

    def get_provider(self, name: str) -> Optional[StorageProvider]:
        return self._providers.get(name)

    # ============ Execution ============

    def _select_provider(self) -> StorageProvider:
        healthy = self.health.healthy(self._providers)
        return self._providers[self._selector.select(healthy)]

    async def _run_attempt(
        self,
        provider: StorageProvider,
        call: Callable[[StorageProvider], Awaitable[T]],
    ) -> OperationResult[T]:
        """
        Run one attempt and record its outcome.

        Errors a caller must fix (``retryable`` False) are raised, not recorded.
        """
        timeout_ms = self.config.failover_timeout_ms
        start = time.perf_counter()
        try:
            if timeout_ms:
                data = await asyncio.wait_for(call(provider), timeout_ms / 1000)
            else:
                data = await call(provider)
        except asyncio.TimeoutError:
            error: Exception = BackendError(
                f"Timed out after {timeout_ms} ms",
                provider=provider.name,
            )
        except StorageError as e:
            if not e.retryable:
                raise
            error = e
        except Exception as e:
            error = e
        else:
            return OperationResult(
                success=True,
                provider=provider.name,
                duration_ms=(time.perf_counter() - start) * 1000,
                data=data,
            )

        return OperationResult(
            success=False,
            provider=provider.name,
            duration_ms=(time.perf_counter() - start) * 1000,
            error=str(error) or type(error).__name__,
            exception=error,
        )

    async def _execute(
        self,
        operation: str,
        call: Callable[[StorageProvider], Awaitable[T]],
        key: Optional[str] = None,
    ) -> T:
        """
        Run ``call`` against a healthy provider, failing over on backend errors.

        Raises:
            NoHealthyProvidersError: If no provider is healthy before the first attempt
            StorageOperationError: If every attempt failed
        """
        if not self._initialized:
            raise NoProvidersAvailableError("Storage manager is not initialized")

        max_attempts = self.config.retry.attempts_for(len(self._providers))
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(max_attempts):
            try:
                provider = self._select_provider()
            except NoHealthyProvidersError:
                if last_error is None:
                    raise
                break

            attempts += 1
            result = await self._run_attempt(provider, call)
            if result.success:
                logger.debug(
                    "Storage operation succeeded",
                    provider=result.provider,
                    operation=operation,
                    key=key,
                    attempt=attempt + 1,
                    duration_ms=round(result.duration_ms, 2),
                )
                return result.data

            last_error = result.exception
            self.health.mark_unhealthy(provider.name, result.error, result.duration_ms)
            logger.warning(
                "Storage operation failed",
                provider=provider.name,
                operation=operation,
                key=key,
                attempt=attempt + 1,
                max_attempts=max_attempts,
                error=result.error,
            )

            if attempt < max_attempts - 1:
                await self.config.retry.backoff(attempt)

        logger.error(
            "Storage operation failed on all providers",
            operation=operation,
            key=key,
            attempts=attempts,
            error=str(last_error),
        )
        raise StorageOperationError(operation, last_error, attempts) from last_error

    @staticmethod
    def _stamp(meta: ObjectMetadata, provider: StorageProvider) -> ObjectMetadata:
        return replace(meta, provider=provider.name)

    # ============ Operations ============

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: Optional[UploadOptions] = None,
    ) -> ObjectMetadata:
        """Upload a file to the first provider that accepts it."""
        validate_key(key)
        payload = ReplayablePayload(data)
        await payload.prepare()

        async def call(provider: StorageProvider) -> ObjectMetadata:
            return self._stamp(await provider.upload(key, payload.get(), options), provider)

        try:
            return await self._execute("upload", call, key)
        finally:
            payload.close()

    async def download(self, key: str, options: Optional[DownloadOptions] = None) -> bytes:
        validate_key(key)
        return await self._execute("download", lambda p: p.download(key, options), key)

    async def get_stream(self, key: str) -> ObjectStream:
        """Open a stream; the timeout covers opening, not reading."""
        validate_key(key)
        return await self._execute("get_stream", lambda p: p.get_stream(key), key)

    async def get_metadata(self, key: str) -> ObjectMetadata:
        validate_key(key)

        async def call(provider: StorageProvider) -> ObjectMetadata:
            return self._stamp(await provider.get_metadata(key), provider)

        return await self._execute("get_metadata", call, key)

    async def delete(self, key: str) -> None:
        """Delete a file. Missing keys raise ObjectNotFoundError where the backend reports them."""
        validate_key(key)
        await self._execute("delete", lambda p: p.delete(key), key)

    async def delete_if_exists(self, key: str) -> bool:
        """Delete a file if present. Returns False when it was already gone."""
        try:
            await self.delete(key)
        except ObjectNotFoundError:
            return False
        return True

    async def exists(self, key: str) -> bool:
        validate_key(key)
        return await self._execute("exists", lambda p: p.exists(key), key)

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        validate_key(key)
        return await self._execute(
            "get_signed_url",
            lambda p: p.get_signed_url(key, expires_in),
            key,
        )

    async def get_public_url(self, key: str) -> str:
        validate_key(key)
        return await self._execute("get_public_url", lambda p: p.get_public_url(key), key)

    async def _check_transfer(
        self,
        provider: StorageProvider,
        source_key: str,
        destination_key: str,
    ) -> None:
        if not await provider.exists(source_key):
            raise ObjectNotFoundError(source_key, provider.name)
        if await provider.exists(destination_key):
            raise ObjectAlreadyExistsError(destination_key, provider.name)

    async def copy(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """
        Copy a file within one provider.

        Raises:
            ObjectNotFoundError: If the source is missing
            ObjectAlreadyExistsError: If the destination is occupied
        """
        validate_key(source_key)
        validate_key(destination_key)

        async def call(provider: StorageProvider) -> ObjectMetadata:
            await self._check_transfer(provider, source_key, destination_key)
            return self._stamp(await provider.copy(source_key, destination_key), provider)

        return await self._execute("copy", call, source_key)

    async def move(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """
        Move a file within one provider. Not atomic: copy, then delete.

        Raises:
            ObjectNotFoundError: If the source is missing
            ObjectAlreadyExistsError: If the destination is occupied
        """
        validate_key(source_key)
        validate_key(destination_key)

        async def call(provider: StorageProvider) -> ObjectMetadata:
            await self._check_transfer(provider, source_key, destination_key)
            return self._stamp(await provider.move(source_key, destination_key), provider)

        return await self._execute("move", call, source_key)

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List at most ``max_keys`` files whose key starts with ``prefix``."""

        async def call(provider: StorageProvider) -> list[ObjectMetadata]:
            files = await provider.list(prefix, max_keys)
            return [self._stamp(meta, provider) for meta in files[:max_keys]]

        return await self._execute("list", call, prefix or None)

    def describe(self) -> dict[str, Any]:
        """Summary for readiness endpoints."""
        return {
            "status": HealthState.HEALTHY.value if self.is_healthy else HealthState.UNHEALTHY.value,
            "strategy": self.strategy.value,
            "providers": [status.to_dict() for status in self.health_status()],
        }
