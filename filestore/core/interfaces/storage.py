"""
Storage provider protocol.
Implementations: LocalStorageProvider, S3StorageProvider, CloudStorageProvider
"""
from __future__ import annotations

from typing import (
    Any,
    AsyncIterable,
    AsyncIterator,
    Awaitable,
    BinaryIO,
    Callable,
    Generic,
    Optional,
    Protocol,
    TypeVar,
    Union,
    runtime_checkable,
)
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

T = TypeVar("T")

# Accepted upload payloads: in-memory buffer, binary file object, or async chunk stream
UploadData = Union[bytes, bytearray, memoryview, BinaryIO, AsyncIterable[bytes]]


@dataclass(frozen=True)
class ObjectMetadata:
    """Snapshot of a stored object."""
    key: str
    size: int
    mime_type: str
    last_modified: datetime
    etag: str | None = None
    url: str | None = None
    metadata: dict[str, str] | None = None
    provider: str | None = None


@dataclass
class UploadOptions:
    """Upload options. Providers ignore the ones they cannot honour."""
    content_type: str | None = None
    metadata: dict[str, str] | None = None
    public: bool = False
    expires_in: int | None = None


@dataclass
class DownloadOptions:
    """Response overrides for object-storage downloads."""
    response_content_type: str | None = None
    response_content_disposition: str | None = None


class HealthState(str, Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ProviderHealthStatus:
    """Last known health of one provider."""
    provider_name: str
    status: HealthState
    response_time_ms: float = 0.0
    last_checked_at: datetime | None = None
    error: str | None = None

    @property
    def is_healthy(self) -> bool:
        return self.status == HealthState.HEALTHY

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_name,
            "status": self.status.value,
            "response_time_ms": round(self.response_time_ms, 2),
            "last_checked_at": (
                self.last_checked_at.isoformat() if self.last_checked_at else None
            ),
            "error": self.error,
        }


@dataclass(frozen=True)
class ProviderConfig:
    """
    One configured backend.

    ``provider`` selects the registered implementation; ``name`` labels the
    instance so two backends of the same type can run side by side.
    """
    provider: str
    enabled: bool = True
    priority: int = 0
    config: dict[str, Any] = field(default_factory=dict)
    name: str | None = None

    @property
    def provider_name(self) -> str:
        return self.name or self.provider


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a single provider call, used for logging and retry decisions."""
    success: bool
    provider: str
    duration_ms: float
    data: Optional[T] = None
    error: str | None = None
    exception: BaseException | None = field(default=None, repr=False)


class StorageStrategy(str, Enum):
    """Provider selection policy."""
    PRIMARY = "primary"
    FAILOVER = "failover"
    LOAD_BALANCE = "load_balance"
    ROUND_ROBIN = "round_robin"


class ObjectStream:
    """
    Readable stream over a stored object.

    The caller owns the stream and must close it, either explicitly or by
    using it as an async context manager:

        async with await storage.get_stream("reports/q1.pdf") as stream:
            async for chunk in stream:
                ...
    """

    def __init__(
        self,
        chunks: AsyncIterator[bytes],
        close: Callable[[], Awaitable[None]] | None = None,
    ):
        self._chunks = chunks
        self._close = close
        self._closed = False

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks

    async def read(self) -> bytes:
        """Drain the remaining chunks into memory."""
        return b"".join([chunk async for chunk in self._chunks])

    @property
    def closed(self) -> bool:
        return self._closed

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            await aclose()
        if self._close is not None:
            await self._close()

    async def __aenter__(self) -> "ObjectStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


@runtime_checkable
class StorageProvider(Protocol):
    """
    Protocol for storage providers.

    Every key-taking operation validates the key first. Implementations:
    - LocalStorageProvider: local filesystem
    - S3StorageProvider: AWS S3 or S3-compatible (MinIO)
    - CloudStorageProvider: GCS, Azure Blobs and others via Apache Libcloud
    """

    name: str

    async def is_available(self) -> bool:
        """Cheap connectivity probe."""
        ...

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
    ) -> ObjectMetadata:
        """Upload a file."""
        ...

    async def download(self, key: str, options: DownloadOptions | None = None) -> bytes:
        """Download file contents."""
        ...

    async def get_stream(self, key: str) -> ObjectStream:
        """Open a chunked stream over file contents."""
        ...

    async def get_metadata(self, key: str) -> ObjectMetadata:
        """Get file metadata without downloading."""
        ...

    async def delete(self, key: str) -> None:
        """Delete a file."""
        ...

    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        ...

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Time-limited URL; falls back to the public URL where unsupported."""
        ...

    async def get_public_url(self, key: str) -> str:
        """Public URL for a file. Never performs I/O."""
        ...

    async def copy(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """Copy file to new location."""
        ...

    async def move(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """Copy then delete the source."""
        ...

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List at most ``max_keys`` files whose key starts with ``prefix``."""
        ...

    async def health_check(self) -> ProviderHealthStatus:
        """Probe the backend. Never raises."""
        ...

    async def initialize(self) -> None:
        """Acquire backend resources. Idempotent."""
        ...

    async def cleanup(self) -> None:
        """Release backend resources."""
        ...
