"""
Base storage provider with common functionality.
"""

from __future__ import annotations

import asyncio
import mimetypes
import re
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import PurePosixPath
from typing import AsyncIterator, Iterable

import structlog

from filestore.core.exceptions import (
    BackendError,
    InvalidKeyError,
    InvalidPayloadError,
    StorageError,
)
from filestore.core.interfaces.storage import (
    DownloadOptions,
    HealthState,
    ObjectMetadata,
    ObjectStream,
    ProviderHealthStatus,
    UploadData,
    UploadOptions,
)
from filestore.utils.timezone import utc_now

logger = structlog.get_logger()

MAX_KEY_LENGTH = 1024
INVALID_KEY_CHARS = re.compile(r'[<>:"|?*]')
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def validate_key(key: str) -> None:
    """
    Validate an object key.

    Raises:
        InvalidKeyError: If the key is empty, longer than 1024 characters,
            or contains any of < > : " | ? *
    """
    if not key or not isinstance(key, str):
        raise InvalidKeyError("File key must be a non-empty string")

    if len(key) > MAX_KEY_LENGTH:
        raise InvalidKeyError(f"File key must be at most {MAX_KEY_LENGTH} characters")

    if INVALID_KEY_CHARS.search(key):
        raise InvalidKeyError("File key contains invalid characters")


def validate_upload_data(data: UploadData) -> None:
    """
    Check that ``data`` is a supported payload type.

    Raises:
        InvalidPayloadError: If data is None or not bytes, a binary file
            object, or an async iterable of bytes
    """
    if data is None:
        raise InvalidPayloadError("Upload data is required")

    if isinstance(data, (bytes, bytearray, memoryview)):
        return
    if hasattr(data, "read") or hasattr(data, "__aiter__"):
        return

    raise InvalidPayloadError(
        f"Upload data must be bytes, a binary file object or an async byte stream, "
        f"got {type(data).__name__}"
    )


def guess_content_type(key: str) -> str:
    """Guess MIME type from the key's extension."""
    content_type, _ = mimetypes.guess_type(key)
    return content_type or DEFAULT_CONTENT_TYPE


class BaseStorageProvider(ABC):
    """
    Base class for storage providers.

    Subclasses implement the backend operations plus ``is_available``,
    ``_perform_initialization`` and ``_perform_cleanup``. The base class
    supplies validation, a download/re-upload ``copy``, ``move``, a
    never-raising ``health_check`` and an idempotent ``initialize``.
    """

    def __init__(
        self,
        name: str,
        max_file_size: int | None = None,
        allowed_extensions: Iterable[str] | None = None,
    ):
        self.name = name
        self.max_file_size = max_file_size
        self.allowed_extensions = {
            ext.lower() if ext.startswith(".") else f".{ext.lower()}"
            for ext in (allowed_extensions or [])
            if ext
        }
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._log = logger.bind(provider=name)

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ============ Backend operations ============

    @abstractmethod
    async def is_available(self) -> bool:
        """Cheap connectivity probe."""

    @abstractmethod
    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
    ) -> ObjectMetadata:
        """Upload a file."""

    @abstractmethod
    async def download(self, key: str, options: DownloadOptions | None = None) -> bytes:
        """Download file contents."""

    @abstractmethod
    async def get_stream(self, key: str) -> ObjectStream:
        """Open a chunked stream over file contents."""

    @abstractmethod
    async def get_metadata(self, key: str) -> ObjectMetadata:
        """Get file metadata."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a file."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check if a file exists."""

    @abstractmethod
    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Generate a signed URL for file access."""

    @abstractmethod
    async def get_public_url(self, key: str) -> str:
        """Get a public URL for a file."""

    @abstractmethod
    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List files whose key starts with ``prefix``."""

    async def copy(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """Copy a file by downloading it and re-uploading under the new key."""
        validate_key(source_key)
        validate_key(destination_key)

        data = await self.download(source_key)
        source = await self.get_metadata(source_key)

        result = await self.upload(
            destination_key,
            data,
            UploadOptions(content_type=source.mime_type, metadata=source.metadata),
        )
        self._log.info("File copied", source=source_key, destination=destination_key)
        return result

    async def move(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """
        Move a file: copy, then delete the source.

        Not atomic. A failure between the two steps leaves both objects in place.
        """
        result = await self.copy(source_key, destination_key)
        await self.delete(source_key)
        self._log.info("File moved", source=source_key, destination=destination_key)
        return result

    # ============ Health and lifecycle ============

    async def health_check(self) -> ProviderHealthStatus:
        """Probe the backend and report timing. Never raises."""
        start = time.perf_counter()
        try:
            available = await self.is_available()
            return ProviderHealthStatus(
                provider_name=self.name,
                status=HealthState.HEALTHY if available else HealthState.UNHEALTHY,
                response_time_ms=(time.perf_counter() - start) * 1000,
                last_checked_at=utc_now(),
                error=None if available else "Provider reported unavailable",
            )
        except Exception as e:
            return ProviderHealthStatus(
                provider_name=self.name,
                status=HealthState.UNHEALTHY,
                response_time_ms=(time.perf_counter() - start) * 1000,
                last_checked_at=utc_now(),
                error=str(e)[:200] or type(e).__name__,
            )

    async def initialize(self) -> None:
        """Run provider-specific initialization once."""
        async with self._init_lock:
            if self._initialized:
                return

            try:
                await self._perform_initialization()
            except Exception as e:
                self._log.error("Storage provider initialization failed", error=str(e))
                raise

            self._initialized = True
            self._log.info("Storage provider initialized")

    async def cleanup(self) -> None:
        """Release provider resources."""
        try:
            await self._perform_cleanup()
        except Exception as e:
            self._log.error("Storage provider cleanup failed", error=str(e))
            raise
        finally:
            self._initialized = False

        self._log.info("Storage provider cleaned up")

    @abstractmethod
    async def _perform_initialization(self) -> None:
        """Provider-specific initialization."""

    @abstractmethod
    async def _perform_cleanup(self) -> None:
        """Provider-specific cleanup."""

    # ============ Helpers ============

    def validate_upload(self, key: str, data: UploadData) -> None:
        """Key, payload type and extension checks shared by every upload."""
        validate_key(key)
        validate_upload_data(data)

        if self.allowed_extensions:
            ext = PurePosixPath(key).suffix.lower()
            if ext not in self.allowed_extensions:
                raise InvalidKeyError(
                    f"File extension not allowed: {ext or '(none)'}. "
                    f"Allowed: {', '.join(sorted(self.allowed_extensions))}"
                )

    def check_size(self, size: int) -> None:
        """Enforce ``max_file_size`` once the payload size is known."""
        if self.max_file_size is not None and size > self.max_file_size:
            raise InvalidPayloadError(
                f"File too large: {size} bytes. Maximum size: {self.max_file_size} bytes"
            )

    async def read_payload(self, data: UploadData) -> bytes:
        """Materialise any accepted payload into bytes, enforcing the size limit."""
        if isinstance(data, (bytes, bytearray, memoryview)):
            content = bytes(data)
        elif hasattr(data, "__aiter__"):
            content = b"".join([chunk async for chunk in data])
        else:
            content = await asyncio.to_thread(data.read)
            if isinstance(content, str):
                raise InvalidPayloadError("File object must be opened in binary mode")

        self.check_size(len(content))
        return content

    def _translate_exception(self, exc: Exception, key: str) -> StorageError:
        """Map a backend exception to the storage error taxonomy."""
        return BackendError(f"{type(exc).__name__}: {exc}", provider=self.name)

    @asynccontextmanager
    async def _translate_errors(self, operation: str, key: str) -> AsyncIterator[None]:
        """Re-raise backend exceptions as storage errors, logging backend failures."""
        try:
            yield
        except StorageError:
            raise
        except Exception as e:
            error = self._translate_exception(e, key)
            if error.retryable:
                self._log.error(
                    f"Failed to {operation} file",
                    key=key,
                    error=str(e),
                )
            raise error from e
