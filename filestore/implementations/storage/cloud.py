"""
Multi-cloud storage provider using Apache Libcloud.

Supports the Libcloud storage drivers with a unified interface:
- Google Cloud Storage
- Azure Blob Storage
- DigitalOcean Spaces
- Backblaze B2, Linode, Rackspace and more

Libcloud drivers are blocking; every call runs in a worker thread.

Install: pip install apache-libcloud
"""

from __future__ import annotations

import asyncio
import hashlib
from typing import Any, AsyncIterator, Iterable, Iterator, Optional

from libcloud.storage.providers import get_driver
from libcloud.storage.types import (
    ContainerDoesNotExistError,
    ObjectDoesNotExistError,
    Provider,
)

from filestore.core.exceptions import (
    ObjectNotFoundError,
    ProviderConfigError,
    StorageError,
)
from filestore.core.interfaces.storage import (
    DownloadOptions,
    ObjectMetadata,
    ObjectStream,
    UploadData,
    UploadOptions,
)
from filestore.implementations.storage.base import (
    BaseStorageProvider,
    guess_content_type,
    validate_key,
)
from filestore.utils.timezone import to_utc, utc_now

GCS_PUBLIC_HOST = "https://storage.googleapis.com"


class CloudStorageProvider(BaseStorageProvider):
    """
    Multi-cloud storage provider using Apache Libcloud.

    Usage:
        # Google Cloud Storage
        storage = CloudStorageProvider(
            driver="google_storage",
            container="my-bucket",
            key="service-account@project.iam.gserviceaccount.com",
            secret="/path/to/credentials.json",
            project="my-project",
        )

        # Azure Blob Storage
        storage = CloudStorageProvider(
            driver="azure_blobs",
            container="my-container",
            key="account-name",
            secret="account-key",
            public_url="https://account-name.blob.core.windows.net/my-container",
        )

        await storage.initialize()
        meta = await storage.upload("reports/q1.pdf", pdf_bytes)
    """

    # Driver name mappings
    DRIVERS = {
        "gcs": "GOOGLE_STORAGE",
        "google": "GOOGLE_STORAGE",
        "google_storage": "GOOGLE_STORAGE",
        "azure": "AZURE_BLOBS",
        "azure_blobs": "AZURE_BLOBS",
        "digitalocean": "DIGITALOCEAN_SPACES",
        "digitalocean_spaces": "DIGITALOCEAN_SPACES",
        "spaces": "DIGITALOCEAN_SPACES",
        "linode": "LINODE_OBJECT_STORAGE",
        "backblaze": "BACKBLAZE_B2",
        "b2": "BACKBLAZE_B2",
        "rackspace": "CLOUDFILES",
        "minio": "MINIO",
    }

    def __init__(
        self,
        driver: str,
        container: str,
        key: str,
        secret: str,
        name: str = "cloud",
        region: Optional[str] = None,
        project: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        secure: bool = True,
        public_url: Optional[str] = None,
        chunk_size: int = 8192,
        max_file_size: Optional[int] = None,
        allowed_extensions: Optional[Iterable[str]] = None,
        driver_instance: Any = None,
    ):
        """
        Initialize cloud storage provider.

        Args:
            driver: Libcloud driver name (gcs, azure, digitalocean, ...)
            container: Bucket/container name
            key: Access key / account name / service account email
            secret: Secret key / account key / credentials path
            name: Provider instance name
            region: Region (DigitalOcean, Linode, ...)
            project: Project ID (GCS)
            host: Custom host for self-hosted endpoints
            port: Custom port
            secure: Use HTTPS (default: True)
            public_url: Public URL prefix for generating public URLs
            chunk_size: Chunk size for streaming
            max_file_size: Upload size limit in bytes
            allowed_extensions: Permitted key extensions (all when empty)
            driver_instance: Pre-built Libcloud driver
        """
        super().__init__(name, max_file_size=max_file_size, allowed_extensions=allowed_extensions)

        driver_key = driver.lower()
        if driver_key not in self.DRIVERS:
            raise ProviderConfigError(
                f"Unknown cloud driver: {driver}. "
                f"Supported: {sorted(self.DRIVERS)}"
            )

        self.driver_name = self.DRIVERS[driver_key]
        self.container_name = container
        self.public_url = public_url.rstrip("/") if public_url else None
        self.chunk_size = chunk_size
        self._credentials = (key, secret)
        self._host = host
        self._port = port
        self._secure = secure

        # Build driver kwargs based on provider
        self._driver_kwargs: dict[str, Any] = {}
        if region:
            self._driver_kwargs["region"] = region
        if project:
            self._driver_kwargs["project"] = project
        if host:
            self._driver_kwargs["host"] = host
        if port:
            self._driver_kwargs["port"] = port
        if not secure:
            self._driver_kwargs["secure"] = False

        self._driver = driver_instance
        self._container = None

    @property
    def driver(self) -> Any:
        return self._driver

    def _translate_exception(self, exc: Exception, key: str) -> StorageError:
        if isinstance(exc, ObjectDoesNotExistError):
            return ObjectNotFoundError(key, self.name)
        return super()._translate_exception(exc, key)

    # ============ Sync helpers (run in threads) ============

    def _sync_connect(self) -> None:
        if self._driver is None:
            driver_cls = get_driver(getattr(Provider, self.driver_name))
            self._driver = driver_cls(*self._credentials, **self._driver_kwargs)

        try:
            self._container = self._driver.get_container(self.container_name)
        except ContainerDoesNotExistError:
            self._container = self._driver.create_container(self.container_name)

    def _sync_get_object(self, key: str) -> Any:
        return self._driver.get_object(self.container_name, key)

    def _to_metadata(self, obj: Any, mime_type: Optional[str] = None) -> ObjectMetadata:
        extra = obj.extra or {}
        return ObjectMetadata(
            key=obj.name,
            size=obj.size or 0,
            mime_type=mime_type or extra.get("content_type") or guess_content_type(obj.name),
            last_modified=to_utc(extra.get("last_modified")),
            etag=(obj.hash or "").strip('"') or None,
            url=self._url_or_none(obj.name),
            metadata=getattr(obj, "meta_data", None) or None,
        )

    def _sync_upload(
        self,
        key: str,
        content: bytes,
        content_type: str,
        metadata: Optional[dict[str, str]],
        public: bool,
    ) -> Any:
        extra: dict[str, Any] = {"content_type": content_type}
        if metadata:
            extra["meta_data"] = metadata
        if public:
            extra["acl"] = "public-read"

        return self._driver.upload_object_via_stream(
            iterator=iter([content]),
            container=self._container,
            object_name=key,
            extra=extra,
        )

    def _sync_download(self, key: str) -> bytes:
        obj = self._sync_get_object(key)
        return b"".join(self._driver.download_object_as_stream(obj, chunk_size=self.chunk_size))

    def _sync_open_stream(self, key: str) -> Iterator[bytes]:
        obj = self._sync_get_object(key)
        return iter(self._driver.download_object_as_stream(obj, chunk_size=self.chunk_size))

    def _sync_delete(self, key: str) -> None:
        obj = self._sync_get_object(key)
        self._driver.delete_object(obj)

    def _sync_exists(self, key: str) -> bool:
        try:
            self._sync_get_object(key)
            return True
        except ObjectDoesNotExistError:
            return False

    def _sync_signed_url(self, key: str) -> str:
        obj = self._sync_get_object(key)
        try:
            return self._driver.get_object_cdn_url(obj)
        except NotImplementedError:
            return self._public_url(key)

    def _sync_list(self, prefix: str, max_keys: int) -> list[ObjectMetadata]:
        files = []
        for obj in self._driver.iterate_container_objects(self._container, prefix=prefix or None):
            if not obj.name.startswith(prefix):
                continue
            files.append(self._to_metadata(obj))
            if len(files) >= max_keys:
                break
        return files

    # ============ Operations ============

    async def is_available(self) -> bool:
        """Look up the container."""
        await asyncio.to_thread(self._driver.get_container, self.container_name)
        return True

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
    ) -> ObjectMetadata:
        """Upload a file."""
        options = options or UploadOptions()
        self.validate_upload(key, data)
        content = await self.read_payload(data)
        content_type = options.content_type or guess_content_type(key)

        async with self._translate_errors("upload", key):
            obj = await asyncio.to_thread(
                self._sync_upload, key, content, content_type, options.metadata, options.public
            )

        self._log.info("File uploaded", key=key, size=len(content))
        return ObjectMetadata(
            key=key,
            size=len(content),
            mime_type=content_type,
            last_modified=utc_now(),
            etag=(getattr(obj, "hash", None) or "").strip('"') or hashlib.md5(content).hexdigest(),
            url=self._url_or_none(key),
            metadata=options.metadata,
        )

    async def download(self, key: str, options: DownloadOptions | None = None) -> bytes:
        """Download file contents. Response overrides are not supported by Libcloud."""
        validate_key(key)

        async with self._translate_errors("download", key):
            return await asyncio.to_thread(self._sync_download, key)

    async def get_stream(self, key: str) -> ObjectStream:
        """Stream file contents, pulling each chunk from the driver in a thread."""
        validate_key(key)

        async with self._translate_errors("stream", key):
            iterator = await asyncio.to_thread(self._sync_open_stream, key)

        async def chunks() -> AsyncIterator[bytes]:
            while (chunk := await asyncio.to_thread(next, iterator, None)) is not None:
                yield chunk

        async def close() -> None:
            close_iterator = getattr(iterator, "close", None)
            if close_iterator is not None:
                await asyncio.to_thread(close_iterator)

        return ObjectStream(chunks(), close=close)

    async def get_metadata(self, key: str) -> ObjectMetadata:
        """Get file metadata without downloading."""
        validate_key(key)

        async with self._translate_errors("get metadata for", key):
            obj = await asyncio.to_thread(self._sync_get_object, key)
        return self._to_metadata(obj)

    async def delete(self, key: str) -> None:
        """Delete a file. Raises ObjectNotFoundError for a missing key."""
        validate_key(key)

        async with self._translate_errors("delete", key):
            await asyncio.to_thread(self._sync_delete, key)

        self._log.info("File deleted", key=key)

    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        validate_key(key)

        async with self._translate_errors("check", key):
            return await asyncio.to_thread(self._sync_exists, key)

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """
        Signed URL from the driver where supported, else the public URL.

        Libcloud drivers apply their own expiry; ``expires_in`` is not forwarded.
        """
        validate_key(key)

        async with self._translate_errors("sign URL for", key):
            return await asyncio.to_thread(self._sync_signed_url, key)

    def _public_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"

        if self.driver_name == "GOOGLE_STORAGE":
            return f"{GCS_PUBLIC_HOST}/{self.container_name}/{key}"

        if self._host:
            scheme = "https" if self._secure else "http"
            port = f":{self._port}" if self._port else ""
            return f"{scheme}://{self._host}{port}/{self.container_name}/{key}"

        raise ProviderConfigError(
            f"Provider '{self.name}' needs public_url to build public URLs"
        )

    def _url_or_none(self, key: str) -> Optional[str]:
        try:
            return self._public_url(key)
        except ProviderConfigError:
            return None

    async def get_public_url(self, key: str) -> str:
        """Get public URL for a file. No network I/O."""
        validate_key(key)
        return self._public_url(key)

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List files with prefix."""
        if max_keys <= 0:
            return []

        async with self._translate_errors("list", prefix or "root"):
            files = await asyncio.to_thread(self._sync_list, prefix, max_keys)

        self._log.debug("Listed files", prefix=prefix or "root", count=len(files))
        return files

    async def _perform_initialization(self) -> None:
        await asyncio.to_thread(self._sync_connect)
        self._log.info(
            "Cloud storage ready",
            driver=self.driver_name,
            container=self.container_name,
        )

    async def _perform_cleanup(self) -> None:
        self._container = None
