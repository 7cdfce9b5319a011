"""
Local filesystem storage provider implementation.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import os
import shutil
import stat as stat_module
import uuid
from pathlib import Path
from typing import AsyncIterator, Iterable

import aiofiles
import aiofiles.os

from filestore.core.exceptions import (
    InvalidKeyError,
    InvalidPayloadError,
    ObjectNotFoundError,
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
from filestore.utils.timezone import from_timestamp

META_SUFFIX = ".meta"
TMP_SUFFIX = ".tmp"


class LocalStorageProvider(BaseStorageProvider):
    """
    Local filesystem storage provider.

    Keys are mirrored as relative paths under ``base_path``; intermediate
    directories are created on upload. Content type and custom metadata are
    kept in a ``<file>.meta`` JSON sidecar.

    Usage:
        storage = LocalStorageProvider(base_path="./uploads")
        await storage.initialize()

        # Upload
        meta = await storage.upload("users/123/avatar.jpg", image_bytes)

        # Download
        data = await storage.download("users/123/avatar.jpg")

        # Stream large files
        async with await storage.get_stream("large-file.zip") as stream:
            async for chunk in stream:
                ...
    """

    def __init__(
        self,
        name: str = "local",
        base_path: str = "./uploads",
        public_url: str | None = None,
        chunk_size: int = 8192,
        max_file_size: int | None = None,
        allowed_extensions: Iterable[str] | None = None,
    ):
        """
        Initialize local storage provider.

        Args:
            name: Provider instance name
            base_path: Directory to store files
            public_url: Base URL for public links (e.g., "https://cdn.example.com/files");
                ``file://`` URLs are used when unset
            chunk_size: Chunk size for streaming
            max_file_size: Upload size limit in bytes
            allowed_extensions: Permitted key extensions (all when empty)
        """
        super().__init__(name, max_file_size=max_file_size, allowed_extensions=allowed_extensions)
        self.base_path = Path(base_path).expanduser().resolve()
        self.public_url = public_url.rstrip("/") if public_url else None
        self.chunk_size = chunk_size

    # ============ Paths ============

    def _full_path(self, key: str) -> Path:
        """Get full filesystem path for key, refusing paths outside ``base_path``."""
        validate_key(key)
        return self._resolve(key)

    def _resolve(self, relative: str) -> Path:
        full_path = Path(os.path.normpath(self.base_path / relative))
        if full_path != self.base_path and self.base_path not in full_path.parents:
            raise InvalidKeyError(f"File key escapes the storage root: {relative}")
        return full_path

    @staticmethod
    def _meta_path(full_path: Path) -> Path:
        return full_path.with_name(full_path.name + META_SUFFIX)

    @staticmethod
    def _is_internal(filename: str) -> bool:
        """Sidecars and in-flight temp files are not objects."""
        return filename.endswith(META_SUFFIX) or (
            filename.startswith(".") and filename.endswith(TMP_SUFFIX)
        )

    def _url_for(self, key: str, full_path: Path) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"
        return full_path.as_uri()

    def _translate_exception(self, exc: Exception, key: str) -> StorageError:
        if isinstance(exc, (FileNotFoundError, IsADirectoryError, NotADirectoryError)):
            return ObjectNotFoundError(key, self.name)
        return super()._translate_exception(exc, key)

    # ============ Sidecar metadata ============

    async def _read_sidecar(self, full_path: Path) -> dict:
        meta_path = self._meta_path(full_path)
        if not await aiofiles.os.path.exists(meta_path):
            return {}

        async with aiofiles.open(meta_path, "r") as f:
            content = await f.read()
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            self._log.warning("Ignoring corrupt metadata sidecar", path=str(meta_path))
            return {}

    async def _write_sidecar(
        self,
        full_path: Path,
        content_type: str | None,
        metadata: dict[str, str] | None,
    ) -> None:
        meta_path = self._meta_path(full_path)
        if not content_type and not metadata:
            if await aiofiles.os.path.exists(meta_path):
                await aiofiles.os.remove(meta_path)
            return

        async with aiofiles.open(meta_path, "w") as f:
            await f.write(json.dumps({"content_type": content_type, "metadata": metadata}))

    async def _build_metadata(self, key: str, full_path: Path) -> ObjectMetadata:
        stat = await aiofiles.os.stat(full_path)
        if not stat_module.S_ISREG(stat.st_mode):
            raise ObjectNotFoundError(key, self.name)

        sidecar = await self._read_sidecar(full_path)
        return ObjectMetadata(
            key=key,
            size=stat.st_size,
            mime_type=sidecar.get("content_type") or guess_content_type(key),
            last_modified=from_timestamp(stat.st_mtime),
            url=self._url_for(key, full_path),
            metadata=sidecar.get("metadata"),
        )

    # ============ Operations ============

    async def is_available(self) -> bool:
        """Base directory exists and is writable."""
        if not await aiofiles.os.path.isdir(self.base_path):
            return False
        return await aiofiles.os.access(self.base_path, os.W_OK)

    async def _iter_chunks(self, data: UploadData) -> AsyncIterator[bytes]:
        if isinstance(data, (bytes, bytearray, memoryview)):
            yield bytes(data)
        elif hasattr(data, "__aiter__"):
            async for chunk in data:
                if not isinstance(chunk, (bytes, bytearray, memoryview)):
                    raise InvalidPayloadError("Stream chunks must be bytes")
                yield bytes(chunk)
        else:
            while chunk := await asyncio.to_thread(data.read, self.chunk_size):
                if isinstance(chunk, str):
                    raise InvalidPayloadError("File object must be opened in binary mode")
                yield chunk

    async def _write_file(self, path: Path, data: UploadData) -> tuple[int, str]:
        """Write payload to ``path``; returns (size, md5 hex digest)."""
        digest = hashlib.md5()
        size = 0

        async with aiofiles.open(path, "wb") as f:
            async for chunk in self._iter_chunks(data):
                size += len(chunk)
                self.check_size(size)
                digest.update(chunk)
                await f.write(chunk)

        return size, digest.hexdigest()

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
    ) -> ObjectMetadata:
        """Upload a file. Written to a temp file and renamed into place."""
        options = options or UploadOptions()
        self.validate_upload(key, data)
        full_path = self._full_path(key)
        content_type = options.content_type or guess_content_type(key)

        async with self._translate_errors("upload", key):
            await aiofiles.os.makedirs(full_path.parent, exist_ok=True)

            tmp_path = full_path.with_name(f".{full_path.name}.{uuid.uuid4().hex}{TMP_SUFFIX}")
            try:
                size, etag = await self._write_file(tmp_path, data)
                await aiofiles.os.replace(tmp_path, full_path)
            except BaseException:
                if await aiofiles.os.path.exists(tmp_path):
                    await aiofiles.os.remove(tmp_path)
                raise

            await self._write_sidecar(full_path, options.content_type, options.metadata)
            stat = await aiofiles.os.stat(full_path)

        self._log.info("File uploaded", key=key, size=size)
        return ObjectMetadata(
            key=key,
            size=size,
            mime_type=content_type,
            last_modified=from_timestamp(stat.st_mtime),
            etag=etag,
            url=self._url_for(key, full_path),
            metadata=options.metadata,
        )

    async def download(self, key: str, options: DownloadOptions | None = None) -> bytes:
        """Download file contents. Response overrides do not apply to local files."""
        full_path = self._full_path(key)

        async with self._translate_errors("download", key):
            async with aiofiles.open(full_path, "rb") as f:
                return await f.read()

    async def get_stream(self, key: str) -> ObjectStream:
        """Open the file and stream it in ``chunk_size`` pieces."""
        full_path = self._full_path(key)

        async with self._translate_errors("stream", key):
            handle = await aiofiles.open(full_path, "rb")

        async def chunks() -> AsyncIterator[bytes]:
            while chunk := await handle.read(self.chunk_size):
                yield chunk

        return ObjectStream(chunks(), close=handle.close)

    async def get_metadata(self, key: str) -> ObjectMetadata:
        """Get file metadata without reading the file."""
        full_path = self._full_path(key)

        async with self._translate_errors("get metadata for", key):
            return await self._build_metadata(key, full_path)

    async def delete(self, key: str) -> None:
        """Delete a file. Raises ObjectNotFoundError for a missing key."""
        full_path = self._full_path(key)

        async with self._translate_errors("delete", key):
            if await aiofiles.os.path.isdir(full_path):
                raise ObjectNotFoundError(key, self.name)
            await aiofiles.os.remove(full_path)

            meta_path = self._meta_path(full_path)
            if await aiofiles.os.path.exists(meta_path):
                await aiofiles.os.remove(meta_path)

        self._log.info("File deleted", key=key)

    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        full_path = self._full_path(key)
        return await aiofiles.os.path.isfile(full_path)

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """
        Local storage has no signed URLs; the public URL is returned instead.
        """
        return await self.get_public_url(key)

    async def get_public_url(self, key: str) -> str:
        """Public URL if configured, otherwise a file:// URL."""
        return self._url_for(key, self._full_path(key))

    async def copy(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """Copy file (and its sidecar) to a new location."""
        source_path = self._full_path(source_key)
        dest_path = self._full_path(destination_key)

        async with self._translate_errors("copy", source_key):
            if not await aiofiles.os.path.isfile(source_path):
                raise ObjectNotFoundError(source_key, self.name)

            await aiofiles.os.makedirs(dest_path.parent, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source_path, dest_path)

            source_meta = self._meta_path(source_path)
            dest_meta = self._meta_path(dest_path)
            if await aiofiles.os.path.exists(source_meta):
                await asyncio.to_thread(shutil.copy2, source_meta, dest_meta)
            elif await aiofiles.os.path.exists(dest_meta):
                await aiofiles.os.remove(dest_meta)

            result = await self._build_metadata(destination_key, dest_path)

        self._log.info("File copied", source=source_key, destination=destination_key)
        return result

    def _scan(self, prefix: str) -> list[tuple[str, Path]]:
        """Collect (key, path) for every stored file whose key starts with ``prefix``."""
        head = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = self._resolve(head) if head else self.base_path
        if not start.is_dir():
            return []

        found = []
        for root, _, filenames in os.walk(start):
            for filename in filenames:
                if self._is_internal(filename):
                    continue
                full_path = Path(root) / filename
                key = full_path.relative_to(self.base_path).as_posix()
                if key.startswith(prefix):
                    found.append((key, full_path))

        found.sort(key=lambda item: item[0])
        return found

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List files whose key starts with ``prefix``, in key order."""
        if max_keys <= 0:
            return []

        async with self._translate_errors("list", prefix or "root"):
            entries = await asyncio.to_thread(self._scan, prefix)

            files = []
            for key, full_path in entries[:max_keys]:
                try:
                    files.append(await self._build_metadata(key, full_path))
                except FileNotFoundError:
                    # Deleted between scan and stat
                    continue

        self._log.debug("Listed files", prefix=prefix or "root", count=len(files))
        return files

    async def _perform_initialization(self) -> None:
        await aiofiles.os.makedirs(self.base_path, exist_ok=True)
        self._log.info("Local storage ready", base_path=str(self.base_path))

    async def _perform_cleanup(self) -> None:
        # Nothing is held open between operations
        return None
