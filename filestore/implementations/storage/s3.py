"""
S3-compatible storage provider implementation.

Works with:
- AWS S3
- MinIO
- DigitalOcean Spaces
- Cloudflare R2
- Any S3-compatible storage
"""

from __future__ import annotations

import hashlib
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Iterable, Optional

from botocore.config import Config
from botocore.exceptions import ClientError

from filestore.core.exceptions import BackendError, ObjectNotFoundError, StorageError
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

NOT_FOUND_CODES = {"NoSuchKey", "NotFound", "404"}

# list_objects_v2 never returns more than this per call
S3_PAGE_SIZE = 1000


def _is_not_found(error: ClientError) -> bool:
    code = error.response.get("Error", {}).get("Code")
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    return code in NOT_FOUND_CODES or status == 404


class S3StorageProvider(BaseStorageProvider):
    """
    S3-compatible storage provider.

    One client is opened in ``initialize()`` and kept until ``cleanup()``.

    Usage:
        # AWS S3
        storage = S3StorageProvider(
            bucket="my-bucket",
            region="us-east-1",
            access_key="AKIA...",
            secret_key="...",
        )

        # MinIO
        storage = S3StorageProvider(
            bucket="my-bucket",
            endpoint_url="http://localhost:9000",
            access_key="minioadmin",
            secret_key="minioadmin",
            force_path_style=True,
        )

        await storage.initialize()
        meta = await storage.upload("users/123/avatar.jpg", image_bytes)
        url = await storage.get_signed_url("users/123/avatar.jpg", expires_in=600)
    """

    def __init__(
        self,
        bucket: str,
        name: str = "s3",
        region: str = "us-east-1",
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        force_path_style: bool = False,
        use_ssl: bool = True,
        public_url: Optional[str] = None,
        chunk_size: int = 8192,
        max_file_size: Optional[int] = None,
        allowed_extensions: Optional[Iterable[str]] = None,
        client: Any = None,
    ):
        """
        Initialize S3 storage provider.

        Args:
            bucket: S3 bucket name
            name: Provider instance name
            region: AWS region (default: us-east-1)
            access_key: AWS access key ID (or MinIO access key)
            secret_key: AWS secret access key (or MinIO secret key)
            endpoint_url: Custom endpoint for MinIO/compatible services
            force_path_style: Use path-style addressing (MinIO)
            use_ssl: Use HTTPS (default: True)
            public_url: Public URL prefix for generating public URLs
            chunk_size: Chunk size for streaming
            max_file_size: Upload size limit in bytes
            allowed_extensions: Permitted key extensions (all when empty)
            client: Pre-built S3 client; used as-is and never closed here
        """
        super().__init__(name, max_file_size=max_file_size, allowed_extensions=allowed_extensions)
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        self.public_url = public_url.rstrip("/") if public_url else None
        self.chunk_size = chunk_size
        self._force_path_style = force_path_style
        self._use_ssl = use_ssl
        self._client = client
        self._exit_stack: AsyncExitStack | None = None

        # Import here to avoid requiring aioboto3 if not using S3
        try:
            import aioboto3
        except ImportError:
            raise ImportError(
                "aioboto3 is required for S3 storage. "
                "Install with: pip install aioboto3"
            )

        self._session = aioboto3.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def _get_client_config(self) -> dict:
        """Get configuration for S3 client."""
        config: dict[str, Any] = {}
        if self.endpoint_url:
            config["endpoint_url"] = self.endpoint_url
        if not self._use_ssl:
            config["use_ssl"] = False
        if self._force_path_style:
            config["config"] = Config(s3={"addressing_style": "path"})
        return config

    @property
    def client(self) -> Any:
        if self._client is None:
            raise BackendError("S3 client is not initialized", provider=self.name)
        return self._client

    def _translate_exception(self, exc: Exception, key: str) -> StorageError:
        if isinstance(exc, ClientError) and _is_not_found(exc):
            return ObjectNotFoundError(key, self.name)
        return super()._translate_exception(exc, key)

    async def is_available(self) -> bool:
        """List a single object to prove credentials and bucket are usable."""
        await self.client.list_objects_v2(Bucket=self.bucket, MaxKeys=1)
        return True

    async def upload(
        self,
        key: str,
        data: UploadData,
        options: UploadOptions | None = None,
    ) -> ObjectMetadata:
        """Upload a file to S3."""
        options = options or UploadOptions()
        self.validate_upload(key, data)
        content = await self.read_payload(data)
        content_type = options.content_type or guess_content_type(key)

        params: dict[str, Any] = {
            "Bucket": self.bucket,
            "Key": key,
            "Body": content,
            "ContentType": content_type,
        }
        if options.metadata:
            params["Metadata"] = options.metadata
        if options.public:
            params["ACL"] = "public-read"

        async with self._translate_errors("upload", key):
            response = await self.client.put_object(**params)

        etag = (response or {}).get("ETag", "").strip('"') or hashlib.md5(content).hexdigest()
        self._log.info("File uploaded", key=key, size=len(content))

        return ObjectMetadata(
            key=key,
            size=len(content),
            mime_type=content_type,
            last_modified=utc_now(),
            etag=etag,
            url=await self.get_public_url(key),
            metadata=options.metadata,
        )

    async def download(self, key: str, options: DownloadOptions | None = None) -> bytes:
        """Download file contents."""
        validate_key(key)
        params: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if options and options.response_content_type:
            params["ResponseContentType"] = options.response_content_type
        if options and options.response_content_disposition:
            params["ResponseContentDisposition"] = options.response_content_disposition

        async with self._translate_errors("download", key):
            response = await self.client.get_object(**params)
            async with response["Body"] as stream:
                return await stream.read()

    async def get_stream(self, key: str) -> ObjectStream:
        """Open the object body and stream it in ``chunk_size`` pieces."""
        validate_key(key)

        async with self._translate_errors("stream", key):
            response = await self.client.get_object(Bucket=self.bucket, Key=key)
        body = response["Body"]

        async def chunks() -> AsyncIterator[bytes]:
            while chunk := await body.read(self.chunk_size):
                yield chunk

        async def close() -> None:
            body.close()

        return ObjectStream(chunks(), close=close)

    async def get_metadata(self, key: str) -> ObjectMetadata:
        """Get file metadata without downloading."""
        validate_key(key)

        async with self._translate_errors("get metadata for", key):
            response = await self.client.head_object(Bucket=self.bucket, Key=key)

        return ObjectMetadata(
            key=key,
            size=response.get("ContentLength", 0),
            mime_type=response.get("ContentType") or guess_content_type(key),
            last_modified=to_utc(response.get("LastModified")),
            etag=response.get("ETag", "").strip('"') or None,
            url=await self.get_public_url(key),
            metadata=response.get("Metadata") or None,
        )

    async def delete(self, key: str) -> None:
        """Delete a file. S3 reports success for missing keys."""
        validate_key(key)

        async with self._translate_errors("delete", key):
            await self.client.delete_object(Bucket=self.bucket, Key=key)

        self._log.info("File deleted", key=key)

    async def exists(self, key: str) -> bool:
        """Check if file exists."""
        validate_key(key)

        try:
            await self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _is_not_found(e):
                return False
            raise self._translate_exception(e, key) from e

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Generate a presigned GET URL."""
        validate_key(key)

        async with self._translate_errors("sign URL for", key):
            return await self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in,
            )

    async def get_public_url(self, key: str) -> str:
        """
        Get public URL for a file.

        Only works if bucket/object has public read access.
        """
        validate_key(key)
        return self._public_url(key)

    def _public_url(self, key: str) -> str:
        if self.public_url:
            return f"{self.public_url}/{key}"

        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"

        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    async def copy(self, source_key: str, destination_key: str) -> ObjectMetadata:
        """Server-side copy within the bucket."""
        validate_key(source_key)
        validate_key(destination_key)

        async with self._translate_errors("copy", source_key):
            await self.client.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": source_key},
                Key=destination_key,
            )

        self._log.info("File copied", source=source_key, destination=destination_key)
        return await self.get_metadata(destination_key)

    async def list(self, prefix: str = "", max_keys: int = 1000) -> list[ObjectMetadata]:
        """List files with prefix, following continuation tokens up to ``max_keys``."""
        files: list[ObjectMetadata] = []
        token = None

        async with self._translate_errors("list", prefix or "root"):
            while len(files) < max_keys:
                kwargs: dict[str, Any] = {
                    "Bucket": self.bucket,
                    "MaxKeys": min(max_keys - len(files), S3_PAGE_SIZE),
                }
                if prefix:
                    kwargs["Prefix"] = prefix
                if token:
                    kwargs["ContinuationToken"] = token

                response = await self.client.list_objects_v2(**kwargs)

                for obj in response.get("Contents", []):
                    files.append(ObjectMetadata(
                        key=obj["Key"],
                        size=obj.get("Size", 0),
                        mime_type=guess_content_type(obj["Key"]),
                        last_modified=to_utc(obj.get("LastModified")),
                        etag=obj.get("ETag", "").strip('"') or None,
                        url=self._public_url(obj["Key"]),
                    ))

                token = response.get("NextContinuationToken")
                if not response.get("IsTruncated") or not token:
                    break

        self._log.debug("Listed files", prefix=prefix or "root", count=len(files))
        return files[:max_keys]

    async def _perform_initialization(self) -> None:
        if self._client is not None:
            return

        self._exit_stack = AsyncExitStack()
        self._client = await self._exit_stack.enter_async_context(
            self._session.client("s3", **self._get_client_config())
        )
        self._log.info("S3 client opened", bucket=self.bucket, endpoint=self.endpoint_url)

    async def _perform_cleanup(self) -> None:
        if self._exit_stack is None:
            return

        stack, self._exit_stack = self._exit_stack, None
        self._client = None
        await stack.aclose()
