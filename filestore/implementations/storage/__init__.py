"""
Storage provider implementations.

Available providers:
- LocalStorageProvider: Local filesystem
- S3StorageProvider: AWS S3 / MinIO (using aioboto3)
- CloudStorageProvider: GCS, Azure and others via Apache Libcloud

Usage:
    # Let the manager build providers from configuration:
    from filestore.core.container import get_storage

    # Or instantiate directly:
    from filestore.implementations.storage import LocalStorageProvider, S3StorageProvider

    storage = LocalStorageProvider(base_path="./uploads")
    storage = S3StorageProvider(bucket="my-bucket", region="us-east-1", ...)
"""

from filestore.implementations.storage.base import BaseStorageProvider
from filestore.implementations.storage.local import LocalStorageProvider
from filestore.implementations.storage.s3 import S3StorageProvider
from filestore.implementations.storage.cloud import CloudStorageProvider

__all__ = [
    "BaseStorageProvider",
    "LocalStorageProvider",
    "S3StorageProvider",
    "CloudStorageProvider",
]
