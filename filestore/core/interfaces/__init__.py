"""
Core interfaces (protocols) for storage providers.
All providers must implement these protocols to be swappable.
"""

from .storage import (
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

__all__ = [
    "DownloadOptions",
    "HealthState",
    "ObjectMetadata",
    "ObjectStream",
    "OperationResult",
    "ProviderConfig",
    "ProviderHealthStatus",
    "StorageProvider",
    "StorageStrategy",
    "UploadData",
    "UploadOptions",
]
