"""
Storage services: health tracking, provider selection, retry and the manager.
"""

from filestore.services.health_registry import HealthRegistry
from filestore.services.retry import RetryPolicy
from filestore.services.selection import ProviderSelector, parse_strategy
from filestore.services.storage_manager import (
    ReplayablePayload,
    StorageManager,
    StorageManagerConfig,
)

__all__ = [
    "HealthRegistry",
    "ProviderSelector",
    "ReplayablePayload",
    "RetryPolicy",
    "StorageManager",
    "StorageManagerConfig",
    "parse_strategy",
]
