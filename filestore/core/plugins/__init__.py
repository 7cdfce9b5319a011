"""
Provider registry for extensibility.
Backends are registered by name and built from configuration at startup.
"""

from .registry import ProviderRegistry, require_fields, storage_providers

__all__ = [
    "ProviderRegistry",
    "require_fields",
    "storage_providers",
]
