"""
Storage error taxonomy.

Caller errors (bad key, bad payload, missing object, occupied destination)
are surfaced as-is and never retried. Backend errors are transient and
drive the manager's failover path.
"""

from __future__ import annotations


class StorageError(Exception):
    """Base class for all storage errors."""

    retryable: bool = False


class InvalidKeyError(StorageError, ValueError):
    """Object key failed validation."""


class InvalidPayloadError(StorageError, ValueError):
    """Upload data is missing, of an unsupported type, or too large."""


class ObjectNotFoundError(StorageError, FileNotFoundError):
    """No object is stored under the requested key."""

    def __init__(self, key: str, provider: str | None = None):
        self.key = key
        self.provider = provider
        super().__init__(f"File not found: {key}")


class ObjectAlreadyExistsError(StorageError, FileExistsError):
    """Destination key is already occupied."""

    def __init__(self, key: str, provider: str | None = None):
        self.key = key
        self.provider = provider
        super().__init__(f"File already exists: {key}")


class BackendError(StorageError):
    """Underlying I/O or network failure in a provider."""

    retryable = True

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class ProviderConfigError(StorageError, ValueError):
    """Unknown provider type or invalid provider configuration."""


class NoHealthyProvidersError(StorageError):
    """Every configured provider is currently marked unhealthy."""

    def __init__(self, message: str = "No healthy storage providers available"):
        super().__init__(message)


class NoProvidersAvailableError(StorageError):
    """No provider could be initialized at startup."""

    def __init__(self, message: str = "No storage providers could be initialized"):
        super().__init__(message)


class StorageOperationError(StorageError):
    """An operation failed on every provider it was attempted on."""

    def __init__(
        self,
        operation: str,
        last_error: BaseException | None,
        attempts: int,
    ):
        self.operation = operation
        self.last_error = last_error
        self.attempts = attempts
        detail = str(last_error) if last_error is not None else "unknown error"
        super().__init__(
            f"All storage providers failed for operation {operation}: {detail}"
        )
