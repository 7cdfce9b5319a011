"""
Provider registry for pluggable storage backends.
"""
from __future__ import annotations

from typing import Any, Callable, Generic, Mapping, TypeVar
from dataclasses import dataclass
import logging

from filestore.core.exceptions import ProviderConfigError
from filestore.core.interfaces.storage import ProviderConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

# A validator returns the list of problems with a backend config (empty = valid)
ConfigValidator = Callable[[Mapping[str, Any]], list[str]]


@dataclass
class RegisteredProvider(Generic[T]):
    """Internal registration data."""
    name: str
    factory: Callable[..., T]
    validator: ConfigValidator | None = None


def require_fields(*fields: str) -> ConfigValidator:
    """Build a validator that requires non-empty string values for ``fields``."""

    def validate(config: Mapping[str, Any]) -> list[str]:
        problems = []
        for name in fields:
            value = config.get(name)
            if not isinstance(value, str) or not value.strip():
                problems.append(f"missing required field '{name}'")
        return problems

    return validate


class ProviderRegistry(Generic[T]):
    """
    Registry mapping provider-type names to constructors.

    Example usage:
    ```python
    registry = ProviderRegistry[StorageProvider]("storage")

    registry.register("local", create_local, validator=require_fields("base_path"))
    registry.register("s3", create_s3, validator=require_fields("bucket", "region"))

    provider = registry.create(ProviderConfig(provider="local", config={"base_path": "./uploads"}))
    ```
    """

    def __init__(self, name: str):
        self.name = name
        self._providers: dict[str, RegisteredProvider[T]] = {}
        self._default: str | None = None

    def register(
        self,
        name: str,
        factory: Callable[..., T],
        *,
        validator: ConfigValidator | None = None,
        default: bool = False,
    ) -> None:
        """
        Register a provider implementation.

        Args:
            name: Provider type, matched case-insensitively against ProviderConfig.provider
            factory: Callable taking the instance name and backend config as keyword arguments
            validator: Optional config validator run before the factory
            default: Set as default implementation
        """
        key = name.lower()
        if key in self._providers:
            logger.warning(f"Overwriting existing {self.name} provider: {key}")

        self._providers[key] = RegisteredProvider(
            name=key,
            factory=factory,
            validator=validator,
        )

        if default or self._default is None:
            self._default = key

        logger.info(f"Registered {self.name} provider: {key}")

    def unregister(self, name: str) -> bool:
        """Unregister a provider type."""
        key = name.lower()
        if key in self._providers:
            del self._providers[key]
            if key == self._default:
                self._default = next(iter(self._providers), None)
            return True
        return False

    def validate(self, config: ProviderConfig) -> list[str]:
        """Return the problems with ``config``; an empty list means it can be built."""
        registered = self._providers.get(config.provider.lower())
        if registered is None:
            available = ", ".join(self._providers) or "none"
            return [f"unknown {self.name} provider '{config.provider}' (available: {available})"]

        if registered.validator is None:
            return []

        try:
            return registered.validator(config.config or {})
        except Exception as e:
            return [f"config validation failed: {e}"]

    def create(self, config: ProviderConfig) -> T:
        """
        Build a provider instance from its config.

        Raises:
            ProviderConfigError: If the provider type is unknown or the config is invalid
        """
        problems = self.validate(config)
        if problems:
            raise ProviderConfigError(
                f"Invalid configuration for {self.name} provider "
                f"'{config.provider_name}': {'; '.join(problems)}"
            )

        registered = self._providers[config.provider.lower()]
        return registered.factory(name=config.provider_name, **(config.config or {}))

    def list(self) -> list[str]:
        """List all registered provider names."""
        return list(self._providers.keys())

    def has(self, name: str) -> bool:
        """Check if provider type is registered."""
        return name.lower() in self._providers

    def clear(self) -> None:
        """Remove every registration (for testing)."""
        self._providers.clear()
        self._default = None

    @property
    def default(self) -> str | None:
        """Get default provider name."""
        return self._default

    @default.setter
    def default(self, name: str) -> None:
        """Set default provider."""
        key = name.lower()
        if key not in self._providers:
            raise ValueError(f"Unknown {self.name} provider: {name}")
        self._default = key


# Global registry for storage providers
storage_providers = ProviderRegistry[Any]("storage")
