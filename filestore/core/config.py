"""
Application configuration using Pydantic Settings.
"""

from typing import Any, Optional
from functools import lru_cache
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from filestore.core.interfaces.storage import ProviderConfig, StorageStrategy
from filestore.services.retry import RetryPolicy
from filestore.services.storage_manager import StorageManagerConfig


class ProviderSettings(BaseModel):
    """One entry of STORAGE_PROVIDERS."""

    provider: str = Field(description="Registered provider type: local, s3, gcs, cloud")
    name: Optional[str] = Field(default=None, description="Instance label (defaults to provider)")
    enabled: bool = Field(default=True)
    priority: int = Field(default=0, description="Lower is preferred")
    config: dict[str, Any] = Field(default_factory=dict)

    def to_config(self) -> ProviderConfig:
        return ProviderConfig(
            provider=self.provider,
            name=self.name,
            enabled=self.enabled,
            priority=self.priority,
            config=dict(self.config),
        )


class StorageSettings(BaseSettings):
    """
    Storage configuration.

    Providers are given as a JSON list, e.g.:

        STORAGE_PROVIDERS='[
            {"provider": "s3", "priority": 0, "config": {"bucket": "files", ...}},
            {"provider": "local", "priority": 1, "config": {"base_path": "./uploads"}}
        ]'

    With no providers configured a single local provider is used,
    rooted at STORAGE_LOCAL_PATH.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    providers: list[ProviderSettings] = Field(default_factory=list)
    strategy: StorageStrategy = Field(
        default=StorageStrategy.PRIMARY,
        description="primary, failover, round_robin, load_balance",
    )
    health_check_interval_ms: int = Field(default=30000, ge=0, description="0 disables probing")
    failover_timeout_ms: int = Field(default=5000, ge=0, description="Per-attempt timeout, 0 disables")
    retry_base_delay: float = Field(default=1.0, ge=0, description="Backoff base in seconds")
    max_attempts: int = Field(default=3, ge=1)

    # Fallback local provider
    local_path: str = Field(default="./uploads")
    local_public_url: Optional[str] = Field(default=None)

    @field_validator("strategy", mode="before")
    @classmethod
    def normalize_strategy(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    def provider_configs(self) -> list[ProviderConfig]:
        """Configured providers, or the local fallback when none are given."""
        if self.providers:
            return [p.to_config() for p in self.providers]

        return [
            ProviderConfig(
                provider="local",
                config={
                    "base_path": self.local_path,
                    "public_url": self.local_public_url,
                },
            )
        ]

    def manager_config(self) -> StorageManagerConfig:
        return StorageManagerConfig(
            providers=self.provider_configs(),
            strategy=self.strategy,
            health_check_interval_ms=self.health_check_interval_ms,
            failover_timeout_ms=self.failover_timeout_ms or None,
            retry=RetryPolicy(
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
            ),
        )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Filestore")
    app_version: str = Field(default="0.1.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")

    # Nested settings
    storage: StorageSettings = Field(default_factory=StorageSettings)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"json", "text"}:
            raise ValueError("log_format must be 'json' or 'text'")
        return v

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Shorthand
settings = get_settings()
