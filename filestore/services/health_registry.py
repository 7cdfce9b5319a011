"""
Health registry: the last known health of every storage provider.

Two writers update it (the periodic probe loop and the manager's failure
path). Each write replaces the whole entry, so readers never see a
half-updated status.
"""

from __future__ import annotations

import threading
from typing import Iterable, Optional

import structlog

from filestore.core.interfaces.storage import HealthState, ProviderHealthStatus
from filestore.utils.timezone import utc_now

logger = structlog.get_logger()


class HealthRegistry:
    """
    Thread-safe map of provider name to ProviderHealthStatus.

    Providers that have never been probed count as healthy.

    Usage:
        registry = HealthRegistry()
        registry.register("local")
        registry.mark_unhealthy("local", "Disk full")
        registry.is_healthy("local")  # False
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._statuses: dict[str, ProviderHealthStatus] = {}

    def register(self, name: str) -> None:
        """Add a provider, assumed healthy until proven otherwise."""
        self.update(ProviderHealthStatus(provider_name=name, status=HealthState.HEALTHY))

    def update(self, status: ProviderHealthStatus) -> None:
        """Replace the entry for ``status.provider_name``. Last write wins."""
        with self._lock:
            previous = self._statuses.get(status.provider_name)
            self._statuses[status.provider_name] = status

        if previous is not None and previous.status != status.status:
            logger.info(
                "Storage provider health changed",
                provider=status.provider_name,
                status=status.status.value,
                error=status.error,
            )

    def mark_unhealthy(self, name: str, error: str, response_time_ms: float = 0.0) -> None:
        self.update(ProviderHealthStatus(
            provider_name=name,
            status=HealthState.UNHEALTHY,
            response_time_ms=response_time_ms,
            last_checked_at=utc_now(),
            error=error,
        ))

    def get(self, name: str) -> Optional[ProviderHealthStatus]:
        with self._lock:
            return self._statuses.get(name)

    def is_healthy(self, name: str) -> bool:
        """Unknown providers are not healthy; registered, never-probed ones are."""
        status = self.get(name)
        return status is not None and status.is_healthy

    def healthy(self, names: Iterable[str]) -> list[str]:
        """Filter ``names`` down to the healthy ones, keeping their order."""
        with self._lock:
            return [
                name for name in names
                if name in self._statuses and self._statuses[name].is_healthy
            ]

    def snapshot(self) -> list[ProviderHealthStatus]:
        """Copy of every entry, in registration order."""
        with self._lock:
            return list(self._statuses.values())

    def clear(self) -> None:
        with self._lock:
            self._statuses.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._statuses)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._statuses
