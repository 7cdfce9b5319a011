"""
Tests for the provider health registry.
"""

import threading

from filestore.core.interfaces.storage import HealthState, ProviderHealthStatus
from filestore.services.health_registry import HealthRegistry


def test_registered_providers_start_healthy():
    registry = HealthRegistry()
    registry.register("local")

    status = registry.get("local")

    assert registry.is_healthy("local")
    assert status.status == HealthState.HEALTHY
    assert status.last_checked_at is None
    assert "local" in registry
    assert len(registry) == 1


def test_unknown_providers_are_not_healthy():
    assert not HealthRegistry().is_healthy("ghost")
    assert HealthRegistry().get("ghost") is None


def test_mark_unhealthy_and_recover():
    registry = HealthRegistry()
    registry.register("s3")

    registry.mark_unhealthy("s3", "Connection refused", response_time_ms=12.5)
    down = registry.get("s3")
    registry.update(ProviderHealthStatus(provider_name="s3", status=HealthState.HEALTHY))

    assert down.error == "Connection refused"
    assert down.response_time_ms == 12.5
    assert down.last_checked_at is not None
    assert registry.is_healthy("s3")


def test_healthy_keeps_order():
    registry = HealthRegistry()
    for name in ("a", "b", "c", "d"):
        registry.register(name)
    registry.mark_unhealthy("b", "down")

    assert registry.healthy(["d", "c", "b", "a", "unknown"]) == ["d", "c", "a"]


def test_snapshot_and_to_dict():
    registry = HealthRegistry()
    registry.register("a")
    registry.mark_unhealthy("b", "down")

    snapshot = [status.to_dict() for status in registry.snapshot()]

    assert [s["provider"] for s in snapshot] == ["a", "b"]
    assert snapshot[0] == {
        "provider": "a",
        "status": "healthy",
        "response_time_ms": 0.0,
        "last_checked_at": None,
        "error": None,
    }
    assert snapshot[1]["status"] == "unhealthy"

    registry.clear()
    assert len(registry) == 0


def test_concurrent_writers():
    """Each write replaces the whole entry; the final state is one of the writes."""
    registry = HealthRegistry()
    registry.register("p")

    def flap(healthy: bool):
        for _ in range(200):
            if healthy:
                registry.register("p")
            else:
                registry.mark_unhealthy("p", "flap")

    threads = [threading.Thread(target=flap, args=(i % 2 == 0,)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    status = registry.get("p")
    assert len(registry) == 1
    assert (status.status, status.error) in {
        (HealthState.HEALTHY, None),
        (HealthState.UNHEALTHY, "flap"),
    }
