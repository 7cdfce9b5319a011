"""
Tests for the dependency container lifecycle.
"""

import logging

import pytest

from filestore.core.config import Settings, StorageSettings
from filestore.core.container import Container
from filestore.core.plugins.registry import storage_providers


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        environment="testing",
        storage=StorageSettings(local_path=str(tmp_path / "uploads"), health_check_interval_ms=0),
    )


@pytest.mark.asyncio
async def test_initialize_builds_local_fallback(settings, tmp_path):
    container = Container(settings=settings)

    await container.initialize()
    try:
        assert container.storage.get_available_providers() == ["local"]
        assert (tmp_path / "uploads").is_dir()
    finally:
        await container.shutdown()

    with pytest.raises(RuntimeError):
        container.storage


@pytest.mark.asyncio
async def test_restart_registers_providers_once(settings, caplog):
    """A shutdown followed by initialize reuses the existing registrations."""
    container = Container(settings=settings)
    caplog.set_level(logging.WARNING, logger="filestore.core.plugins.registry")

    await container.initialize()
    registered = storage_providers.list()
    await container.shutdown()
    await container.initialize()
    await container.shutdown()

    assert storage_providers.list() == registered
    assert "Overwriting" not in caplog.text
