"""
Tests for the provider registry and the built-in registrations.
"""

import pytest

from filestore.core.exceptions import ProviderConfigError
from filestore.core.interfaces.storage import ProviderConfig
from filestore.core.plugins.registry import ProviderRegistry, require_fields, storage_providers
from filestore.implementations import register_providers
from filestore.implementations.register import validate_gcs_config
from filestore.implementations.storage import (
    CloudStorageProvider,
    LocalStorageProvider,
    S3StorageProvider,
)


@pytest.fixture
def builtin_registry():
    storage_providers.clear()
    register_providers()
    yield storage_providers
    storage_providers.clear()


def test_register_and_create():
    registry = ProviderRegistry("test")
    registry.register("Memory", lambda name, **config: (name, config))

    assert registry.has("memory")
    assert registry.list() == ["memory"]
    assert registry.create(ProviderConfig(provider="MEMORY", config={"a": 1})) == ("MEMORY", {"a": 1})
    assert registry.create(ProviderConfig(provider="memory", name="primary")) == ("primary", {})


def test_unknown_provider_type():
    registry = ProviderRegistry("test")
    registry.register("memory", lambda name, **config: name)

    problems = registry.validate(ProviderConfig(provider="tape"))

    assert problems == ["unknown test provider 'tape' (available: memory)"]
    with pytest.raises(ProviderConfigError):
        registry.create(ProviderConfig(provider="tape"))


def test_validator_blocks_invalid_config():
    """The factory is never called when validation finds problems."""
    calls = []
    registry = ProviderRegistry("test")
    registry.register(
        "memory",
        lambda name, **config: calls.append(name),
        validator=require_fields("bucket", "region"),
    )

    with pytest.raises(ProviderConfigError) as exc_info:
        registry.create(ProviderConfig(provider="memory", config={"bucket": "files", "region": " "}))

    assert "missing required field 'region'" in str(exc_info.value)
    assert calls == []


def test_validator_exceptions_become_problems():
    def broken(config):
        raise KeyError("boom")

    registry = ProviderRegistry("test")
    registry.register("memory", lambda name, **config: name, validator=broken)

    problems = registry.validate(ProviderConfig(provider="memory"))

    assert len(problems) == 1
    assert problems[0].startswith("config validation failed")


def test_default_and_unregister():
    registry = ProviderRegistry("test")
    registry.register("a", lambda name, **config: name)
    registry.register("b", lambda name, **config: name, default=True)

    assert registry.default == "b"
    assert registry.unregister("b")
    assert registry.default == "a"
    assert not registry.unregister("b")

    with pytest.raises(ValueError):
        registry.default = "missing"


def test_builtin_provider_types(builtin_registry):
    assert builtin_registry.list() == ["local", "s3", "gcs", "cloud"]
    assert builtin_registry.default == "local"


def test_builtin_local(builtin_registry, tmp_path):
    provider = builtin_registry.create(ProviderConfig(
        provider="local",
        name="disk",
        config={"base_path": str(tmp_path), "max_file_size": 10, "allowed_extensions": ["txt"]},
    ))

    assert isinstance(provider, LocalStorageProvider)
    assert provider.name == "disk"
    assert provider.max_file_size == 10
    assert provider.allowed_extensions == {".txt"}


def test_builtin_s3_requires_credentials(builtin_registry):
    problems = builtin_registry.validate(ProviderConfig(provider="s3", config={"bucket": "files"}))

    assert problems == [
        "missing required field 'region'",
        "missing required field 'access_key_id'",
        "missing required field 'secret_access_key'",
    ]


def test_builtin_s3_maps_config(builtin_registry):
    provider = builtin_registry.create(ProviderConfig(
        provider="s3",
        config={
            "bucket": "files",
            "region": "eu-west-1",
            "access_key_id": "AKIA",
            "secret_access_key": "secret",
            "endpoint": "http://localhost:9000",
            "force_path_style": True,
        },
    ))

    assert isinstance(provider, S3StorageProvider)
    assert provider.name == "s3"
    assert provider.bucket == "files"
    assert provider.endpoint_url == "http://localhost:9000"


@pytest.mark.parametrize(
    ("config", "expected"),
    [
        ({"bucket": "b", "project_id": "p", "key_filename": "/k.json"}, []),
        ({"bucket": "b", "project_id": "p", "credentials": {"client_email": "e", "private_key": "k"}}, []),
        (
            {"bucket": "b", "project_id": "p", "credentials": {"client_email": "e"}},
            ["missing credentials: set 'key_filename' or 'credentials'"],
        ),
        (
            {"key_filename": "/k.json"},
            ["missing required field 'bucket'", "missing required field 'project_id'"],
        ),
    ],
)
def test_gcs_validation(config, expected):
    assert validate_gcs_config(config) == expected


def test_builtin_gcs_builds_libcloud_provider(builtin_registry):
    provider = builtin_registry.create(ProviderConfig(
        provider="gcs",
        config={"bucket": "files", "project_id": "proj", "key_filename": "/secrets/gcs.json"},
    ))

    assert isinstance(provider, CloudStorageProvider)
    assert provider.driver_name == "GOOGLE_STORAGE"
    assert provider.container_name == "files"


def test_builtin_cloud_rejects_unknown_driver(builtin_registry):
    with pytest.raises(ProviderConfigError):
        builtin_registry.create(ProviderConfig(
            provider="cloud",
            config={"driver": "floppy", "container": "c", "key": "k", "secret": "s"},
        ))
