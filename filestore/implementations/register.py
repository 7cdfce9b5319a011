"""
Register all storage provider implementations with the provider registry.

Import this module in app startup to register all implementations.
"""

from typing import Any, Mapping

from filestore.core.plugins.registry import require_fields, storage_providers


def _limits(config: Mapping[str, Any]) -> dict[str, Any]:
    """Upload guards shared by every provider type."""
    return {
        "max_file_size": config.get("max_file_size"),
        "allowed_extensions": config.get("allowed_extensions"),
    }


def validate_gcs_config(config: Mapping[str, Any]) -> list[str]:
    """GCS needs a bucket, a project and either a key file or inline credentials."""
    problems = require_fields("bucket", "project_id")(config)

    credentials = config.get("credentials") or {}
    has_inline = bool(credentials.get("client_email") and credentials.get("private_key"))
    if not config.get("key_filename") and not has_inline:
        problems.append("missing credentials: set 'key_filename' or 'credentials'")

    return problems


def register_providers() -> None:
    """Register all storage provider implementations."""

    def create_local_storage(name: str = "local", **config):
        from filestore.implementations.storage.local import LocalStorageProvider
        return LocalStorageProvider(
            name=name,
            base_path=config.get("base_path", "./uploads"),
            public_url=config.get("public_url"),
            chunk_size=config.get("chunk_size", 8192),
            **_limits(config),
        )

    def create_s3_storage(name: str = "s3", **config):
        from filestore.implementations.storage.s3 import S3StorageProvider
        return S3StorageProvider(
            name=name,
            bucket=config["bucket"],
            region=config.get("region", "us-east-1"),
            access_key=config.get("access_key_id"),
            secret_key=config.get("secret_access_key"),
            endpoint_url=config.get("endpoint"),
            force_path_style=config.get("force_path_style", False),
            use_ssl=config.get("use_ssl", True),
            public_url=config.get("public_url"),
            **_limits(config),
        )

    def create_gcs_storage(name: str = "gcs", **config):
        from filestore.implementations.storage.cloud import CloudStorageProvider
        credentials = config.get("credentials") or {}
        return CloudStorageProvider(
            name=name,
            driver="google_storage",
            container=config["bucket"],
            key=credentials.get("client_email", ""),
            secret=config.get("key_filename") or credentials.get("private_key", ""),
            project=config["project_id"],
            public_url=config.get("public_url"),
            **_limits(config),
        )

    def create_cloud_storage(name: str = "cloud", **config):
        from filestore.implementations.storage.cloud import CloudStorageProvider
        return CloudStorageProvider(
            name=name,
            driver=config["driver"],
            container=config["container"],
            key=config["key"],
            secret=config["secret"],
            region=config.get("region"),
            project=config.get("project"),
            host=config.get("host"),
            port=config.get("port"),
            secure=config.get("secure", True),
            public_url=config.get("public_url"),
            **_limits(config),
        )

    storage_providers.register(
        "local",
        create_local_storage,
        validator=require_fields("base_path"),
        default=True,
    )
    storage_providers.register(
        "s3",
        create_s3_storage,
        validator=require_fields("bucket", "region", "access_key_id", "secret_access_key"),
    )
    storage_providers.register("gcs", create_gcs_storage, validator=validate_gcs_config)
    storage_providers.register(
        "cloud",
        create_cloud_storage,
        validator=require_fields("driver", "container", "key", "secret"),
    )
