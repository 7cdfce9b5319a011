"""Utility functions."""

from filestore.utils.logging import configure_logging
from filestore.utils.storage import generate_file_key, sanitize_filename
from filestore.utils.timezone import UTC, from_timestamp, to_utc, utc_now

__all__ = [
    # Logging
    "configure_logging",
    # Keys
    "generate_file_key",
    "sanitize_filename",
    # Time
    "UTC",
    "from_timestamp",
    "to_utc",
    "utc_now",
]
