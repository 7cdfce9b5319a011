"""
File key helpers.

Usage:
    from filestore.utils.storage import generate_file_key

    key = generate_file_key("Quarterly Report.PDF", prefix="documents")
    # "documents/1b9d6bcd-bbfd-4b2d-9b5d-ab8dfbbd4bed.pdf"
    meta = await storage.upload(key, data)
"""

from __future__ import annotations

import re
import uuid
from pathlib import Path


def sanitize_filename(filename: str) -> str:
    """
    Sanitize a filename for safe storage.

    - Removes path components
    - Replaces spaces and special characters with underscores
    - Lowercases extension
    """
    # Get just the filename, no path
    filename = Path(filename.replace("\\", "/")).name

    name, ext = Path(filename).stem, Path(filename).suffix

    # Keep alphanumeric, underscore, hyphen
    name = re.sub(r"[^\w\-]", "_", name)
    name = re.sub(r"_+", "_", name)
    name = name.strip("_")[:100]

    ext = re.sub(r"[^\w.]", "", ext.lower())

    return f"{name}{ext}" if name else f"file{ext}"


def generate_file_key(filename: str, prefix: str = "uploads") -> str:
    """
    Generate a unique storage key that keeps the original extension.

    Returns:
        Storage key like "uploads/<uuid4>.pdf"
    """
    ext = Path(sanitize_filename(filename)).suffix
    key = f"{uuid.uuid4()}{ext}"

    prefix = prefix.strip("/")
    return f"{prefix}/{key}" if prefix else key
