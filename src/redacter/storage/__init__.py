"""Storage providers behind one list/read/write contract."""

from __future__ import annotations

from typing import Optional

from ..errors import ConfigurationError
from ..models import StorageLocation
from ..settings import Settings, get_settings
from .base import BufferedSink, StorageProvider, WriteSink, guess_media_type
from .local import LocalStorage


def open_storage(uri: str, settings: Optional[Settings] = None) -> StorageProvider:
    """Open the provider for ``uri``; cloud SDKs are imported on first use."""
    settings = settings or get_settings()
    location = StorageLocation.parse(uri)
    if location.scheme == "file":
        return LocalStorage(location)
    if location.scheme == "s3":
        from .s3 import S3Storage

        return S3Storage(location, region=settings.aws_region)
    if location.scheme == "gs":
        from .gcs import GcsStorage

        return GcsStorage(location, project=settings.gcp_project_id)
    if location.scheme == "zip":
        from .zip import ZipStorage

        return ZipStorage(location)
    if location.scheme == "clipboard":
        from .clipboard import ClipboardStorage

        return ClipboardStorage(location)
    raise ConfigurationError(f"Unknown file system is specified: {uri}")


__all__ = [
    "open_storage",
    "StorageProvider",
    "WriteSink",
    "BufferedSink",
    "LocalStorage",
    "guess_media_type",
]
