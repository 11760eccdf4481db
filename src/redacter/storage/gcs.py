"""Google Cloud Storage provider (``gs://bucket/key``)."""

from __future__ import annotations

import io
import posixpath
from typing import BinaryIO, Iterator, Optional

from google.api_core import exceptions as gexc
from google.auth.exceptions import DefaultCredentialsError, RefreshError
from google.cloud import storage

from ..errors import (
    StorageError,
    StorageFatalError,
    StorageNotFoundError,
    StoragePermissionError,
    StorageTransientError,
)
from ..logging import get_logger
from ..models import Entry, StorageLocation
from .base import BufferedSink, StorageProvider, WriteSink, guess_media_type

logger = get_logger(__name__)


def translate_gcs_error(exc: Exception, what: str) -> StorageError:
    if isinstance(exc, (DefaultCredentialsError, RefreshError, gexc.Unauthorized)):
        return StorageFatalError(f"Google Cloud credentials rejected: {exc}")
    if isinstance(exc, gexc.NotFound):
        return StorageNotFoundError(f"{what}: not found")
    if isinstance(exc, gexc.Forbidden):
        return StoragePermissionError(f"{what}: access denied")
    if isinstance(exc, (gexc.TooManyRequests, gexc.ServerError, gexc.RetryError)):
        return StorageTransientError(f"{what}: {exc}")
    return StorageError(f"{what}: {exc}")


class GcsStorage(StorageProvider):
    def __init__(
        self,
        location: StorageLocation,
        *,
        project: Optional[str] = None,
        client=None,
        page_size: Optional[int] = None,
    ):
        super().__init__(location)
        key = location.key
        self.is_container = key == "" or key.endswith("/")
        if self.is_container:
            self.prefix = key
            self.default_name = None
        else:
            self.prefix = posixpath.dirname(key) + "/" if "/" in key else ""
            self.default_name = posixpath.basename(key)
        self.page_size = page_size
        try:
            self.client = client or storage.Client(project=project)
        except (DefaultCredentialsError, gexc.GoogleAPIError) as exc:
            raise translate_gcs_error(exc, location.uri) from exc
        self.bucket = self.client.bucket(location.bucket)

    def _key(self, relative_path: str) -> str:
        return f"{self.prefix}{relative_path}"

    def _blob_entry(self, blob, rel: str) -> Entry:
        return Entry(
            path=rel,
            location=self.location,
            size=blob.size,
            media_type=blob.content_type or guess_media_type(blob.name),
            modified=blob.updated,
        )

    def list(self, prefix: str = "") -> Iterator[Entry]:
        what = f"gs://{self.location.bucket}/{self.prefix}{prefix}"
        if not self.is_container:
            try:
                blob = self.bucket.get_blob(self._key(self.default_name))
            except (gexc.GoogleAPIError, RefreshError) as exc:
                raise translate_gcs_error(exc, what) from exc
            if blob is None:
                raise StorageNotFoundError(f"{what}: not found")
            yield self._blob_entry(blob, self.default_name)
            return
        logger.info("Listing bucket", extra={"extra": {"location": what}})
        try:
            iterator = self.client.list_blobs(
                self.bucket, prefix=self.prefix + prefix, page_size=self.page_size
            )
            # pages are fetched on demand, so an early stop ends pagination
            for page in iterator.pages:
                for blob in page:
                    if blob.name.endswith("/"):
                        continue
                    yield self._blob_entry(blob, blob.name[len(self.prefix):])
        except (gexc.GoogleAPIError, RefreshError) as exc:
            raise translate_gcs_error(exc, what) from exc

    def open_read(self, entry: Entry) -> BinaryIO:
        key = self._key(entry.path)
        try:
            data = self.bucket.blob(key).download_as_bytes()
        except (gexc.GoogleAPIError, RefreshError) as exc:
            raise translate_gcs_error(exc, f"gs://{self.location.bucket}/{key}") from exc
        return io.BytesIO(data)

    def _upload(self, relative_path: str, data: bytes, media_type: Optional[str]) -> None:
        key = self._key(relative_path)
        try:
            self.bucket.blob(key).upload_from_string(
                data, content_type=media_type or "application/octet-stream"
            )
        except (gexc.GoogleAPIError, RefreshError) as exc:
            raise translate_gcs_error(exc, f"gs://{self.location.bucket}/{key}") from exc

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        return BufferedSink(
            relative_path, media_type or guess_media_type(relative_path), self._upload
        )

    def close(self) -> None:
        close = getattr(self.client, "close", None)
        if callable(close):
            close()


__all__ = ["GcsStorage", "translate_gcs_error"]
