"""AWS S3 provider (``s3://bucket/key``) built on boto3."""

from __future__ import annotations

import posixpath
from typing import BinaryIO, Iterator, Optional

import boto3
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)

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

_FATAL_CODES = {
    "NoSuchBucket",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
    "InvalidToken",
}
_TRANSIENT_CODES = {"SlowDown", "Throttling", "ThrottlingException", "RequestTimeout"}


def translate_s3_error(exc: Exception, what: str) -> StorageError:
    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return StorageFatalError(f"AWS credentials are not available: {exc}")
    if isinstance(exc, ClientError):
        err = exc.response.get("Error", {})
        code = str(err.get("Code", ""))
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0
        if code in _FATAL_CODES:
            return StorageFatalError(f"{what}: {code}")
        if code in ("NoSuchKey", "404", "NotFound"):
            return StorageNotFoundError(f"{what}: not found")
        if code in ("AccessDenied", "403") or status == 403:
            return StoragePermissionError(f"{what}: access denied")
        if code in _TRANSIENT_CODES or status >= 500:
            return StorageTransientError(f"{what}: {code or status}")
        return StorageError(f"{what}: {code or exc}")
    if isinstance(exc, BotoConnectionError):
        return StorageTransientError(f"{what}: {exc}")
    return StorageError(f"{what}: {exc}")


class S3Storage(StorageProvider):
    def __init__(self, location: StorageLocation, *, region: Optional[str] = None, client=None):
        super().__init__(location)
        self.bucket = location.bucket or ""
        key = location.key
        self.is_container = key == "" or key.endswith("/")
        if self.is_container:
            self.prefix = key
            self.default_name = None
        else:
            self.prefix = posixpath.dirname(key) + "/" if "/" in key else ""
            self.default_name = posixpath.basename(key)
        self.client = client or boto3.client("s3", region_name=region)

    def _key(self, relative_path: str) -> str:
        return f"{self.prefix}{relative_path}"

    def list(self, prefix: str = "") -> Iterator[Entry]:
        if not self.is_container:
            key = self._key(self.default_name)
            try:
                head = self.client.head_object(Bucket=self.bucket, Key=key)
            except (BotoCoreError, ClientError) as exc:
                raise translate_s3_error(exc, f"s3://{self.bucket}/{key}") from exc
            yield Entry(
                path=self.default_name,
                location=self.location,
                size=head.get("ContentLength"),
                media_type=head.get("ContentType") or guess_media_type(key),
                modified=head.get("LastModified"),
            )
            return
        logger.info(
            "Listing bucket",
            extra={"extra": {"bucket": self.bucket, "prefix": self.prefix + prefix}},
        )
        paginator = self.client.get_paginator("list_objects_v2")
        pages = paginator.paginate(Bucket=self.bucket, Prefix=self.prefix + prefix)
        try:
            for page in pages:
                for item in page.get("Contents", []):
                    name = item["Key"]
                    if name.endswith("/"):
                        continue
                    rel = name[len(self.prefix):]
                    yield Entry(
                        path=rel,
                        location=self.location,
                        size=item.get("Size"),
                        media_type=guess_media_type(name),
                        modified=item.get("LastModified"),
                    )
        except (BotoCoreError, ClientError) as exc:
            raise translate_s3_error(exc, f"s3://{self.bucket}/{self.prefix}") from exc

    def open_read(self, entry: Entry) -> BinaryIO:
        key = self._key(entry.path)
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise translate_s3_error(exc, f"s3://{self.bucket}/{key}") from exc
        return obj["Body"]

    def _put(self, relative_path: str, data: bytes, media_type: Optional[str]) -> None:
        key = self._key(relative_path)
        kwargs = {"Bucket": self.bucket, "Key": key, "Body": data}
        if media_type:
            kwargs["ContentType"] = media_type
        try:
            self.client.put_object(**kwargs)
        except (BotoCoreError, ClientError) as exc:
            raise translate_s3_error(exc, f"s3://{self.bucket}/{key}") from exc

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        return BufferedSink(relative_path, media_type or guess_media_type(relative_path), self._put)


__all__ = ["S3Storage", "translate_s3_error"]
