"""Storage provider contract.

Every backend exposes the same three operations: a lazy ``list``, a scoped
``open_read`` and a scoped ``open_write`` whose sink only becomes visible at
the destination after an explicit :meth:`WriteSink.commit`.
"""

from __future__ import annotations

import io
import mimetypes
import posixpath
from typing import BinaryIO, Iterator, Optional

from ..errors import StorageError
from ..models import Entry, StorageLocation


def guess_media_type(path: str) -> Optional[str]:
    return mimetypes.guess_type(path)[0]


class WriteSink:
    """Scoped destination writer.

    Use as a context manager: ``write`` any number of chunks, then call
    ``commit``. Leaving the block without committing, or with an exception,
    aborts the write and leaves the destination untouched.
    """

    def __init__(self, relative_path: str, media_type: Optional[str] = None):
        self.relative_path = relative_path
        self.media_type = media_type
        self.committed = False
        self.aborted = False

    def write(self, data: bytes) -> int:
        raise NotImplementedError

    def _commit(self) -> None:
        raise NotImplementedError

    def _abort(self) -> None:
        """Drop any staged bytes."""

    def commit(self) -> None:
        if self.committed:
            return
        if self.aborted:
            raise StorageError(f"Write to {self.relative_path} was already aborted")
        self._commit()
        self.committed = True

    def abort(self) -> None:
        if self.committed or self.aborted:
            return
        self.aborted = True
        self._abort()

    def __enter__(self) -> "WriteSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self.committed:
            self.abort()


class BufferedSink(WriteSink):
    """Sink that stages bytes in memory and hands them over on commit."""

    def __init__(self, relative_path: str, media_type: Optional[str], on_commit):
        super().__init__(relative_path, media_type)
        self._buffer = io.BytesIO()
        self._on_commit = on_commit

    def write(self, data: bytes) -> int:
        return self._buffer.write(data)

    def _commit(self) -> None:
        self._on_commit(self.relative_path, self._buffer.getvalue(), self.media_type)

    def _abort(self) -> None:
        self._buffer = io.BytesIO()


class StorageProvider:
    """Uniform list/read/write contract over one storage location.

    Attributes
    ----------
    location:
        Parsed location the provider was opened on.
    is_container:
        True when the location holds (and accepts) many entries.
    default_name:
        File name of a single-file location, ``None`` for containers.
    incremental_writes:
        True when each committed entry is durable on its own; False when the
        container is rebuilt and published on :meth:`close`.
    """

    is_container: bool = True
    default_name: Optional[str] = None
    incremental_writes: bool = True

    def __init__(self, location: StorageLocation):
        self.location = location

    def list(self, prefix: str = "") -> Iterator[Entry]:
        raise NotImplementedError

    def open_read(self, entry: Entry) -> BinaryIO:
        raise NotImplementedError

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        raise NotImplementedError

    def target_path(self, relative_path: Optional[str]) -> str:
        """Relative path a write lands on; single-file locations ignore the name."""
        if not self.is_container and self.default_name:
            return self.default_name
        return relative_path or ""

    def describe(self, relative_path: Optional[str] = None) -> str:
        base = self.location.uri
        if not relative_path or not self.is_container:
            return base
        return posixpath.join(base.rstrip("/"), relative_path)

    def close(self) -> None:
        """Release clients and publish pending container writes."""

    def __enter__(self) -> "StorageProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["StorageProvider", "WriteSink", "BufferedSink", "guess_media_type"]
