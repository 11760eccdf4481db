"""Zip archive provider (``zip://path/to/archive.zip``).

Reading walks the archive members. Writing cannot patch an archive in place,
so committed entries are staged in a temporary archive next to the target and
published with one atomic replace on :meth:`ZipStorage.close`. Members of an
existing archive that were not rewritten are carried over. Leaving the context
manager on an exception drops the staged entries instead.
"""

from __future__ import annotations

import io
import os
import tempfile
import threading
import zipfile
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Iterator, Optional, Set

from ..errors import ConfigurationError, StorageError, StorageNotFoundError
from ..logging import get_logger
from ..models import Entry, StorageLocation
from .base import BufferedSink, StorageProvider, WriteSink, guess_media_type
from .local import _translate

logger = get_logger(__name__)


class ZipStorage(StorageProvider):
    is_container = True
    incremental_writes = False

    def __init__(self, location: StorageLocation):
        super().__init__(location)
        raw = location.path
        self.archive = Path(raw).expanduser()
        if raw.endswith("/") or self.archive.is_dir():
            raise ConfigurationError("Zip location must name an archive file, not a directory")
        self._lock = threading.Lock()
        self._reader: Optional[zipfile.ZipFile] = None
        self._writer: Optional[zipfile.ZipFile] = None
        self._staging: Optional[Path] = None
        self._written: Set[str] = set()

    def _open_reader(self) -> zipfile.ZipFile:
        if self._reader is None:
            try:
                self._reader = zipfile.ZipFile(self.archive, "r")
            except OSError as exc:
                raise _translate(exc, self.archive) from exc
            except zipfile.BadZipFile as exc:
                raise StorageError(f"Not a zip archive: {self.archive}") from exc
        return self._reader

    def list(self, prefix: str = "") -> Iterator[Entry]:
        with self._lock:
            infos = self._open_reader().infolist()
        for info in infos:
            if info.is_dir() or not info.filename.startswith(prefix):
                continue
            yield Entry(
                path=info.filename,
                location=self.location,
                size=info.file_size,
                media_type=guess_media_type(info.filename),
                modified=datetime(*info.date_time),
            )

    def open_read(self, entry: Entry) -> BinaryIO:
        with self._lock:
            reader = self._open_reader()
            try:
                data = reader.read(entry.path)
            except KeyError as exc:
                raise StorageNotFoundError(f"{entry.path} not found in {self.archive}") from exc
        return io.BytesIO(data)

    def _stage(self, relative_path: str, data: bytes, media_type: Optional[str]) -> None:
        with self._lock:
            if self._writer is None:
                try:
                    self.archive.parent.mkdir(parents=True, exist_ok=True)
                    fd, tmp = tempfile.mkstemp(
                        dir=str(self.archive.parent),
                        prefix=f".{self.archive.name}.",
                        suffix=".part",
                    )
                except OSError as exc:
                    raise _translate(exc, self.archive) from exc
                os.close(fd)
                self._staging = Path(tmp)
                self._writer = zipfile.ZipFile(self._staging, "w", zipfile.ZIP_DEFLATED)
            self._writer.writestr(relative_path, data)
            self._written.add(relative_path)

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        return BufferedSink(relative_path, media_type, self._stage)

    def _carry_over(self) -> None:
        if not self.archive.exists():
            return
        reader = self._open_reader()
        for info in reader.infolist():
            if info.filename in self._written:
                continue
            self._writer.writestr(info, reader.read(info))

    def close(self) -> None:
        with self._lock:
            try:
                if self._writer is not None:
                    self._carry_over()
                    self._writer.close()
                    os.replace(self._staging, self.archive)
                    logger.info(
                        "Archive written",
                        extra={"extra": {"archive": str(self.archive), "entries": len(self._written)}},
                    )
            except OSError as exc:
                self.discard()
                raise _translate(exc, self.archive) from exc
            finally:
                if self._reader is not None:
                    self._reader.close()
                    self._reader = None
                self._writer = None
                self._staging = None

    def discard(self) -> None:
        """Drop every staged entry and leave the target archive untouched."""
        if self._writer is not None:
            self._writer.close()
        if self._staging is not None and self._staging.exists():
            self._staging.unlink()

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        with self._lock:
            if self._writer is not None:
                logger.warning(
                    "Run aborted, archive left untouched",
                    extra={"extra": {"archive": str(self.archive), "dropped": len(self._written)}},
                )
            self.discard()
            if self._reader is not None:
                self._reader.close()
                self._reader = None
            self._writer = None
            self._staging = None
            self._written.clear()


__all__ = ["ZipStorage"]
