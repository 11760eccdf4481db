"""Local filesystem provider (``file://`` or bare paths)."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from ..errors import StorageError, StorageNotFoundError, StoragePermissionError
from ..models import Entry, StorageLocation
from .base import StorageProvider, WriteSink, guess_media_type


def _translate(exc: OSError, path: Path) -> StorageError:
    if isinstance(exc, FileNotFoundError):
        return StorageNotFoundError(f"Not found: {path}")
    if isinstance(exc, PermissionError):
        return StoragePermissionError(f"Permission denied: {path}")
    return StorageError(f"I/O error on {path}: {exc}")


class LocalSink(WriteSink):
    """Writes to a hidden temp file next to the target and renames on commit."""

    def __init__(self, target: Path, relative_path: str, media_type: Optional[str]):
        super().__init__(relative_path, media_type)
        self.target = target
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                dir=str(target.parent), prefix=f".{target.name}.", suffix=".part"
            )
        except OSError as exc:
            raise _translate(exc, target) from exc
        self._tmp_path = Path(tmp)
        self._fh = os.fdopen(fd, "wb")

    def write(self, data: bytes) -> int:
        return self._fh.write(data)

    def _commit(self) -> None:
        try:
            self._fh.flush()
            os.fsync(self._fh.fileno())
            self._fh.close()
            os.replace(self._tmp_path, self.target)
        except OSError as exc:
            self._abort()
            raise _translate(exc, self.target) from exc

    def _abort(self) -> None:
        if not self._fh.closed:
            self._fh.close()
        try:
            self._tmp_path.unlink()
        except FileNotFoundError:
            pass


class LocalStorage(StorageProvider):
    def __init__(self, location: StorageLocation):
        super().__init__(location)
        raw = location.path
        root = Path(raw).expanduser()
        self.is_container = raw.endswith("/") or raw.endswith(os.sep) or root.is_dir()
        if self.is_container:
            self.base_dir = root
            self.default_name = None
        else:
            self.base_dir = root.parent
            self.default_name = root.name

    def _entry(self, path: Path, relative: str) -> Entry:
        st = path.stat()
        return Entry(
            path=relative,
            location=self.location,
            size=st.st_size,
            media_type=guess_media_type(relative),
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        )

    def _walk(self, directory: Path, relative: str) -> Iterator[Entry]:
        try:
            with os.scandir(directory) as it:
                items = list(it)
        except OSError as exc:
            raise _translate(exc, directory) from exc
        for item in items:
            rel = f"{relative}{item.name}"
            if item.is_dir(follow_symlinks=False):
                yield from self._walk(Path(item.path), rel + "/")
            elif item.is_file():
                yield self._entry(Path(item.path), rel)

    def list(self, prefix: str = "") -> Iterator[Entry]:
        if not self.is_container:
            path = self.base_dir / self.default_name
            try:
                entry = self._entry(path, self.default_name)
            except OSError as exc:
                raise _translate(exc, path) from exc
            yield entry
            return
        start = self.base_dir / prefix if prefix else self.base_dir
        rel = prefix.rstrip("/") + "/" if prefix else ""
        yield from self._walk(start, rel)

    def resolve(self, relative_path: str) -> Path:
        parts = relative_path.replace("\\", "/").split("/")
        if ".." in parts or relative_path.startswith(("/", "\\")) or os.path.isabs(relative_path):
            raise StoragePermissionError(f"Path escapes {self.base_dir}: {relative_path}")
        return self.base_dir.joinpath(*parts)

    def open_read(self, entry: Entry) -> BinaryIO:
        path = self.resolve(entry.path)
        try:
            return open(path, "rb")
        except OSError as exc:
            raise _translate(exc, path) from exc

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        return LocalSink(self.resolve(relative_path), relative_path, media_type)


__all__ = ["LocalStorage", "LocalSink"]
