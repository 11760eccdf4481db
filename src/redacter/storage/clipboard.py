"""System clipboard exposed as a one-entry location (``clipboard://``)."""

from __future__ import annotations

import io
import time
from datetime import datetime, timezone
from typing import BinaryIO, Iterator, Optional, Tuple

import pyperclip
from PIL import Image, ImageGrab

from ..errors import StorageError, StorageNotFoundError, StoragePermissionError
from ..models import Entry, StorageLocation
from .base import BufferedSink, StorageProvider, WriteSink, guess_media_type


def _grab_image() -> Optional[Image.Image]:
    try:
        grabbed = ImageGrab.grabclipboard()
    except (OSError, NotImplementedError):
        return None
    return grabbed if isinstance(grabbed, Image.Image) else None


class ClipboardStorage(StorageProvider):
    """Snapshot of the clipboard taken on first listing.

    Images are exposed as ``<timestamp>.png``, text as ``<timestamp>.txt``.
    """

    is_container = False

    def __init__(self, location: StorageLocation, *, grab_image=_grab_image, paste=None, copy=None):
        super().__init__(location)
        self._grab_image = grab_image
        self._paste = paste or pyperclip.paste
        self._copy = copy or pyperclip.copy
        self._snapshot: Optional[Tuple[Entry, bytes]] = None
        self.default_name = None

    def _take_snapshot(self) -> Tuple[Entry, bytes]:
        if self._snapshot is not None:
            return self._snapshot
        stamp = str(int(time.time()))
        image = self._grab_image()
        if image is not None:
            buf = io.BytesIO()
            image.save(buf, format="PNG")
            name, media_type, data = f"{stamp}.png", "image/png", buf.getvalue()
        else:
            try:
                text = self._paste()
            except pyperclip.PyperclipException as exc:
                raise StorageError(f"Clipboard is not available: {exc}") from exc
            name, media_type, data = f"{stamp}.txt", "text/plain", (text or "").encode("utf-8")
        entry = Entry(
            path=name,
            location=self.location,
            size=len(data),
            media_type=media_type,
            modified=datetime.now(timezone.utc),
        )
        self._snapshot = (entry, data)
        return self._snapshot

    def list(self, prefix: str = "") -> Iterator[Entry]:
        entry, _ = self._take_snapshot()
        yield entry

    def open_read(self, entry: Entry) -> BinaryIO:
        current, data = self._take_snapshot()
        if entry.path != current.path:
            raise StorageNotFoundError(f"{entry.path} is not on the clipboard")
        return io.BytesIO(data)

    def _set(self, relative_path: str, data: bytes, media_type: Optional[str]) -> None:
        if media_type and media_type.startswith("image/"):
            raise StoragePermissionError("Writing images to the clipboard is not supported")
        try:
            self._copy(data.decode("utf-8", errors="replace"))
        except pyperclip.PyperclipException as exc:
            raise StorageError(f"Clipboard is not available: {exc}") from exc

    def open_write(self, relative_path: str, media_type: Optional[str] = None) -> WriteSink:
        return BufferedSink(relative_path, media_type or guess_media_type(relative_path), self._set)


__all__ = ["ClipboardStorage"]
