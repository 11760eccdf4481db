"""Lazy, filtered and bounded traversal of a storage listing."""

from __future__ import annotations

import fnmatch
import threading
from enum import Enum
from typing import Iterator, Optional

from .logging import get_logger
from .models import Entry
from .storage.base import StorageProvider

logger = get_logger(__name__)


class MatchResult(str, Enum):
    MATCHED = "matched"
    SKIPPED_DUE_TO_NAME = "skipped_due_to_name"
    SKIPPED_DUE_TO_SIZE = "skipped_due_to_size"


class FileMatcher:
    """Name glob and size filter applied to each listed entry.

    The glob is tried against the relative path first and then against the
    base name, so ``*.txt`` matches nested files as well.
    """

    def __init__(self, name_glob: Optional[str] = None, max_size: Optional[int] = None):
        self.name_glob = name_glob
        self.max_size = max_size

    def matches(self, entry: Entry) -> MatchResult:
        if self.max_size is not None and entry.size is not None and entry.size > self.max_size:
            return MatchResult.SKIPPED_DUE_TO_SIZE
        if self.name_glob:
            if not (
                fnmatch.fnmatchcase(entry.path, self.name_glob)
                or fnmatch.fnmatchcase(entry.name, self.name_glob)
            ):
                return MatchResult.SKIPPED_DUE_TO_NAME
        return MatchResult.MATCHED


class Enumerator:
    """Iterate the matching entries of ``provider``.

    Parameters
    ----------
    provider:
        Source storage provider.
    matcher:
        Optional :class:`FileMatcher`; everything matches when omitted.
    max_files:
        Stop pulling from the listing once this many entries were yielded.
    cancel:
        Checked before each entry is pulled from the listing.
    """

    def __init__(
        self,
        provider: StorageProvider,
        matcher: Optional[FileMatcher] = None,
        max_files: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.provider = provider
        self.matcher = matcher or FileMatcher()
        self.max_files = max_files
        self.cancel = cancel or threading.Event()
        self.yielded = 0
        self.skipped = 0

    def __iter__(self) -> Iterator[Entry]:
        if self.max_files is not None and self.max_files <= 0:
            return
        listing = self.provider.list()
        try:
            while not self.cancel.is_set():
                entry = next(listing, None)
                if entry is None:
                    break
                result = self.matcher.matches(entry)
                if result is not MatchResult.MATCHED:
                    self.skipped += 1
                    logger.debug(
                        "Entry filtered",
                        extra={"extra": {"path": entry.path, "reason": result.value}},
                    )
                    continue
                self.yielded += 1
                yield entry
                if self.max_files is not None and self.yielded >= self.max_files:
                    break
        finally:
            close = getattr(listing, "close", None)
            if callable(close):
                close()


__all__ = ["FileMatcher", "MatchResult", "Enumerator"]
