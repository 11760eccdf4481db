"""Copy pipeline: enumerate, fetch, resolve, redact and write every item.

Items are processed on a thread pool; each item runs its stages sequentially
inside one worker. Only a bounded number of items is in flight, so the source
listing is consumed lazily. Shared state (limiter, cancellation flag, summary)
lives in an explicit :class:`RunContext`.
"""

from __future__ import annotations

import shutil
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import closing
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Set

from pydantic import BaseModel, Field
from tqdm import tqdm

from .config import RunConfig
from .content_type import ContentTypeResolver
from .convert.pdf import page_name
from .engine import RedactionEngine
from .enumerate import Enumerator, FileMatcher
from .errors import (
    DestinationNotContainerError,
    FatalError,
    RedacterError,
    StorageTransientError,
    error_kind,
)
from .logging import get_logger
from .models import ContentCategory, Entry, Outcome, RedactedPart, RedactionResult
from .storage.base import StorageProvider
from .throttle import RateLimiter, Unlimited

logger = get_logger(__name__)


class ItemRecord(BaseModel):
    path: str
    outcome: Outcome
    category: ContentCategory = ContentCategory.UNKNOWN
    findings: int = 0
    backends: List[str] = Field(default_factory=list)
    outputs: List[str] = Field(default_factory=list)
    sampled: bool = False
    reason: Optional[str] = None
    error_kind: Optional[str] = None


class Failure(BaseModel):
    path: str
    kind: str
    message: str


class RunSummary(BaseModel):
    """Counts per outcome plus the details of every failed or skipped item."""

    redacted: int = 0
    passthrough_copied: int = 0
    skipped: int = 0
    failed: int = 0
    filtered: int = 0
    findings: int = 0
    sampled: int = 0
    failures: List[Failure] = Field(default_factory=list)
    skips: List[Failure] = Field(default_factory=list)
    items: List[ItemRecord] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return self.redacted + self.passthrough_copied + self.skipped + self.failed

    def record(self, result: RedactionResult, outputs: List[str]) -> None:
        outcome = result.outcome
        if outcome == Outcome.REDACTED:
            self.redacted += 1
        elif outcome == Outcome.PASSTHROUGH_COPIED:
            self.passthrough_copied += 1
        elif outcome == Outcome.SKIPPED:
            self.skipped += 1
            self.skips.append(
                Failure(path=result.entry.path, kind="skipped", message=result.reason or "")
            )
        else:
            self.failed += 1
            self.failures.append(
                Failure(
                    path=result.entry.path,
                    kind=result.error_kind or "internal",
                    message=result.reason or "",
                )
            )
        self.findings += result.findings
        self.sampled += int(result.sampled)
        self.items.append(
            ItemRecord(
                path=result.entry.path,
                outcome=outcome,
                category=result.category,
                findings=result.findings,
                backends=list(result.backends),
                outputs=outputs,
                sampled=result.sampled,
                reason=result.reason,
                error_kind=result.error_kind,
            )
        )

    def exit_code(self, fail_on_skipped: bool = False) -> int:
        if self.failed or (fail_on_skipped and self.skipped):
            return 1
        return 0


@dataclass
class RunContext:
    """State shared by all workers of one run."""

    limiter: RateLimiter = field(default_factory=Unlimited)
    cancel: threading.Event = field(default_factory=threading.Event)
    summary: RunSummary = field(default_factory=RunSummary)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def record(self, result: RedactionResult, outputs: List[str]) -> None:
        with self.lock:
            self.summary.record(result, outputs)


class _Cancelled(Exception):
    pass


class CopyPipeline:
    """Copy every matching entry of ``source`` into ``destination``.

    Without an engine, items are streamed byte for byte. With one, each item
    is buffered whole, resolved and redacted, and every output part is written
    through its own sink.
    """

    def __init__(
        self,
        source: StorageProvider,
        destination: StorageProvider,
        cfg: RunConfig,
        engine: Optional[RedactionEngine] = None,
        resolver: Optional[ContentTypeResolver] = None,
        context: Optional[RunContext] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.source = source
        self.destination = destination
        self.cfg = cfg
        self.engine = engine
        self.resolver = resolver or ContentTypeResolver(cfg.mime_overrides, cfg.sniff_bytes)
        self.context = context or RunContext()
        self._sleep = sleep

    # helpers

    def _check(self) -> None:
        if self.context.cancel.is_set():
            raise _Cancelled()

    def _with_retry(self, fn: Callable):
        attempt = 0
        while True:
            try:
                return fn()
            except StorageTransientError as exc:
                if attempt >= self.cfg.retries:
                    raise
                delay = self.cfg.backoff * (2 ** attempt)
                logger.warning(
                    "Retrying storage operation",
                    extra={"extra": {"attempt": attempt + 1, "delay": delay, "error": str(exc)}},
                )
                self._sleep(delay)
                attempt += 1

    def _read(self, entry: Entry) -> bytes:
        with closing(self.source.open_read(entry)) as src:
            return src.read()

    def _stream(self, entry: Entry, target: str) -> None:
        with closing(self.source.open_read(entry)) as src:
            with self.destination.open_write(target, entry.media_type) as sink:
                shutil.copyfileobj(src, sink)
                self._check()
                sink.commit()

    def _write(self, target: str, part: RedactedPart) -> None:
        with self.destination.open_write(target, part.media_type) as sink:
            sink.write(part.data)
            sink.commit()

    def _target(self, entry: Entry, part: RedactedPart) -> str:
        base = self.destination.target_path(entry.path)
        if part.page is not None:
            return page_name(base, part.page)
        return base

    # per item

    def _process(self, entry: Entry) -> List[str]:
        """Run one item; returns the destination paths written."""
        outputs: List[str] = []
        try:
            self._check()
            if self.engine is None:
                target = self.destination.target_path(entry.path)
                self._with_retry(lambda: self._stream(entry, target))
                outputs.append(target)
                result = RedactionResult(entry, Outcome.PASSTHROUGH_COPIED)
            else:
                data = self._with_retry(lambda: self._read(entry))
                self._check()
                media_type, category = self.resolver.resolve(entry, data[: self.cfg.sniff_bytes])
                result = self.engine.redact(entry, media_type, category, data)
                self._check()
                for part in result.parts:
                    target = self._target(entry, part)
                    self._with_retry(lambda: self._write(target, part))
                    outputs.append(target)
                if result.sampled:
                    logger.info(
                        "Only a sample was sent for redaction",
                        extra={
                            "extra": {
                                "path": entry.path,
                                "sampling_size": self.cfg.sampling_size,
                                "tail": self.cfg.sampling_tail,
                            }
                        },
                    )
        except _Cancelled:
            result = RedactionResult(entry, Outcome.SKIPPED, reason="Run cancelled")
        except FatalError:
            raise
        except RedacterError as exc:
            result = RedactionResult(
                entry, Outcome.FAILED, reason=str(exc), error_kind=error_kind(exc)
            )
        except Exception as exc:
            logger.error(
                "Unexpected error", extra={"extra": {"path": entry.path}}, exc_info=True
            )
            result = RedactionResult(
                entry, Outcome.FAILED, reason=f"{type(exc).__name__}: {exc}", error_kind="internal"
            )
        if result.outcome in (Outcome.SKIPPED, Outcome.FAILED):
            outputs = []
        self.context.record(result, outputs)
        return outputs

    # run

    def run(self) -> RunSummary:
        if self.source.is_container and not self.destination.is_container:
            raise DestinationNotContainerError(self.destination.describe())
        if not self.destination.incremental_writes:
            logger.info(
                "Destination is published when the run ends",
                extra={"extra": {"destination": self.destination.describe()}},
            )
        cfg = self.cfg
        ctx = self.context
        enumerator = Enumerator(
            self.source,
            FileMatcher(cfg.filename_filter, cfg.max_size_limit),
            cfg.max_files_limit,
            ctx.cancel,
        )
        fatal: Optional[BaseException] = None
        in_flight: Set[Future] = set()
        bound = 2 * cfg.workers
        bar = tqdm(desc="Copying", unit="file", disable=not cfg.show_progress)

        def drain(done: Set[Future]) -> None:
            nonlocal fatal
            for fut in done:
                in_flight.discard(fut)
                bar.update(1)
                try:
                    fut.result()
                except FatalError as exc:
                    if fatal is None:
                        fatal = exc
                        ctx.cancel.set()
                        logger.error("Aborting run", extra={"extra": {"kind": error_kind(exc)}})

        try:
            with ThreadPoolExecutor(max_workers=cfg.workers) as ex:
                try:
                    for entry in enumerator:
                        in_flight.add(ex.submit(self._process, entry))
                        if len(in_flight) >= bound:
                            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                            drain(done)
                except RedacterError as exc:
                    # listing failed, nothing more can be enumerated
                    fatal = fatal or exc
                    ctx.cancel.set()
                while in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    drain(done)
        finally:
            bar.close()
        with ctx.lock:
            ctx.summary.filtered = enumerator.skipped
        if fatal is not None:
            raise fatal
        return ctx.summary


__all__ = ["CopyPipeline", "RunContext", "RunSummary", "ItemRecord", "Failure"]
