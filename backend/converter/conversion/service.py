"""Conversion queue with per-item state machine, simulated progress and artifact lifecycle."""
import asyncio
import logging
import threading
import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional

from converter.config import (
    AUTO_DOWNLOAD_DELAY_SECONDS,
    CONVERSION_TIMEOUT_SECONDS,
    MAX_QUEUE_ITEMS,
    MAX_RETRIES,
    PROGRESS_CAP,
    PROGRESS_STEP,
    PROGRESS_TICK_SECONDS,
)
from converter.conversion.errors import ConversionError, InvalidState, NotFound, QueueFull
from converter.conversion.interfaces import ArtifactGateway, DownloadTrigger, Notifier
from converter.conversion.models import (
    ConversionItem,
    ConversionOutput,
    FileCandidate,
    Severity,
    TaskStatus,
)
from converter.conversion.transcode import output_media_type, transcode

logger = logging.getLogger("converter.service")

Items = tuple[ConversionItem, ...]
Transcoder = Callable[[FileCandidate], tuple[bytes, str]]

CONVERTIBLE = (TaskStatus.PENDING, TaskStatus.ERROR)


def _find(items: Items, item_id: str) -> Optional[ConversionItem]:
    for item in items:
        if item.item_id == item_id:
            return item
    return None


def _map_item(items: Items, item_id: str, change: Callable[[ConversionItem], ConversionItem]) -> Items:
    return tuple(change(i) if i.item_id == item_id else i for i in items)


class ConversionQueueManager:
    """
    Owns the ordered item collection of one session and drives conversions.

    The collection is an immutable tuple. Every change is computed from a
    snapshot and committed with compare-and-set against a version counter,
    so interleaved completions never lose each other's updates. Updates for
    items that have been removed in the meantime are silently dropped.
    """

    def __init__(
        self,
        notifier: Notifier,
        downloader: DownloadTrigger,
        artifacts: ArtifactGateway,
        *,
        transcoder: Transcoder = transcode,
        tick_seconds: float = PROGRESS_TICK_SECONDS,
        progress_step: int = PROGRESS_STEP,
        progress_cap: int = PROGRESS_CAP,
        auto_download_delay: float = AUTO_DOWNLOAD_DELAY_SECONDS,
        timeout: float = CONVERSION_TIMEOUT_SECONDS,
        max_items: int = MAX_QUEUE_ITEMS,
        max_retries: int = MAX_RETRIES,
    ):
        self._notifier = notifier
        self._downloader = downloader
        self._artifacts = artifacts
        self._transcoder = transcoder
        self._tick_seconds = tick_seconds
        self._progress_step = progress_step
        self._progress_cap = min(progress_cap, 99)
        self._auto_download_delay = auto_download_delay
        self._timeout = timeout
        self._max_items = max_items
        self._max_retries = max_retries

        self._items: Items = ()
        self._version = 0
        self._lock = threading.Lock()
        self._conversions: dict[str, asyncio.Task] = {}
        self._auto_downloads: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------ #
    # Collection                                                         #
    # ------------------------------------------------------------------ #
    def _commit(self, change: Callable[[Items], Items]) -> tuple[Items, Items]:
        """Apply change to the current snapshot; retry if another update won. Returns (before, after)."""
        while True:
            with self._lock:
                version, snapshot = self._version, self._items
            updated = change(snapshot)
            with self._lock:
                if self._version == version:
                    self._items = updated
                    self._version += 1
                    return snapshot, updated

    def _update_item(self, item_id: str, change: Callable[[ConversionItem], ConversionItem]) -> Optional[ConversionItem]:
        _, after = self._commit(lambda items: _map_item(items, item_id, change))
        return _find(after, item_id)

    def items(self) -> list[ConversionItem]:
        return list(self._items)

    def get(self, item_id: str) -> Optional[ConversionItem]:
        return _find(self._items, item_id)

    @property
    def busy(self) -> bool:
        """True while a conversion or auto-download is in flight."""
        return any(not t.done() for t in (*self._conversions.values(), *self._auto_downloads.values()))

    def get_queue_status(self) -> dict[str, int]:
        """Return counts per status plus the total."""
        counts = {status.value: 0 for status in TaskStatus}
        for item in self._items:
            counts[item.status.value] += 1
        counts["total"] = sum(counts.values())
        return counts

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #
    def enqueue(self, candidates: Iterable[FileCandidate]) -> list[ConversionItem]:
        """Append one pending item per candidate, keeping admission order."""
        new_items = tuple(ConversionItem(item_id=uuid.uuid4().hex, source=c) for c in candidates)
        if not new_items:
            return []

        def append(items: Items) -> Items:
            if self._max_items and len(items) + len(new_items) > self._max_items:
                raise QueueFull(f"Queue holds at most {self._max_items} files")
            return items + new_items

        self._commit(append)
        for item in new_items:
            logger.info("Queued %s as %s (%s bytes)", item.source.name, item.item_id, item.source.size)
        return list(new_items)

    def convert(self, item_id: str) -> asyncio.Task:
        """Start converting a pending or failed item. Must be called from the event loop."""
        # Raises RuntimeError before the item leaves its current state.
        asyncio.get_running_loop()

        def start(item: ConversionItem) -> ConversionItem:
            if item.status not in CONVERTIBLE:
                raise InvalidState(f"{item.source.name} is {item.status.value}")
            if self._max_retries and item.attempt > self._max_retries:
                raise InvalidState(f"{item.source.name} exceeded {self._max_retries} retries")
            return replace(item, status=TaskStatus.CONVERTING, progress=0, output=None, error=None, attempt=item.attempt + 1)

        before, after = self._commit(lambda items: _map_item(items, item_id, start))
        previous = _find(before, item_id)
        if previous is None:
            raise NotFound(item_id)
        if previous.output is not None:
            self._artifacts.release(previous.output.handle)
        item = _find(after, item_id)

        logger.info("Converting %s (attempt %s)", item.source.name, item.attempt)
        task = asyncio.create_task(self._run(item), name=f"convert-{item_id}")
        self._conversions[item_id] = task
        task.add_done_callback(lambda t: self._forget(self._conversions, item_id, t))
        return task

    def download(self, item_id: str) -> ConversionOutput:
        """Ask the client to save the output of a completed item. Safe to repeat."""
        item = self.get(item_id)
        if item is None:
            raise NotFound(item_id)
        if item.status != TaskStatus.COMPLETED or item.output is None:
            raise InvalidState(f"{item.source.name} is {item.status.value}, nothing to download")
        self._downloader.trigger(item.output.handle, item.output.file_name)
        self._notifier.notify(
            "Download started",
            f"{item.output.file_name} is being downloaded.",
            Severity.INFO,
        )
        return item.output

    def remove(self, item_id: str) -> bool:
        """Drop an item in any state and release its artifact. Returns False if it was already gone."""
        before, _ = self._commit(lambda items: tuple(i for i in items if i.item_id != item_id))
        removed = _find(before, item_id)
        if removed is None:
            return False
        auto_download = self._auto_downloads.pop(item_id, None)
        if auto_download is not None:
            auto_download.cancel()
        if removed.output is not None:
            self._artifacts.release(removed.output.handle)
        logger.info("Removed %s (%s)", removed.source.name, removed.status.value)
        return True

    async def join(self) -> None:
        """Wait until no conversion or auto-download is in flight."""
        while True:
            pending = [t for t in (*self._conversions.values(), *self._auto_downloads.values()) if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight work and release every artifact."""
        pending = [*self._conversions.values(), *self._auto_downloads.values()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._conversions.clear()
        self._auto_downloads.clear()
        before, _ = self._commit(lambda items: ())
        for item in before:
            if item.output is not None:
                self._artifacts.release(item.output.handle)
        logger.info("Queue shut down, %s items dropped", len(before))

    # ------------------------------------------------------------------ #
    # Internal helpers                                                   #
    # ------------------------------------------------------------------ #
    async def _run(self, item: ConversionItem) -> None:
        ticker = asyncio.create_task(self._tick(item.item_id, item.attempt))
        try:
            work = asyncio.to_thread(self._transcoder, item.source)
            if self._timeout:
                blob, file_name = await asyncio.wait_for(work, self._timeout)
            else:
                blob, file_name = await work
        except asyncio.TimeoutError:
            self._fail(item, f"Conversion timed out after {self._timeout:g}s")
            return
        except ConversionError as e:
            self._fail(item, str(e))
            return
        except Exception as e:
            logger.exception("Unexpected failure converting %s: %s", item.source.name, e)
            self._fail(item, str(e))
            return
        finally:
            ticker.cancel()
        self._complete(item, blob, file_name)

    async def _tick(self, item_id: str, attempt: int) -> None:
        """Advance progress by a fixed step per tick, never past the cap."""

        def advance(current: ConversionItem) -> ConversionItem:
            if current.status != TaskStatus.CONVERTING or current.attempt != attempt:
                return current
            if current.progress >= self._progress_cap:
                return current
            return replace(current, progress=min(self._progress_cap, current.progress + self._progress_step))

        while True:
            await asyncio.sleep(self._tick_seconds)
            current = self._update_item(item_id, advance)
            if current is None or current.status != TaskStatus.CONVERTING or current.attempt != attempt:
                return

    def _complete(self, item: ConversionItem, blob: bytes, file_name: str) -> None:
        handle = self._artifacts.mint(blob, file_name, output_media_type(item.source))
        output = ConversionOutput(handle=handle, blob=blob, file_name=file_name)

        def finish(current: ConversionItem) -> ConversionItem:
            if current.status != TaskStatus.CONVERTING or current.attempt != item.attempt:
                return current
            return replace(current, status=TaskStatus.COMPLETED, progress=100, output=output, error=None)

        updated = self._update_item(item.item_id, finish)
        if updated is None or updated.output is not output:
            logger.info("%s was removed during conversion, discarding output", item.source.name)
            self._artifacts.release(handle)
            return
        logger.info("Converted %s -> %s (%s bytes)", item.source.name, file_name, len(blob))
        self._notifier.notify(
            "Conversion completed!",
            f"{item.source.name} has been successfully converted.",
            Severity.SUCCESS,
        )
        self._auto_downloads[item.item_id] = asyncio.create_task(
            self._auto_download(item.item_id), name=f"auto-download-{item.item_id}"
        )

    def _fail(self, item: ConversionItem, message: str) -> None:
        def fail(current: ConversionItem) -> ConversionItem:
            if current.status != TaskStatus.CONVERTING or current.attempt != item.attempt:
                return current
            return replace(current, status=TaskStatus.ERROR, output=None, error=message)

        updated = self._update_item(item.item_id, fail)
        if updated is None or updated.attempt != item.attempt or updated.error is not message:
            logger.info("%s was removed during conversion, ignoring failure: %s", item.source.name, message)
            return
        logger.warning("Conversion failed for %s: %s", item.source.name, message)
        self._notifier.notify(
            "Conversion failed",
            f"There was an error converting {item.source.name}. Please try again.",
            Severity.ERROR,
        )

    async def _auto_download(self, item_id: str) -> None:
        try:
            await asyncio.sleep(self._auto_download_delay)
            try:
                self.download(item_id)
            except (NotFound, InvalidState) as e:
                logger.debug("Skipping auto-download: %s", e)
        finally:
            self._forget(self._auto_downloads, item_id, asyncio.current_task())

    @staticmethod
    def _forget(tasks: dict[str, asyncio.Task], item_id: str, task: Optional[asyncio.Task]) -> None:
        if tasks.get(item_id) is task:
            del tasks[item_id]
