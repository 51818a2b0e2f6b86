"""Serialized delivery of captured artifacts to the storage backend.

Capture events are bursty and must never wait on the network or disk, so
every artifact goes through :class:`UploadQueue`: ``enqueue`` is a
non-blocking append and a single worker task hands tasks to the storage
adapter strictly one at a time, in enqueue order.  The worker sleeps on the
queue and is woken by ``enqueue``; store calls run in a worker thread so a
slow backend never stalls the event loop.

A failed delivery is logged and dropped.  ``max_retries`` allows a bounded
number of immediate re-attempts of the same task before it is dropped; the
task is never put back in the queue, so ordering is preserved.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from loguru import logger

from .config import MAX_RETRIES
from .errors import DeliveryError
from .log import RecordingLogger
from .storage import ArtifactKind, StorageAdapter, format_timestamp


@dataclass(frozen=True)
class UploadTask:
    """One artifact waiting for delivery."""

    payload: bytes = field(repr=False)
    kind: ArtifactKind
    timestamp: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", ArtifactKind(self.kind))

    @classmethod
    def create(
        cls,
        payload: bytes,
        kind: ArtifactKind,
        captured_at: Optional[datetime] = None,
    ) -> "UploadTask":
        """Build a task stamped with *captured_at* (now by default)."""
        return cls(payload=payload, kind=ArtifactKind(kind), timestamp=format_timestamp(captured_at))

    @property
    def size(self) -> int:
        return len(self.payload)


class UploadQueue:
    """FIFO queue with at most one in-flight store call.

    Args:
        storage: Backend receiving the artifacts.
        max_retries: Extra attempts per task after a failure (0 = drop at once).
        recording_logger: Optional JSONL log receiving one record per task.
    """

    def __init__(
        self,
        storage: StorageAdapter,
        max_retries: int = MAX_RETRIES,
        recording_logger: Optional[RecordingLogger] = None,
    ) -> None:
        self._storage = storage
        self._max_retries = max(0, max_retries)
        self._recording_logger = recording_logger
        self._queue: "asyncio.Queue[UploadTask]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._in_flight = False
        self.delivered = 0
        self.failed = 0

    @property
    def in_flight(self) -> bool:
        """True while a store call is running."""
        return self._in_flight

    @property
    def pending(self) -> int:
        """Number of tasks waiting behind the in-flight one."""
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, task: UploadTask) -> None:
        """Append *task* to the tail of the queue.  Never blocks."""
        self._queue.put_nowait(task)
        logger.debug(f"Queued {task.kind.value} {task.timestamp} ({task.size} bytes, {self.pending} pending)")

    def start(self) -> None:
        """Start the delivery worker on the running event loop."""
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(
            self._run(), name="voxgate-upload-worker"
        )

    async def drain(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued task has been attempted.

        Returns:
            False when *timeout* expired with work still outstanding.
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Upload queue not drained after {timeout}s "
                f"({self.pending} pending, in flight: {self._in_flight})"
            )
            return False

    async def close(self) -> None:
        """Stop the delivery worker.  Tasks still queued are abandoned."""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        if self.pending:
            logger.warning(f"Abandoned {self.pending} queued upload(s)")

    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            self._in_flight = True
            try:
                await self._deliver(task)
            finally:
                self._in_flight = False
                self._queue.task_done()

    async def _deliver(self, task: UploadTask) -> Optional[str]:
        """Store one task, retrying up to ``max_retries`` times."""
        attempts = 0
        last_error: Optional[BaseException] = None
        while attempts <= self._max_retries:
            attempts += 1
            try:
                location = await asyncio.to_thread(self._storage.store, task)
            except Exception as error:
                last_error = error
                logger.warning(
                    f"Attempt {attempts} to store {task.kind.value} {task.timestamp} failed: {error}"
                )
                continue

            self.delivered += 1
            logger.info(f"{task.kind.value} upload completed: {location}")
            self._log_delivery(task, location=location, delivered=True, attempts=attempts)
            return location

        failure = DeliveryError(
            f"Dropping {task.kind.value} {task.timestamp}: {last_error}", attempts=attempts
        )
        self.failed += 1
        logger.error(str(failure))
        self._log_delivery(task, delivered=False, attempts=attempts, error=str(last_error))
        return None

    def _log_delivery(self, task: UploadTask, **fields) -> None:
        if self._recording_logger is None:
            return
        try:
            self._recording_logger.write_delivery(
                kind=task.kind.value,
                timestamp=task.timestamp,
                size_bytes=task.size,
                **fields,
            )
        except OSError as e:
            logger.warning(f"Could not write delivery log entry: {e}")
