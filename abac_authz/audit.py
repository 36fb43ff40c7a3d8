"""
Access request auditing.

Audit records are written off the authorization path: ``AuditDispatcher``
queues them and one background task hands them to the ``AuditSink``. Sink
failures are logged and never reach the caller.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from .models import AccessRequestRecord

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Abstract base class for audit sinks."""

    @abstractmethod
    async def record_access_request(self, record: AccessRequestRecord) -> None:
        """Persist one access request record."""
        pass


class AuditDispatcher:
    """
    Background writer in front of an ``AuditSink``.

    ``submit`` never blocks or raises. A full queue drops the record with a
    warning. ``close`` waits up to ``shutdown_timeout`` seconds for queued
    records to be written.
    """

    def __init__(self, sink: AuditSink, queue_size: int = 1000, shutdown_timeout: float = 5.0):
        self.sink = sink
        self.queue_size = queue_size
        self.shutdown_timeout = shutdown_timeout
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self.submitted = 0
        self.written = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the background writer on the running event loop."""
        if self.running:
            return
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._worker = asyncio.get_running_loop().create_task(self._run())

    def submit(self, record: AccessRequestRecord) -> bool:
        """Queue a record; returns ``False`` if it was dropped."""
        try:
            if not self.running:
                self.start()
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Audit queue full, dropping access request record %s", record.id)
            return False
        except RuntimeError as e:
            self.dropped += 1
            logger.warning("Audit dispatcher unavailable, dropping record %s: %s", record.id, e)
            return False
        self.submitted += 1
        return True

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.sink.record_access_request(record)
                self.written += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.error("Failed to record access request %s: %s", record.id, e)
            finally:
                self._queue.task_done()

    async def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until queued records are written; ``False`` on timeout."""
        if self._queue is None or not self.running:
            return True
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def close(self) -> None:
        """Drain the queue, then stop the background writer."""
        if self._worker is None:
            return
        drained = await self.flush(timeout=self.shutdown_timeout)
        if not drained:
            logger.warning(
                "Audit queue not drained within %.1fs, %d records lost",
                self.shutdown_timeout, self._queue.qsize()
            )
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        self._queue = None

    def stats(self) -> dict:
        return {
            "submitted": self.submitted,
            "written": self.written,
            "failed": self.failed,
            "dropped": self.dropped,
            "pending": self._queue.qsize() if self._queue is not None else 0,
        }
