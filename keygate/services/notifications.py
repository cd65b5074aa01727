"""Fire-and-forget notification dispatch.

Handles a bounded queue drained by one background worker:
- ``submit`` never blocks and never raises; a full queue drops the event
- worker failures are logged and the event is dropped (no retries)
- the worker runs detached from request tasks, so a request's cancellation
  or errors never reach it
"""

from __future__ import annotations

import asyncio
import logging

from keygate.adapters.notify.base import AbstractNotifier, KeyIssuedEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Bounded background queue in front of a notifier."""

    def __init__(self, notifier: AbstractNotifier | None, *, max_queue: int = 100) -> None:
        self._notifier = notifier
        self._max_queue = max_queue
        self._queue: asyncio.Queue[KeyIssuedEvent] | None = None
        self._worker: asyncio.Task | None = None
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return self._notifier is not None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running event loop (idempotent)."""
        if not self.enabled or self.running:
            return
        self._queue = asyncio.Queue(maxsize=self._max_queue)
        self._worker = asyncio.create_task(self._worker_loop(), name="notification-dispatcher")
        logger.info("notify.worker_started", extra={"max_queue": self._max_queue})

    async def stop(self, *, drain_timeout: float = 2.0) -> None:
        """Give queued events a short chance to flush, then stop the worker."""
        if self._worker is None:
            return
        if self._queue is not None:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
            except asyncio.TimeoutError:
                logger.warning("notify.drain_timeout", extra={"pending": self._queue.qsize()})
        self._worker.cancel()
        await asyncio.gather(self._worker, return_exceptions=True)
        self._worker = None
        self._queue = None
        logger.info("notify.worker_stopped", extra={"sent": self.sent, "failed": self.failed})

    def submit(self, event: KeyIssuedEvent) -> bool:
        """Enqueue an event without waiting.

        Returns:
            True if queued, False if notifications are disabled, the worker is
            not running, or the queue is full.
        """
        if not self.enabled:
            return False
        if self._queue is None or not self.running:
            self.dropped += 1
            logger.warning("notify.dropped", extra={"reason": "worker_not_running"})
            return False
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "notify.dropped",
                extra={"reason": "queue_full", "max_queue": self._max_queue},
            )
            return False
        return True

    async def join(self) -> None:
        """Wait until every queued event has been processed (tests, shutdown)."""
        if self._queue is not None:
            await self._queue.join()

    async def _worker_loop(self) -> None:
        assert self._queue is not None and self._notifier is not None
        queue = self._queue
        while True:
            event = await queue.get()
            try:
                await self._notifier.send(event)
                self.sent += 1
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failed += 1
                logger.warning(
                    "notify.failed",
                    extra={"error_type": type(exc).__name__, "error_msg": str(exc)},
                )
            finally:
                queue.task_done()
