"""
logbeacon/scheduler.py - Decides when the buffer is drained.

Triggers: batch threshold reached (the logger calls request_flush after an
append), the periodic timer, and explicit drain requests (flush(), the
process going to the background, shutdown).

INVARIANTS:
- Single flight: at most one flush task exists at any time. Requests that
  arrive while it runs are coalesced into it.
- FIFO: batches are always the oldest entries, sent in order.
- A batch is removed from the buffer only after the transport confirmed it,
  or after a failure that no retry can fix (a 4xx, an unencodable batch).
- Backlog is drained by an iterative loop that yields between batches, never
  by recursion. A failed batch ends the loop; the entries wait for the next
  trigger.
"""

import asyncio
import contextlib
import logging

from .buffer import EventBuffer
from .errors import ErrorClass

logger = logging.getLogger(__name__)


class FlushScheduler:
    def __init__(self, buffer: EventBuffer, transport, batch_size: int, flush_interval: float):
        self.buffer = buffer
        self.transport = transport
        self.batch_size = batch_size
        self.flush_interval = flush_interval

        self._active = False
        self._pending = False
        self._drain_requested = False
        self._task: asyncio.Task | None = None
        self._timer: asyncio.Task | None = None
        self._timer_enabled = False
        self._closed = False
        self._loop: asyncio.AbstractEventLoop | None = None

        self.sent_count = 0
        self.failed_count = 0
        self.rejected_count = 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def closed(self) -> bool:
        return self._closed

    @staticmethod
    def _running_loop() -> asyncio.AbstractEventLoop | None:
        try:
            return asyncio.get_running_loop()
        except RuntimeError:
            return None

    def start(self) -> None:
        """Enable the periodic timer. Starts now if a loop is running, else lazily."""
        if self._closed:
            return
        self._timer_enabled = True
        self.wake()

    def wake(self) -> None:
        """
        Called on every log(): starts the timer once a loop is available and
        serves a request made earlier while no loop was running.
        """
        if self._closed:
            return
        loop = self._running_loop()
        if loop is None:
            return
        self._loop = loop
        if self._timer_enabled and (
            self._timer is None or self._timer.done() or self._timer.get_loop() is not loop
        ):
            self._timer = loop.create_task(self._tick())
        if self._pending and not self._active:
            self.request_flush()

    def notify(self, flush: bool = False) -> None:
        """
        Called after every append. Safe from any thread: a caller that is not
        on the loop that runs the flushes hands the work to that loop.
        """
        home = self._loop
        if home is not None and home.is_running() and self._running_loop() is not home:
            home.call_soon_threadsafe(self._notify, flush)
            return
        self._notify(flush)

    def _notify(self, flush: bool) -> None:
        self.wake()
        if flush:
            self.request_flush()

    async def _tick(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            self.request_flush()

    def request_flush(self, drain: bool = False) -> None:
        """
        Ask for a flush without waiting for it.

        Parameters:
            drain (bool): Keep sending batches until the buffer is empty,
                rather than only while a full batch is waiting.
        """
        if self._closed:
            return

        if self._active:
            if drain:
                self._drain_requested = True
            return

        if not self.buffer:
            self._pending = False
            return

        loop = self._running_loop()
        if loop is None:
            self._pending = True
            self._drain_requested = self._drain_requested or drain
            return

        self._pending = False
        self._drain_requested = self._drain_requested or drain
        self._active = True
        self._task = loop.create_task(self._run())
        self._task.add_done_callback(self._on_done)

    async def _run(self) -> None:
        try:
            while True:
                delivered = await self._flush_batch()
                if not delivered or not self.buffer:
                    break
                if len(self.buffer) < self.batch_size and not self._drain_requested:
                    break
                # Yield so log() calls and other tasks interleave with the backlog
                await asyncio.sleep(0)
        finally:
            self._active = False
            self._drain_requested = False
            self._task = None

    def _on_done(self, task: asyncio.Task) -> None:
        # covers a task cancelled before its body ever ran
        if task is self._task:
            self._active = False
            self._drain_requested = False
            self._task = None

    async def _flush_batch(self) -> bool:
        batch = self.buffer.take_batch(self.batch_size)
        if not batch:
            return False

        try:
            success = await self.transport.send(batch)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Transport raised while sending %d logs", len(batch))
            success = False

        if success:
            self.buffer.remove_batch(batch)
            self.sent_count += 1
            return True

        error_class = getattr(self.transport, "last_error", None)
        if isinstance(error_class, ErrorClass) and not error_class.retryable:
            self.buffer.remove_batch(batch)
            self.rejected_count += 1
            logger.warning("Dropped %d logs that can never be delivered (%s)", len(batch), error_class.value)
            return False

        self.failed_count += 1
        logger.warning("Failed to deliver %d logs; keeping them for the next flush", len(batch))
        return False

    async def wait_idle(self) -> None:
        """Wait until no flush is in progress."""
        while self._task is not None:
            task = self._task
            # shield: a cancelled waiter must not cancel the flush itself
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
            if task is self._task:
                break

    async def flush(self) -> None:
        """Drain the whole buffer (or until a batch fails), joining any active flush."""
        self.request_flush(drain=True)
        await self.wait_idle()

    def close(self) -> None:
        """Stop the timer and refuse further flushes, without waiting."""
        self._timer_enabled = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._closed = True

    async def stop(self, drain: bool = False) -> None:
        """Cancel the timer, optionally drain, wait for the in-flight flush, then close."""
        self._timer_enabled = False
        if self._timer is not None:
            self._timer.cancel()
            if self._timer.get_loop() is self._running_loop():
                with contextlib.suppress(asyncio.CancelledError):
                    await self._timer
            self._timer = None

        if drain:
            await self.flush()
        else:
            await self.wait_idle()
        self._closed = True
