"""
logbeacon/logger.py - The event pipeline.

    log() -> FilterChain -> DeduplicationCache -> EventBuffer -> FlushScheduler -> Transport

log() is synchronous and never raises: filtering, deduplication, buffering
and triggering all happen inline; only the flush task awaits network I/O.
"""

import logging
import sys
import threading
import time
from typing import Any, Callable, Mapping

from .buffer import EventBuffer
from .config import LoggerConfig
from .dedup import DeduplicationCache, fingerprint
from .events import Environment, LogEntry, LogLevel, create_entry
from .filters import FilterChain
from .scheduler import FlushScheduler
from .serialization import safe_text
from .stack import error_to_context, source_from_stack
from .transport import Transport

logger = logging.getLogger(__name__)


class Logger:
    """
    Buffers log events and ships them in batches to the collector.

    A running asyncio event loop is needed for delivery. Entries logged
    before one exists are buffered and sent once the loop runs (the first
    log() or flush() inside it starts the periodic timer).

    Usage:
        async with Logger(endpoint="https://logs.example.com/api/logs", api_key="...") as log:
            log.info("User signed in", {"user_id": 42})
    """

    def __init__(
        self,
        config: LoggerConfig | None = None,
        *,
        transport=None,
        environment: Environment | None = None,
        clock: Callable[[], float] | None = None,
        **options: Any,
    ):
        """
        Parameters:
            config (LoggerConfig | None): Configuration snapshot; keyword
                ``options`` override its fields or build one from scratch.
            transport: Object with ``async send(batch) -> bool`` (and optionally
                ``aclose()``); defaults to an HTTP Transport owned by the logger.
            environment (Environment | None): Host and request details copied
                into every entry; defaults to the current process.
            clock (Callable[[], float] | None): Seconds since the epoch, used for
                deduplication windows. Defaults to ``time.time``.

        Raises:
            ConfigurationError: If the endpoint or API key is missing or any
                value is invalid.
        """
        self.config = LoggerConfig.build(config, **options)
        self.environment = environment or Environment()
        self._clock = clock or time.time

        self.filters = FilterChain(self.config)
        self.dedup = DeduplicationCache(self.config.deduplication_window_ms)
        self.buffer = EventBuffer(capacity=self.config.max_buffer_size)
        self.transport = transport if transport is not None else Transport(self.config)
        self._owns_transport = transport is None
        self.scheduler = FlushScheduler(
            self.buffer,
            self.transport,
            batch_size=self.config.batch_size,
            flush_interval=self.config.flush_interval,
        )

        self._global_context: dict[str, Any] = {}
        # log() may be called from any thread (thread excepthook, logging capture)
        self._lock = threading.RLock()
        self.filtered_count = 0
        self.deduplicated_count = 0

        self.enabled = self.config.enabled
        if self.enabled and self.filters.is_host_disabled(self.environment.hostname):
            logger.debug("Logging disabled on host %s", self.environment.hostname)
            self.enabled = False

        if self.enabled:
            self.scheduler.start()

    # -- context -----------------------------------------------------------

    @property
    def global_context(self) -> dict[str, Any]:
        return dict(self._global_context)

    def set_global_context(self, context: Mapping[str, Any] | None = None, **fields: Any) -> None:
        """Merge fields into the context attached to every later entry."""
        update = {**(context or {}), **fields}
        with self._lock:
            self._global_context.update(self.filters.redact(update))

    def set_user(self, user_id: Any) -> None:
        self.set_global_context(user_id=user_id)

    def clear_global_context(self) -> None:
        with self._lock:
            self._global_context.clear()

    # -- logging -----------------------------------------------------------

    def log(self, level: LogLevel | str, message: Any, context: Mapping[str, Any] | None = None) -> None:
        if not self.enabled:
            return
        try:
            self._log(level, message, context)
        except Exception:
            # log() must not raise into the caller
            logger.debug("Dropped log entry after an internal error", exc_info=True)

    def _log(self, level: LogLevel | str, message: Any, context: Mapping[str, Any] | None) -> None:
        try:
            level = LogLevel.parse(level)
        except ValueError:
            level = LogLevel.INFO
        message = message if isinstance(message, str) else str(message)
        context = dict(context) if context else {}

        with self._lock:
            entry = self.filters.apply(level, message, context, self._global_context, self._build_entry)
            if entry is None:
                self.filtered_count += 1
                return

            if self.config.deduplication:
                key = fingerprint(entry.level, entry.message, entry.context)
                if self.dedup.should_suppress(key, self._clock() * 1000):
                    self.deduplicated_count += 1
                    return

            self.buffer.append(entry)
        self.scheduler.notify(flush=len(self.buffer) >= self.config.batch_size)

    def _build_entry(self, level: LogLevel, message: str, context: dict[str, Any]) -> LogEntry:
        return create_entry(level, message, context, channel=self.config.channel, environment=self.environment)

    def debug(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.DEBUG, message, context)

    def info(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.INFO, message, context)

    def notice(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.NOTICE, message, context)

    def warning(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.WARNING, message, context)

    def error(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.ERROR, message, context)

    def critical(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.CRITICAL, message, context)

    def alert(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.ALERT, message, context)

    def emergency(self, message: Any, context: Mapping[str, Any] | None = None) -> None:
        self.log(LogLevel.EMERGENCY, message, context)

    def exception(
        self,
        message: Any = None,
        exc: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        """
        Log a caught exception at error level with its traceback context.

        ``exc`` defaults to the exception currently being handled.
        """
        if exc is None:
            exc = sys.exc_info()[1]

        details: dict[str, Any] = {}
        if exc is not None:
            details = error_to_context(exc)
            details.update(source_from_stack(details["stack"]))
            if message is None:
                message = safe_text(exc) or type(exc).__name__
        self.log(LogLevel.ERROR, message if message is not None else "Exception", {**details, **(context or {})})

    # -- delivery ----------------------------------------------------------

    @property
    def buffer_size(self) -> int:
        return len(self.buffer)

    async def flush(self) -> None:
        """Send everything buffered now (stops early if a batch fails)."""
        self.scheduler.wake()
        await self.scheduler.flush()

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    def on_visibility_change(self, hidden: bool) -> None:
        """Going to the background is the last reliable moment to ship logs."""
        if hidden and self.enabled:
            self.scheduler.request_flush(drain=True)

    async def aclose(self, flush: bool = True) -> None:
        """Stop the timer, optionally drain the buffer, and release the transport."""
        await self.scheduler.stop(drain=flush and self.enabled)
        if self._owns_transport:
            await self.transport.aclose()

    def close_nowait(self) -> None:
        """
        Close without awaiting: stop accepting entries and stop the timer.
        Whatever is still buffered is discarded.
        """
        self.enabled = False
        self.scheduler.close()
        dropped = len(self.buffer)
        if dropped:
            logger.warning("Discarding %d buffered logs from a closed logger", dropped)
            self.buffer.clear()

    def stats(self) -> dict[str, int]:
        return {
            "buffered": len(self.buffer),
            "evicted": self.buffer.evicted_count,
            "filtered": self.filtered_count,
            "deduplicated": self.deduplicated_count,
            "batches_sent": self.scheduler.sent_count,
            "batches_failed": self.scheduler.failed_count,
            "batches_rejected": self.scheduler.rejected_count,
        }

    async def __aenter__(self) -> "Logger":
        if self.enabled:
            self.scheduler.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
