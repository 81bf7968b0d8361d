"""
logbeacon/instrumentation.py - Feeds runtime errors and stdlib logging into a Logger.

Hooks:
- sys.excepthook / threading.excepthook: uncaught exceptions
- asyncio loop exception handler: task exceptions nobody retrieved
- a logging.Handler on the root logger: application log records

Design Philosophy:
- Everything captured goes through Logger.log(), so filtering,
  deduplication and buffering apply no matter where an event came from
- Hooks are chained, never replaced: the previous handler always runs
- Capture failures are swallowed; the host application must not notice us
"""

import asyncio
import logging
import sys
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .serialization import safe_serialize, safe_text
from .stack import error_to_context, source_from_stack
from .transport import in_delivery

logger = logging.getLogger(__name__)

# Records from our own loggers are never captured (would loop forever)
LIBRARY_LOGGER = "logbeacon"

LOGGING_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


@dataclass
class HookSet:
    excepthook: Callable[..., Any] | None = None
    threading_excepthook: Callable[..., Any] | None = None
    loop_exception_handler: Callable[..., Any] | None = None


def record_level(levelno: int) -> str:
    """Map a stdlib level number to the closest level name at or below it."""
    if levelno >= logging.CRITICAL:
        return "critical"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warning"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


def exception_context(exc: BaseException) -> dict[str, Any]:
    context = error_to_context(exc)
    context.update(source_from_stack(context["stack"]))
    return context


class LoggingCapture(logging.Handler):
    """Forwards stdlib log records at selected levels to a Logger."""

    def __init__(self, target, levels: Iterable[str] = ("error", "warning")):
        self.levels = frozenset(level.lower() for level in levels)
        unknown = self.levels - LOGGING_LEVELS.keys()
        if unknown:
            raise ValueError(f"Unknown logging levels: {sorted(unknown)}")
        super().__init__(level=min(LOGGING_LEVELS[level] for level in self.levels) if self.levels else logging.CRITICAL)
        self.target = target

    def emit(self, record: logging.LogRecord) -> None:
        if record.name == LIBRARY_LOGGER or record.name.startswith(LIBRARY_LOGGER + "."):
            return
        # records emitted on behalf of a send, such as httpx request logs
        if in_delivery():
            return
        level = record_level(record.levelno)
        if level not in self.levels:
            return

        try:
            message = record.getMessage()
            context: dict[str, Any] = {
                "logger": record.name,
                "original_args": safe_serialize(record.args) if record.args else [],
            }
            if record.exc_info and record.exc_info[1] is not None:
                context.update(exception_context(record.exc_info[1]))
            else:
                context.update(
                    {
                        "file": record.pathname,
                        "line": record.lineno,
                        "function": record.funcName,
                        "controller": record.pathname,
                        "method": record.funcName,
                    }
                )
            self.target.log(level, message, context)
        except Exception:
            self.handleError(record)


class Instrumentation:
    """
    Installs chained global hooks that report into ``target.log``.

    install() and uninstall() are explicit and symmetric: uninstall puts
    back exactly the handlers that were active when install ran.
    """

    def __init__(
        self,
        target,
        *,
        uncaught_exceptions: bool = True,
        thread_exceptions: bool = True,
        asyncio_exceptions: bool = True,
        capture_logging: bool = True,
        logging_levels: Iterable[str] = ("error", "warning"),
    ):
        self.target = target
        self.uncaught_exceptions = uncaught_exceptions
        self.thread_exceptions = thread_exceptions
        self.asyncio_exceptions = asyncio_exceptions
        self.capture_logging = capture_logging
        self.logging_handler = LoggingCapture(target, logging_levels) if capture_logging else None

        self.originals: HookSet | None = None
        self.installed: HookSet | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_installed(self) -> bool:
        return self.installed is not None

    # -- capture -----------------------------------------------------------

    def capture_exception(self, exc: BaseException, extra: dict[str, Any] | None = None) -> None:
        if isinstance(exc, KeyboardInterrupt):
            return
        try:
            context = exception_context(exc)
            if extra:
                context.update(extra)
            self.target.log("error", safe_text(exc) or type(exc).__name__, context)
        except Exception:
            logger.debug("Failed to record uncaught exception", exc_info=True)

    def capture_loop_error(self, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if isinstance(exc, BaseException):
            extra = {"asyncio_message": context.get("message")}
            self.capture_exception(exc, extra)
            return
        try:
            message = context.get("message") or "Unhandled asyncio error"
            self.target.log("error", message, {"reason": safe_serialize(context.get("message"))})
        except Exception:
            logger.debug("Failed to record asyncio error", exc_info=True)

    # -- chaining ----------------------------------------------------------

    def chain(self, originals: HookSet) -> HookSet:
        """
        Build handlers that capture first and then delegate to ``originals``.

        Missing originals fall back to the interpreter defaults. Hooks that
        are switched off in this instrumentation come back as None.
        """

        def excepthook(exc_type, exc, tb):
            if exc is not None:
                if exc.__traceback__ is None and tb is not None:
                    exc = exc.with_traceback(tb)
                self.capture_exception(exc)
            (originals.excepthook or sys.__excepthook__)(exc_type, exc, tb)

        def threading_excepthook(args):
            if args.exc_value is not None:
                thread = getattr(args.thread, "name", None)
                self.capture_exception(args.exc_value, {"thread": thread})
            (originals.threading_excepthook or threading.__excepthook__)(args)

        def loop_exception_handler(loop, context):
            self.capture_loop_error(context)
            if originals.loop_exception_handler is not None:
                originals.loop_exception_handler(loop, context)
            else:
                loop.default_exception_handler(context)

        return HookSet(
            excepthook=excepthook if self.uncaught_exceptions else None,
            threading_excepthook=threading_excepthook if self.thread_exceptions else None,
            loop_exception_handler=loop_exception_handler if self.asyncio_exceptions else None,
        )

    # -- install / uninstall -------------------------------------------------

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> HookSet:
        """
        Install the chained hooks. The asyncio hook needs ``loop`` or a running
        loop; without either it is skipped. Installing twice is a no-op.
        """
        if self.installed is not None:
            return self.installed

        if loop is None and self.asyncio_exceptions:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop

        self.originals = HookSet(
            excepthook=sys.excepthook,
            threading_excepthook=threading.excepthook,
            loop_exception_handler=loop.get_exception_handler() if loop is not None else None,
        )
        chained = self.chain(self.originals)

        if chained.excepthook is not None:
            sys.excepthook = chained.excepthook
        if chained.threading_excepthook is not None:
            threading.excepthook = chained.threading_excepthook
        if chained.loop_exception_handler is not None and loop is not None:
            loop.set_exception_handler(chained.loop_exception_handler)
        else:
            chained.loop_exception_handler = None

        if self.logging_handler is not None:
            logging.getLogger().addHandler(self.logging_handler)

        self.installed = chained
        return chained

    def uninstall(self) -> None:
        if self.installed is None or self.originals is None:
            return

        if self.installed.excepthook is not None and sys.excepthook is self.installed.excepthook:
            sys.excepthook = self.originals.excepthook
        if (
            self.installed.threading_excepthook is not None
            and threading.excepthook is self.installed.threading_excepthook
        ):
            threading.excepthook = self.originals.threading_excepthook
        if self.installed.loop_exception_handler is not None and self._loop is not None:
            if not self._loop.is_closed():
                self._loop.set_exception_handler(self.originals.loop_exception_handler)

        if self.logging_handler is not None:
            logging.getLogger().removeHandler(self.logging_handler)

        self.installed = None
        self.originals = None
        self._loop = None
