"""
logbeacon - client-side log capture and delivery.

Quick start:

    import logbeacon

    async def main():
        log = logbeacon.init(endpoint="https://logs.example.com/api/logs", api_key="...")
        log.info("Service started")
        ...
        await logbeacon.shutdown()

init() builds a Logger, installs the global hooks and remembers the logger
for get_instance(). Code that owns its Logger can skip all of this and
construct Logger / Instrumentation directly.
"""

import asyncio
import logging

__version__ = "0.1.0"

from .config import LoggerConfig
from .errors import ConfigurationError, LogbeaconError, LoggerNotInitializedError
from .events import Environment, LogEntry, LogLevel
from .instrumentation import HookSet, Instrumentation
from .logger import Logger

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ConfigurationError",
    "Environment",
    "HookSet",
    "Instrumentation",
    "LogEntry",
    "LogLevel",
    "LogbeaconError",
    "Logger",
    "LoggerConfig",
    "LoggerNotInitializedError",
    "get_instance",
    "init",
    "shutdown",
]

_instance: Logger | None = None
_instrumentation: Instrumentation | None = None
# aclose() tasks of loggers replaced by a later init()
_retiring: set[asyncio.Task] = set()


def init(config: LoggerConfig | None = None, *, instrumentation=None, **options) -> Logger:
    """
    Create the process-wide Logger and install instrumentation.

    Parameters:
        config (LoggerConfig | None): Optional base configuration.
        instrumentation (bool | dict | None): False skips the global hooks;
            a dict is passed to Instrumentation as keyword options.
        **options: Logger keyword arguments (configuration fields,
            ``transport``, ``environment``, ``clock``).

    A logger left over from an earlier init() is retired: inside a running
    event loop it is drained and closed in the background (shutdown()
    waits for that); without a loop it is closed at once and whatever it
    still buffers is discarded.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    global _instance, _instrumentation

    logger = Logger(config, **options)

    if _instrumentation is not None:
        _instrumentation.uninstall()
        _instrumentation = None
    if _instance is not None:
        _retire(_instance)
    _instance = logger

    if instrumentation is not False and logger.enabled:
        hook_options = instrumentation if isinstance(instrumentation, dict) else {}
        _instrumentation = Instrumentation(logger, **hook_options)
        _instrumentation.install()

    return logger


def _retire(previous: Logger) -> None:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        previous.close_nowait()
        return
    task = loop.create_task(previous.aclose())
    _retiring.add(task)
    task.add_done_callback(_retiring.discard)


def get_instance() -> Logger:
    if _instance is None:
        raise LoggerNotInitializedError()
    return _instance


async def shutdown(flush: bool = True) -> None:
    """Uninstall hooks, drain and close the current Logger (and any it replaced), and forget it."""
    global _instance, _instrumentation

    if _instrumentation is not None:
        _instrumentation.uninstall()
        _instrumentation = None

    if _instance is not None:
        logger, _instance = _instance, None
        await logger.aclose(flush=flush)

    if _retiring:
        await asyncio.gather(*_retiring, return_exceptions=True)
