"""
logbeacon/errors.py - Error taxonomy.

Only ConfigurationError and LoggerNotInitializedError ever reach application
code. Transport errors are raised and handled inside the transport; the
pipeline reports them as warnings on the "logbeacon" logger.
"""

from enum import Enum


class LogbeaconError(Exception):
    """Base class for all logbeacon errors."""


class ConfigurationError(LogbeaconError, ValueError):
    """Raised at construction when the configuration is missing or invalid."""


class LoggerNotInitializedError(LogbeaconError, RuntimeError):
    """Raised by get_instance() before init() was called."""

    def __init__(self, message=None):
        super().__init__(message or "Logger not initialized. Call logbeacon.init() first.")


class ErrorClass(str, Enum):
    TIMEOUT = "TIMEOUT"
    NETWORK_FAILURE = "NETWORK_FAILURE"
    SERVER_ERROR = "SERVER_ERROR"
    CLIENT_ERROR = "CLIENT_ERROR"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    @property
    def retryable(self) -> bool:
        """False for batches that would fail the same way on every attempt."""
        return self not in (ErrorClass.CLIENT_ERROR, ErrorClass.INVALID_PAYLOAD)


class TransportError(LogbeaconError):
    """A single delivery attempt failed."""

    def __init__(self, message: str, *, error_class: ErrorClass, status_code: int | None = None):
        super().__init__(message)
        self.error_class = error_class
        self.status_code = status_code


class RetryExhausted(LogbeaconError):
    """
    A batch was given up on: the retry budget ran out, or the collector
    answered with a non-retryable status.
    """

    def __init__(
        self,
        message: str,
        *,
        error_class: ErrorClass,
        attempts: int,
        last_error: str | None = None,
    ):
        super().__init__(message)
        self.error_class = error_class
        self.attempts = attempts
        self.last_error = last_error
