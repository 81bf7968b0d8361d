"""
HTTP transport for log batches, with retry logic.

GUARANTEES:
- Linear backoff: failed attempt k waits k * retry_base_delay before the next
- 4xx responses are never retried
- send() never raises (except on task cancellation); failure is False
"""

import asyncio
import contextvars
import logging
from typing import Any, Sequence

import httpx

from .config import LoggerConfig
from .errors import ErrorClass, RetryExhausted, TransportError
from .events import LogEntry

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Project-Key"

# True inside send(), including log records emitted by httpx on our behalf
_delivering: contextvars.ContextVar[bool] = contextvars.ContextVar("logbeacon_delivering", default=False)


def in_delivery() -> bool:
    """Whether the current context is delivering a batch."""
    return _delivering.get()


def build_payload(batch: Sequence[LogEntry]) -> dict[str, Any]:
    return {"logs": [entry.to_dict() for entry in batch]}


class Transport:
    """
    Delivers one batch per send() call to the configured endpoint.

    Calls are serialized with a lock so the retry loops of two batches
    never interleave.
    """

    def __init__(self, config: LoggerConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self.endpoint = config.endpoint
        self.max_retries = config.retries
        self.base_delay = config.retry_base_delay
        self.headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            API_KEY_HEADER: config.api_key,
        }
        self._client = client
        self._owns_client = client is None
        self._lock: asyncio.Lock | None = None
        self.last_error: ErrorClass | None = None
        self.attempts: int = 0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.request_timeout))
        return self._client

    async def send(self, batch: Sequence[LogEntry]) -> bool:
        """
        Deliver ``batch``, retrying transient failures.

        Returns:
            bool: True once a 2xx response is received, False after a 4xx,
            after the retry budget is exhausted, or when the batch cannot be
            encoded at all (``last_error`` tells these apart).
        """
        if not batch:
            return True

        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            try:
                payload = build_payload(batch)
            except Exception:
                logger.exception("Could not encode %d logs; dropping them", len(batch))
                self.last_error = ErrorClass.INVALID_PAYLOAD
                return False

            token = _delivering.set(True)
            try:
                await self.send_with_retry(payload)
            except RetryExhausted as e:
                self.last_error = e.error_class
                if not e.error_class.retryable:
                    logger.warning("Failed to send logs: %s", e.last_error)
                else:
                    logger.warning(
                        "Failed to send logs after %d attempts: %s - %s",
                        e.attempts, e.error_class.value, e.last_error,
                    )
                return False
            finally:
                _delivering.reset(token)

            self.last_error = None
            return True

    async def send_with_retry(self, payload: dict[str, Any]) -> None:
        """
        Post ``payload`` until it is accepted or the retry budget runs out.

        Raises:
            RetryExhausted: After a 4xx response or ``max_retries`` retries.
        """
        attempt = 0
        max_attempts = self.max_retries + 1

        while True:
            attempt += 1
            self.attempts = attempt
            try:
                await self.post(payload)
                return
            except TransportError as e:
                if not e.error_class.retryable:
                    raise RetryExhausted(
                        f"Client error (4xx) - {e}",
                        error_class=e.error_class,
                        attempts=attempt,
                        last_error=str(e),
                    ) from e
                error_class, last_error = e.error_class, str(e)

            if attempt >= max_attempts:
                raise RetryExhausted(
                    f"Failed after {attempt} attempts. Last error: {error_class.value} - {last_error}",
                    error_class=error_class,
                    attempts=attempt,
                    last_error=last_error,
                )

            wait_time = attempt * self.base_delay
            logger.debug(
                "Retry %d/%d after %.1fs (%s)", attempt, self.max_retries, wait_time, error_class.value
            )
            await asyncio.sleep(wait_time)

    async def post(self, payload: dict[str, Any]) -> httpx.Response:
        """
        One delivery attempt.

        Raises:
            TransportError: Classified failure of this attempt.
        """
        try:
            # httpx times out per phase; wait_for bounds the whole exchange
            response = await asyncio.wait_for(
                self.client.post(self.endpoint, json=payload, headers=self.headers),
                timeout=self.config.request_timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Request timed out after {self.config.request_timeout:.1f}s",
                error_class=ErrorClass.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise TransportError(str(e) or type(e).__name__, error_class=ErrorClass.NETWORK_FAILURE) from e
        except Exception as e:
            raise TransportError(str(e) or type(e).__name__, error_class=ErrorClass.UNKNOWN_ERROR) from e

        status = response.status_code
        if 200 <= status < 300:
            return response
        if 400 <= status < 500:
            raise TransportError(
                f"HTTP {status} {response.reason_phrase}".rstrip(),
                error_class=ErrorClass.CLIENT_ERROR,
                status_code=status,
            )
        raise TransportError(
            f"Server returned {status}", error_class=ErrorClass.SERVER_ERROR, status_code=status
        )

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
