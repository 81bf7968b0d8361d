"""Tests for the HTTP transport and its retry policy."""

import asyncio
import json

import httpx
import pytest
import pytest_asyncio

from fakes import API_KEY, ENDPOINT
from logbeacon import LoggerConfig
from logbeacon.errors import ErrorClass, RetryExhausted
from logbeacon.events import LogLevel, create_entry
from logbeacon.transport import API_KEY_HEADER, Transport, build_payload, in_delivery


def _config(**options):
    options.setdefault("retry_base_delay_ms", 0)
    return LoggerConfig.build(endpoint=ENDPOINT, api_key=API_KEY, **options)


def _batch(*messages):
    return [create_entry(LogLevel.INFO, m, {"n": i}, channel="python") for i, m in enumerate(messages)]


class Collector:
    """MockTransport handler answering with a scripted list of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0) if self.responses else 200
        if isinstance(response, Exception):
            raise response
        return httpx.Response(response, json={})


@pytest.fixture
def collector():
    return Collector()


@pytest_asyncio.fixture
async def make_transport():
    clients = []

    def factory(handler, **options):
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return Transport(_config(**options), client=client)

    yield factory
    for client in clients:
        await client.aclose()


def test_build_payload():
    batch = _batch("a", "b")
    payload = build_payload(batch)
    assert [log["message"] for log in payload["logs"]] == ["a", "b"]
    assert payload["logs"][0]["level"] == "info"


@pytest.mark.asyncio
async def test_successful_send(make_transport, collector):
    transport = make_transport(collector)

    assert await transport.send(_batch("hello", "world")) is True

    request = collector.requests[0]
    assert request.method == "POST"
    assert str(request.url) == ENDPOINT
    assert request.headers[API_KEY_HEADER] == API_KEY
    assert request.headers["Content-Type"] == "application/json"
    body = json.loads(request.content)
    assert [log["message"] for log in body["logs"]] == ["hello", "world"]
    assert body["logs"][1]["context"] == {"n": 1}
    assert transport.last_error is None


@pytest.mark.asyncio
async def test_empty_batch_sends_nothing(make_transport, collector):
    transport = make_transport(collector)
    assert await transport.send([]) is True
    assert collector.requests == []


@pytest.mark.asyncio
async def test_retries_then_succeeds(make_transport):
    collector = Collector(500, 200)
    transport = make_transport(collector)

    assert await transport.send(_batch("x")) is True
    assert len(collector.requests) == 2
    assert transport.attempts == 2


@pytest.mark.asyncio
async def test_gives_up_after_retry_budget(make_transport):
    collector = Collector(500, 502, 503, 504)
    transport = make_transport(collector, retries=2)

    assert await transport.send(_batch("x")) is False
    assert len(collector.requests) == 3
    assert transport.last_error is ErrorClass.SERVER_ERROR


@pytest.mark.asyncio
async def test_zero_retries_means_one_attempt(make_transport):
    collector = Collector(500)
    transport = make_transport(collector, retries=0)

    assert await transport.send(_batch("x")) is False
    assert len(collector.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 413, 422])
async def test_client_errors_are_not_retried(make_transport, status):
    collector = Collector(status)
    transport = make_transport(collector)

    assert await transport.send(_batch("x")) is False
    assert len(collector.requests) == 1
    assert transport.last_error is ErrorClass.CLIENT_ERROR


@pytest.mark.asyncio
async def test_network_failure_is_retried(make_transport):
    collector = Collector(httpx.ConnectError("connection refused"), 200)
    transport = make_transport(collector)

    assert await transport.send(_batch("x")) is True
    assert len(collector.requests) == 2


@pytest.mark.asyncio
async def test_httpx_timeout_classified(make_transport):
    collector = Collector(httpx.ReadTimeout("timed out"))
    transport = make_transport(collector, retries=0)

    assert await transport.send(_batch("x")) is False
    assert transport.last_error is ErrorClass.TIMEOUT


@pytest.mark.asyncio
async def test_slow_collector_times_out(make_transport):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    transport = make_transport(slow, retries=0, request_timeout_ms=50)

    assert await transport.send(_batch("x")) is False
    assert transport.last_error is ErrorClass.TIMEOUT


@pytest.mark.asyncio
async def test_linear_backoff(make_transport, monkeypatch):
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    monkeypatch.setattr("logbeacon.transport.asyncio.sleep", fake_sleep)
    collector = Collector(503, 503, 503, 503)
    transport = make_transport(collector, retries=3, retry_base_delay_ms=1000)

    assert await transport.send(_batch("x")) is False
    assert delays == [1.0, 2.0, 3.0]
    assert len(collector.requests) == 4


@pytest.mark.asyncio
async def test_send_with_retry_raises_exhausted(make_transport):
    collector = Collector(500, 500)
    transport = make_transport(collector, retries=1)

    with pytest.raises(RetryExhausted) as excinfo:
        await transport.send_with_retry(build_payload(_batch("x")))

    assert excinfo.value.attempts == 2
    assert excinfo.value.error_class is ErrorClass.SERVER_ERROR
    assert excinfo.value.last_error == "Server returned 500"


@pytest.mark.asyncio
async def test_owned_client_closed():
    transport = Transport(_config())
    client = transport.client

    await transport.aclose()

    assert client.is_closed


class BrokenEntry:
    def to_dict(self):
        raise RuntimeError("cannot encode")


@pytest.mark.asyncio
async def test_unencodable_batch_returns_false(make_transport, collector):
    transport = make_transport(collector)

    assert await transport.send([BrokenEntry()]) is False

    assert collector.requests == []
    assert transport.last_error is ErrorClass.INVALID_PAYLOAD
    assert not transport.last_error.retryable


@pytest.mark.asyncio
async def test_delivery_context_is_visible_inside_send(make_transport):
    seen = []

    def handler(request):
        seen.append(in_delivery())
        return httpx.Response(200)

    transport = make_transport(handler)

    assert in_delivery() is False
    assert await transport.send(_batch("x")) is True
    assert seen == [True]
    assert in_delivery() is False


def test_retry_exhausted_attributes():
    error = RetryExhausted(
        "Failed after 4 attempts", error_class=ErrorClass.TIMEOUT, attempts=4, last_error="timed out"
    )

    assert str(error) == "Failed after 4 attempts"
    assert error.error_class is ErrorClass.TIMEOUT
    assert error.attempts == 4
    assert error.last_error == "timed out"
