"""Test configuration and fixtures."""

import os
import sys

import pytest

# Make the test doubles importable as a plain module
sys.path.insert(0, os.path.dirname(__file__))

from fakes import API_KEY, ENDPOINT, FakeTransport  # noqa: E402

from logbeacon import Environment, Logger  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep LOGBEACON_* variables from the developer shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("LOGBEACON_"):
            monkeypatch.delenv(key)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def environment():
    return Environment(
        hostname="example.com",
        url="https://example.com/dashboard",
        user_agent="pytest-agent",
        referrer="https://example.com/",
    )


@pytest.fixture
def make_logger(transport, environment):
    """
    Build a Logger wired to the fake transport.

    Large batch size by default so nothing flushes unless a test asks for it.
    """

    def factory(**options):
        options.setdefault("endpoint", ENDPOINT)
        options.setdefault("api_key", API_KEY)
        options.setdefault("batch_size", 100)
        options.setdefault("transport", transport)
        options.setdefault("environment", environment)
        return Logger(**options)

    return factory
