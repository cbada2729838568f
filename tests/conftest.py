"""Pytest configuration and shared fixtures."""

import collections.abc
import typing

import pytest

import resplink
from resplink import transport
from tests.helpers import FakeRedis


@pytest.fixture(autouse=True)
def _clean_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(resplink.config.SERVER_ENV, raising=False)
    monkeypatch.delenv(resplink.config.DEBUG_ENV, raising=False)


@pytest.fixture
def fake(monkeypatch: pytest.MonkeyPatch) -> collections.abc.Iterator[FakeRedis]:
    """Route every connection to an in-process fake server."""
    fake_redis = FakeRedis()
    monkeypatch.setattr(transport, "open_transport", fake_redis.open_transport)
    yield fake_redis
    fake_redis.close()


@pytest.fixture
def make_client(fake: FakeRedis) -> collections.abc.Iterator[collections.abc.Callable[..., resplink.Redis]]:
    """Build clients connected to the fake server, closing them afterwards."""
    clients: list[resplink.Redis] = []

    def _make(**kwargs: typing.Any) -> resplink.Redis:
        kwargs.setdefault("server", "127.0.0.1:6379")
        client = resplink.Redis(**kwargs)
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.connection.close()
