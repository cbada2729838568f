"""End-to-end tests against a real Redis server.

Set ``RESPLINK_TEST_SERVER`` (for example ``127.0.0.1:6379``) to run them.
The selected database is flushed.
"""

import collections.abc
import os
import uuid

import pytest

import resplink
from resplink import error

SERVER = os.environ.get("RESPLINK_TEST_SERVER")

pytestmark = pytest.mark.skipif(not SERVER, reason="RESPLINK_TEST_SERVER is not set")


@pytest.fixture
def r() -> collections.abc.Iterator[resplink.Redis]:
    client = resplink.Redis(server=SERVER, database=9)
    client.flushdb()
    yield client
    client.quit()


def _key() -> str:
    return f"resplink-test:{uuid.uuid4().hex}"


def test_binary_round_trip(r: resplink.Redis):
    key = _key()
    for value in (b"", b"\r\n", b"\x00\xff", "é".encode()):
        r.set(key, value)
        assert r.get(key) == value


def test_missing_key_and_empty_list(r: resplink.Redis):
    key = _key()

    assert r.get(key) is None
    assert r.lrange(key, 0, -1) == []
    assert r.execute_command("BLPOP", key, 0.01) is None


def test_pipelined_incr(r: resplink.Redis):
    key = _key()
    results: list[int] = []

    for _ in range(3):
        r.incr(key, callback=lambda value, _: results.append(value))

    r.wait_all_responses()
    assert results == [1, 2, 3]


def test_command_error_keeps_connection(r: resplink.Redis):
    key = _key()
    r.lpush(key, "a")

    with pytest.raises(error.CommandError) as exc_info:
        r.incr(key)

    assert exc_info.value.code == "WRONGTYPE"
    assert r.ping() == "PONG"


def test_transaction(r: resplink.Redis):
    key = _key()
    r.set(key, "text")
    r.multi()
    r.incr(key)
    r.set(key, "ok")

    result = r.exec()

    assert isinstance(result[0][1], error.CommandError)
    assert result[1] == ("OK", None)
    assert r.get(key) == b"ok"


def test_pubsub(r: resplink.Redis):
    topic = _key()
    publisher = resplink.Redis(server=SERVER)
    received: list[tuple[bytes, bytes, bytes]] = []

    r.subscribe(topic, callback=lambda *args: received.append(args))
    with pytest.raises(error.ModeError):
        r.get(topic)

    assert publisher.publish(topic, "hello") == 1
    r.wait_for_messages(0.5)

    assert received == [(b"hello", topic.encode(), topic.encode())]
    publisher.quit()


def test_scan_and_views(r: resplink.Redis):
    prefix = _key()
    for index in range(25):
        r.set(f"{prefix}:{index}", index)

    assert len(list(r.scan_iter(match=f"{prefix}:*", count=10))) == 25

    items = resplink.RedisList(r, f"{prefix}:list")
    items.extend(["a", "b", "c"])
    del items[1]
    assert list(iter(items)) == [b"a", b"c"]

    fields = resplink.RedisHash(r, f"{prefix}:hash")
    fields.update({"x": 1, "y": 2})
    assert dict(fields.items()) == {b"x": b"1", b"y": b"2"}
