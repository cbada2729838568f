"""Publish/subscribe router tests."""

import collections.abc

import pytest

import resplink
from resplink import error, pubsub
from tests.helpers import FakeRedis, array, bulk, integer
from tests.helpers import command as request

MakeClient = collections.abc.Callable[..., resplink.Redis]


def confirm(kind: str, topic: str, count: int) -> bytes:
    return array(bulk(kind), bulk(topic), integer(count))


def message(topic: str, payload: str) -> bytes:
    return array(bulk("message"), bulk(topic), bulk(payload))


def pmessage(pattern: str, topic: str, payload: str) -> bytes:
    return array(bulk("pmessage"), bulk(pattern), bulk(topic), bulk(payload))


class Recorder:
    def __init__(self) -> None:
        self.calls: list[tuple[bytes, bytes, bytes]] = []

    def __call__(self, message: bytes, topic: bytes, subscribed: bytes) -> None:
        self.calls.append((message, topic, subscribed))


def test_subscribe_and_receive(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    received = Recorder()
    fake.server.reply(confirm("subscribe", "news", 1))

    r.subscribe("news", callback=received)

    assert r.is_subscriber
    assert fake.server.received() == request("SUBSCRIBE", "news")

    fake.server.reply(message("news", "hello"), message("news", "world"))

    assert r.wait_for_messages(0.05) == 2
    assert received.calls == [(b"hello", b"news", b"news"), (b"world", b"news", b"news")]


def test_pattern_subscription(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    received = Recorder()
    fake.server.reply(confirm("psubscribe", "news.*", 1), pmessage("news.*", "news.tech", "hello"))

    r.psubscribe("news.*", callback=received)

    assert r.wait_for_messages(0.05) == 1
    assert received.calls == [(b"hello", b"news.tech", b"news.*")]


def test_messages_ahead_of_confirmation_are_dispatched(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    first, second = Recorder(), Recorder()
    fake.server.reply(confirm("subscribe", "a", 1))
    r.subscribe("a", callback=first)

    fake.server.reply(message("a", "early"), confirm("subscribe", "b", 2))
    r.subscribe("b", callback=second)

    assert first.calls == [(b"early", b"a", b"a")]
    assert second.calls == []


def test_duplicate_topics_are_sent_once(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    fake.server.reply(confirm("subscribe", "news", 1))

    r.subscribe("news", b"news", callback=Recorder())

    assert fake.server.received() == request("SUBSCRIBE", "news")


def test_unsubscribe_only_after_last_callback(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    first, second = Recorder(), Recorder()
    fake.server.reply(confirm("subscribe", "news", 1), confirm("subscribe", "news", 1))
    r.subscribe("news", callback=first)
    r.subscribe("news", callback=second)
    fake.server.received()

    r.unsubscribe("news", callback=first)
    assert fake.server.received() == b""
    assert r.is_subscriber

    fake.server.reply(confirm("unsubscribe", "news", 0))
    r.unsubscribe("news", callback=second)

    assert fake.server.received() == request("UNSUBSCRIBE", "news")
    assert not r.is_subscriber


def test_both_callbacks_receive_message(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    first, second = Recorder(), Recorder()
    fake.server.reply(confirm("subscribe", "news", 1), confirm("subscribe", "news", 1))
    r.subscribe("news", callback=first)
    r.subscribe("news", callback=second)

    fake.server.reply(message("news", "hi"))
    r.wait_for_messages(0.05)

    assert first.calls == second.calls == [(b"hi", b"news", b"news")]


def test_message_without_callback_is_logged(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    fake.server.reply(confirm("subscribe", "news", 1))
    r.subscribe("news", callback=Recorder())

    fake.server.reply(message("other", "lost"))

    assert r.wait_for_messages(0.05) == 0


def test_pending_replies_are_read_before_subscribing(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    results: list[object] = []
    fake.server.reply(integer(5), confirm("subscribe", "news", 1))

    r.incr("k", callback=lambda value, _: results.append(value))
    r.subscribe("news", callback=Recorder())

    assert results == [5]


def test_wait_for_messages_raises_on_eof(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    fake.server.reply(confirm("subscribe", "news", 1))
    r.subscribe("news", callback=Recorder())
    fake.server.close()

    with pytest.raises(error.ServerEOFError):
        r.wait_for_messages(1)


def test_wait_for_messages_resubscribes_after_reconnect(fake: FakeRedis, make_client: MakeClient):
    r = make_client(reconnect=1)
    received = Recorder()
    fake.server.reply(confirm("subscribe", "news", 1))
    r.subscribe("news", callback=received)
    fake.server.close()

    fake.preload.extend([confirm("subscribe", "news", 1), message("news", "again")])

    assert r.wait_for_messages(0.05) == 1
    assert len(fake.servers) == 2
    assert fake.server.received() == request("SUBSCRIBE", "news")
    assert received.calls == [(b"again", b"news", b"news")]


def test_subscription_table():
    table = pubsub.SubscriptionTable()
    first, second = Recorder(), Recorder()
    key = (False, b"news")

    table.add(key, first)
    table.add(key, second)
    table.add((True, b"n*"), first)

    assert key in table
    assert table.topics(pattern=False) == [b"news"]
    assert table.topics(pattern=True) == [b"n*"]
    assert not table.remove(key, first)
    assert table.get(key) == (second,)
    assert table.remove(key, second)
    assert key not in table
    assert not table.remove(key, second)
    assert len(table) == 1


def test_ping_while_subscribed_dispatches_earlier_messages(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    received = Recorder()
    fake.server.reply(confirm("subscribe", "news", 1))
    r.subscribe("news", callback=received)
    fake.server.received()

    fake.server.reply(message("news", "hello"), array(bulk("pong"), bulk("")))

    assert r.ping() == [b"pong", b""]
    assert fake.server.received() == request("PING")
    assert received.calls == [(b"hello", b"news", b"news")]

    fake.server.reply(array(bulk("pong"), bulk("late")))
    assert r.wait_for_messages(0.05) == 0
    assert r.is_subscriber


def test_failed_unsubscribe_keeps_subscription(fake: FakeRedis, make_client: MakeClient):
    r = make_client()
    received = Recorder()
    fake.server.reply(confirm("subscribe", "news", 1))
    r.subscribe("news", callback=received)
    fake.server.close()

    with pytest.raises(error.ConnectionError):
        r.unsubscribe("news", callback=received)

    assert (False, b"news") in r._pubsub.table

    fake.preload.append(confirm("subscribe", "news", 1))
    r.connect()

    assert r.is_subscriber
    assert fake.server.received() == request("SUBSCRIBE", "news")


def test_subscription_table_is_last():
    table = pubsub.SubscriptionTable()
    first, second = Recorder(), Recorder()
    key = (False, b"news")

    assert not table.is_last(key, first)

    table.add(key, first)
    assert table.is_last(key, first)

    table.add(key, second)
    assert not table.is_last(key, first)
