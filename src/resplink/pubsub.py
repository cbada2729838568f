"""Module containing the publish/subscribe router."""

import collections.abc
import dataclasses
import typing

import structlog

from resplink import command, connection, error

__all__: collections.abc.Sequence[str] = (
    "MessageCallback",
    "SubscriptionKey",
    "SubscriptionTable",
    "PubSub",
)


logger = structlog.get_logger(__name__)

MessageCallback: typing.TypeAlias = collections.abc.Callable[[bytes, bytes, bytes], None]
"""Called with ``(message, topic, subscribed_topic)``.

``subscribed_topic`` is the pattern that matched for pattern subscriptions,
and equal to ``topic`` otherwise.
"""

SubscriptionKey: typing.TypeAlias = tuple[bool, bytes]
"""``(is_pattern, topic)``."""

_MESSAGE: typing.Final = b"message"
_PMESSAGE: typing.Final = b"pmessage"
_PONG: typing.Final = b"pong"


def _topic_bytes(topic: str | bytes) -> bytes:
    return topic if isinstance(topic, bytes) else topic.encode()


@dataclasses.dataclass(slots=True)
class SubscriptionTable:
    """Callbacks registered per subscribed topic or pattern.

    A key is only present while at least one callback is registered for it.
    """

    _callbacks: dict[SubscriptionKey, list[MessageCallback]] = dataclasses.field(default_factory=dict)

    def add(self, key: SubscriptionKey, callback: MessageCallback) -> None:
        self._callbacks.setdefault(key, []).append(callback)

    def remove(self, key: SubscriptionKey, callback: MessageCallback) -> bool:
        """Remove ``callback`` from ``key``, returning whether ``key`` lost its last callback."""
        callbacks = self._callbacks.get(key)
        if callbacks is None:
            return False

        callbacks[:] = [cb for cb in callbacks if cb != callback]
        if callbacks:
            return False

        del self._callbacks[key]
        return True

    def get(self, key: SubscriptionKey) -> collections.abc.Sequence[MessageCallback]:
        return tuple(self._callbacks.get(key, ()))

    def topics(self, *, pattern: bool) -> list[bytes]:
        return [topic for is_pattern, topic in self._callbacks if is_pattern is pattern]

    def is_last(self, key: SubscriptionKey, callback: MessageCallback) -> bool:
        """Check whether removing ``callback`` would leave ``key`` without callbacks."""
        callbacks = self._callbacks.get(key)
        return bool(callbacks) and all(cb == callback for cb in callbacks)

    def __contains__(self, key: object) -> bool:
        return key in self._callbacks

    def __len__(self) -> int:
        return len(self._callbacks)

    def __iter__(self) -> collections.abc.Iterator[SubscriptionKey]:
        return iter(self._callbacks)


@dataclasses.dataclass(slots=True)
class PubSub:
    """Publish/subscribe router layered on a ``Connection``.

    Subscription confirmations and messages arrive on the same connection as
    regular replies; while any subscription is active the connection only
    accepts the subscription commands, PING and QUIT.
    """

    connection: connection.Connection
    table: SubscriptionTable = dataclasses.field(default_factory=SubscriptionTable)

    def subscribe(self, *topics: str | bytes, callback: MessageCallback) -> None:
        """Subscribe ``callback`` to messages published to ``topics``."""
        self._subscribe(topics, callback, pattern=False)

    def psubscribe(self, *patterns: str | bytes, callback: MessageCallback) -> None:
        """Subscribe ``callback`` to messages published to topics matching ``patterns``."""
        self._subscribe(patterns, callback, pattern=True)

    def unsubscribe(self, *topics: str | bytes, callback: MessageCallback) -> None:
        """Remove ``callback`` from ``topics``.

        A topic is only unsubscribed from the server once its last callback is removed.
        """
        self._unsubscribe(topics, callback, pattern=False)

    def punsubscribe(self, *patterns: str | bytes, callback: MessageCallback) -> None:
        """Remove ``callback`` from ``patterns``."""
        self._unsubscribe(patterns, callback, pattern=True)

    def _subscribe(
        self,
        topics: collections.abc.Sequence[str | bytes],
        callback: MessageCallback,
        *,
        pattern: bool,
    ) -> None:
        name = "PSUBSCRIBE" if pattern else "SUBSCRIBE"
        if not topics:
            msg = f"{name} needs at least one topic"
            raise error.UsageError(msg)

        if not callable(callback):
            msg = f"Missing required callback in call to {name}"
            raise error.UsageError(msg)

        con = self.connection
        # Replies to pipelined commands must be read before confirmations arrive.
        con.wait_all_responses()

        keys = list(dict.fromkeys((pattern, _topic_bytes(topic)) for topic in topics))
        cmd = command.Command(name, *(topic for _, topic in keys))
        con.with_reconnect(lambda: con.write(cmd))
        self._process_subscription_changes(name, dict.fromkeys(keys, callback))

    def _unsubscribe(
        self,
        topics: collections.abc.Sequence[str | bytes],
        callback: MessageCallback,
        *,
        pattern: bool,
    ) -> None:
        name = "PUNSUBSCRIBE" if pattern else "UNSUBSCRIBE"
        if not callable(callback):
            msg = f"Missing required callback in call to {name}"
            raise error.UsageError(msg)

        requested = list(dict.fromkeys((pattern, _topic_bytes(topic)) for topic in topics))
        keys = [key for key in requested if self.table.is_last(key, callback)]

        # The table is only changed once the server was told, so a failed write keeps it intact.
        if keys:
            con = self.connection
            cmd = command.Command(name, *(topic for _, topic in keys))
            con.with_reconnect(lambda: con.write(cmd))

        for key in requested:
            self.table.remove(key, callback)

        if keys:
            self._process_subscription_changes(name, dict.fromkeys(keys))

    def _process_subscription_changes(
        self,
        name: str,
        expected: dict[SubscriptionKey, MessageCallback | None],
    ) -> None:
        con = self.connection
        while expected:
            frame = self._read_frame(name)
            kind = frame[0]

            # Messages for existing subscriptions may be queued ahead of the confirmations.
            if kind in (_MESSAGE, _PMESSAGE):
                self._process_message(frame)
                continue

            if not kind.endswith(b"subscribe"):
                msg = f"Unexpected {kind!r} reply while processing {name}"
                raise error.ProtocolError(msg)

            key = (kind.startswith(b"p"), frame[1])
            callback = expected.pop(key, None)
            if callback is not None and not kind.endswith(b"unsubscribe"):
                self.table.add(key, callback)

            con.is_subscriber = bool(frame[2])

    def _read_frame(self, name: str) -> list[typing.Any]:
        frame, err = self.connection.read_reply(name)
        if err is not None:
            raise err

        if not isinstance(frame, list) or len(frame) < 2 or not isinstance(frame[0], bytes):  # noqa: PLR2004
            msg = f"Malformed pub/sub frame: {frame!r}"
            raise error.ProtocolError(msg)

        frame[0] = frame[0].lower()
        # Replies to PING are the only two element frames.
        if len(frame) < 3 and frame[0] != _PONG:  # noqa: PLR2004
            msg = f"Malformed pub/sub frame: {frame!r}"
            raise error.ProtocolError(msg)

        return frame

    def ping(self, *args: command.ArgT) -> list[typing.Any]:
        """Send PING on a subscribed connection and return the ``pong`` frame.

        Messages that arrive ahead of the reply are dispatched to their callbacks.
        """
        con = self.connection
        cmd = command.Command("PING", *args)
        con.with_reconnect(lambda: con.write(cmd))

        while True:
            frame = self._read_frame("PING")
            kind = frame[0]

            if kind == _PONG:
                return frame

            if kind in (_MESSAGE, _PMESSAGE):
                self._process_message(frame)

            elif kind.endswith(b"subscribe"):
                con.is_subscriber = bool(frame[2])

            else:
                msg = f"Unexpected {kind!r} reply while processing PING"
                raise error.ProtocolError(msg)

    def _process_message(self, frame: list[typing.Any]) -> bool:
        if frame[0] == _PMESSAGE:
            _, subscribed, topic, message = frame[:4]
            key = (True, subscribed)

        else:
            _, topic, message = frame[:3]
            subscribed = topic
            key = (False, topic)

        callbacks = self.table.get(key)
        if not callbacks:
            logger.warning(
                "message without expected callback",
                topic=topic.decode("utf-8", errors="replace"),
                pattern=key[0],
            )
            return False

        for callback in callbacks:
            callback(message, topic, subscribed)

        return True

    def resubscribe(self, con: connection.Connection, /) -> None:
        """Subscribe a fresh connection to every topic and pattern in the table."""
        if not self.table:
            return

        for pattern in (False, True):
            topics = self.table.topics(pattern=pattern)
            if not topics:
                continue

            name = "PSUBSCRIBE" if pattern else "SUBSCRIBE"
            con.write(command.Command(name, *topics))
            self._process_subscription_changes(name, dict.fromkeys((pattern, topic) for topic in topics))

    def wait_for_messages(self, timeout: float = 0) -> int:
        """Block and dispatch messages to their callbacks.

        Waits until no message arrived for ``timeout`` seconds; a timeout of
        zero waits forever. Returns the number of messages dispatched. If the
        server closes the connection, ``ServerEOFError`` is raised, unless
        reconnecting is enabled, in which case the connection is restored
        and resubscribed and waiting resumes.
        """
        con = self.connection
        wait = timeout or None
        count = 0

        while True:
            try:
                while con.can_read(wait):
                    while con.has_pending_input():
                        frame = self._read_frame("WAIT_FOR_MESSAGES")
                        if frame[0] in (_MESSAGE, _PMESSAGE):
                            count += self._process_message(frame)

                        elif frame[0] == _PONG:
                            logger.debug("ignoring pong outside of PING")

                        elif frame[0].endswith(b"subscribe"):
                            con.is_subscriber = bool(frame[2])

                return count

            except error.ServerEOFError:
                if not con.reconnect_enabled:
                    raise

                logger.warning("server closed connection while waiting for messages")
                con.reconnect()
