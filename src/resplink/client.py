"""Module containing Redis client implementation."""

import collections.abc
import dataclasses
import types
import typing
import urllib.parse

from resplink import command, config, connection, error, pubsub, sentinel, transform

if typing.TYPE_CHECKING:
    import typing_extensions

__all__: collections.abc.Sequence[str] = ("Redis",)


T = typing.TypeVar("T")

ArgT: typing.TypeAlias = command.ArgT
ReplyCallback: typing.TypeAlias = connection.ReplyCallback

SUBSCRIBER_COMMANDS: typing.Final = frozenset(
    ("SUBSCRIBE", "UNSUBSCRIBE", "PSUBSCRIBE", "PUNSUBSCRIBE", "PING", "QUIT"),
)
"""Commands allowed while the connection has active subscriptions."""

SYNC_ONLY_COMMANDS: typing.Final = frozenset(("PING", "SHUTDOWN", "QUIT"))

_PUBSUB_COMMANDS: typing.Final = frozenset(("SUBSCRIBE", "UNSUBSCRIBE", "PSUBSCRIBE", "PUNSUBSCRIBE"))

# Command names handled by a method of the same (lower case) name instead of
# the generic path.
_SPECIAL_COMMANDS: typing.Final = frozenset(
    (
        "SELECT",
        "INFO",
        "KEYS",
        "MULTI",
        "EXEC",
        "DISCARD",
        "WATCH",
        "UNWATCH",
        "PING",
        "SHUTDOWN",
        "QUIT",
        *_PUBSUB_COMMANDS,
    ),
)


@dataclasses.dataclass(slots=True)
class Redis:
    """Redis client implementation.

    Any command can be sent with ``execute_command``. Without a ``callback``
    the call blocks until the reply arrives and returns it, raising
    ``CommandError`` if the server replied with an error. With a ``callback``
    the command is pipelined: it is sent right away and ``callback(value,
    error)`` is called once its reply is read by a later blocking call or by
    ``wait_all_responses``.
    """

    options: config.ClientConfig
    connection: connection.Connection
    _pubsub: pubsub.PubSub = dataclasses.field(repr=False)

    def __init__(self, options: config.ClientConfig | None = None, /, **kwargs: typing.Any) -> None:  # noqa: ANN401
        if options is None:
            options = config.ClientConfig(**kwargs)

        elif kwargs:
            options = dataclasses.replace(options, **kwargs)

        resolver = None
        if options.sentinels:
            assert options.service is not None
            sentinels = sentinel.Sentinels(
                list(options.sentinels),
                connect_timeout=options.sentinel_connect_timeout,
                read_timeout=options.sentinel_read_timeout,
            )
            resolver = sentinels.resolver(options.service)

        self.options = options
        self.connection = connection.Connection(options, resolve_address=resolver)
        self._pubsub = pubsub.PubSub(self.connection)

        self.connection.add_connect_hook("SELECT", self._restore_database)
        self.connection.add_connect_hook("CLIENT SETNAME", self._set_name)
        self.connection.add_connect_hook("SUBSCRIBE", self._pubsub.resubscribe)
        self.connection.add_connect_hook("on_connect", self._on_connect)

        if options.auto_connect:
            self.connection.connect()

    @classmethod
    def from_url(cls, url: str, **kwargs: typing.Any) -> "Redis":  # noqa: ANN401
        """Create a Redis client from a Redis url.

        Supported are ``redis://[[user]:password@]host[:port][/db]``, the TLS
        variant ``rediss://`` and ``unix:///path/to/socket``.
        """
        parsed = urllib.parse.urlparse(url)

        if parsed.scheme == "unix":
            if not parsed.path:
                msg = "Unix socket urls need a path, as in 'unix:///path/to/socket'"
                raise ValueError(msg)

            kwargs.setdefault("server", f"unix:{parsed.path}")

        elif parsed.scheme in ("redis", "rediss"):
            if not parsed.hostname:
                msg = "Only urls of scheme 'redis://host:port' are supported"
                raise ValueError(msg)

            host = f"[{parsed.hostname}]" if ":" in parsed.hostname else parsed.hostname
            kwargs.setdefault("server", f"{host}:{parsed.port or 6379}")
            kwargs.setdefault("ssl", parsed.scheme == "rediss")

            database = parsed.path.strip("/")
            if database:
                kwargs.setdefault("database", int(database))

        else:
            msg = f"Unsupported url scheme '{parsed.scheme}'"
            raise ValueError(msg)

        if parsed.username:
            kwargs.setdefault("username", urllib.parse.unquote(parsed.username))

        if parsed.password:
            kwargs.setdefault("password", urllib.parse.unquote(parsed.password))

        return cls(**kwargs)

    def _restore_database(self, con: connection.Connection) -> None:
        if con.database is not None:
            command.Command("SELECT", con.database).execute(con)

    def _set_name(self, con: connection.Connection) -> None:
        name = self.options.name
        if callable(name):
            name = name(self)

        if name:
            command.Command("CLIENT SETNAME", name).execute(con)

    def _on_connect(self, _con: connection.Connection) -> None:
        if self.options.on_connect is not None:
            self.options.on_connect(self)

    @property
    def is_subscriber(self) -> bool:
        return self.connection.is_subscriber

    def is_alive(self) -> bool:
        return self.connection.is_alive()

    def connect(self) -> None:
        """(Re)connect to Redis, abandoning replies still pending on the previous connection."""
        self.connection.connect()

    def _check_mode(self, name: str) -> None:
        if self.connection.is_subscriber and name not in SUBSCRIBER_COMMANDS:
            msg = f"Cannot use command '{name}' while in SUBSCRIBE mode"
            raise error.ModeError(msg)

    def _execute(
        self,
        cmd: command.Command,
        callback: ReplyCallback | None = None,
        *,
        collect_errors: bool = False,
    ) -> typing.Any:  # noqa: ANN401
        self._check_mode(cmd.name)

        if callback is not None and cmd.name in SYNC_ONLY_COMMANDS:
            msg = f"{cmd.name} cannot be pipelined"
            raise error.UsageError(msg)

        con = self.connection
        if callback is None:
            return con.with_reconnect(lambda: con.call(cmd, collect_errors=collect_errors))

        request = connection.PendingRequest(cmd.name, callback, collect_errors)
        con.with_reconnect(lambda: con.send(cmd, request))
        return None

    def _execute_transformed(
        self,
        cmd: command.Command,
        func: collections.abc.Callable[[typing.Any], T],
        callback: ReplyCallback | None = None,
    ) -> T | None:
        if callback is None:
            return func(self._execute(cmd))

        def _transformed(value: typing.Any, err: error.RedisError | None) -> None:  # noqa: ANN401
            callback(value if err is not None else func(value), err)

        return self._execute(cmd, _transformed)

    def execute_command(
        self,
        name: str | bytes,
        *args: ArgT,
        callback: ReplyCallback | None = None,
    ) -> typing.Any:  # noqa: ANN401
        """Send any Redis command.

        Commands with extra client-side behaviour (SELECT, INFO, KEYS, the
        transaction commands, PING, SHUTDOWN, QUIT and the subscription
        commands) are routed to the method of the same name.
        """
        cmd = command.Command(name, *args)
        if cmd.name in _SPECIAL_COMMANDS:
            method = getattr(self, cmd.name.lower())
            if cmd.name in _PUBSUB_COMMANDS:
                return method(*args, callback=callback)

            if callback is None:
                return method(*args)

            if cmd.name in SYNC_ONLY_COMMANDS:
                msg = f"{cmd.name} cannot be pipelined"
                raise error.UsageError(msg)

            return method(*args, callback=callback)

        return self._execute(cmd, callback)

    def wait_one_response(self) -> bool:
        """Read the oldest pending reply and call its callback.

        Returns ``False`` if there was nothing pending.
        """
        return self.connection.wait_one_response()

    def wait_all_responses(self) -> None:
        """Read all pending replies, calling their callbacks in the order the commands were sent."""
        self.connection.wait_all_responses()

    # Commands with extra logic

    def select(self, database: int, *, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: ANN401
        """Select the logical database.

        A blocking SELECT of the database that is already selected is not sent.
        The selection is restored whenever the client reconnects.
        """
        self._check_mode("SELECT")
        con = self.connection
        database = int(database)

        if callback is None:
            if con.database == database and con.is_alive():
                return "OK"

            result = self._execute(command.Command("SELECT", database))
            con.database = database
            return result

        def _selected(value: typing.Any, err: error.RedisError | None) -> None:  # noqa: ANN401
            if err is None:
                con.database = database

            callback(value, err)

        return self._execute(command.Command("SELECT", database), _selected)

    def info(self, *sections: ArgT, callback: ReplyCallback | None = None) -> dict[str, str] | None:
        """Fetch server information as a flat mapping."""
        return self._execute_transformed(command.Command("INFO", *sections), transform.transform_info, callback)

    def keys(self, pattern: ArgT = "*", *, callback: ReplyCallback | None = None) -> list[bytes] | None:
        """List the keys matching ``pattern``."""
        return self._execute_transformed(command.Command("KEYS", pattern), transform.transform_keys, callback)

    def multi(self, *, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: ANN401
        """Start a transaction.

        Until EXEC or DISCARD, a lost connection is not re-established automatically.
        """
        result = self._execute(command.Command("MULTI"), callback)
        self.connection.in_transaction = True
        return result

    def _end_transaction(
        self,
        cmd: command.Command,
        callback: ReplyCallback | None,
        *,
        transaction: bool = True,
        collect_errors: bool = False,
    ) -> typing.Any:  # noqa: ANN401
        con = self.connection

        def _clear() -> None:
            if transaction:
                con.in_transaction = False

            con.in_watch = False

        if callback is None:
            try:
                return self._execute(cmd, collect_errors=collect_errors)

            finally:
                _clear()

        # Pipelined, the transaction only ends once the server answered.
        def _ended(value: typing.Any, err: error.RedisError | None) -> None:  # noqa: ANN401
            _clear()
            callback(value, err)

        return self._execute(cmd, _ended, collect_errors=collect_errors)

    def exec(self, *, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: A003, ANN401
        """Execute a transaction.

        Returns one ``(value, error)`` pair per queued command, so that a
        failing command does not hide the results of the others. Returns
        ``None`` if a watched key was modified.
        """
        return self._end_transaction(command.Command("EXEC"), callback, collect_errors=True)

    def discard(self, *, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: ANN401
        return self._end_transaction(command.Command("DISCARD"), callback)

    def watch(self, *keys: ArgT, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: ANN401
        result = self._execute(command.Command("WATCH", *keys), callback)
        self.connection.in_watch = True
        return result

    def unwatch(self, *, callback: ReplyCallback | None = None) -> typing.Any:  # noqa: ANN401
        return self._end_transaction(command.Command("UNWATCH"), callback, transaction=False)

    def ping(self, *args: ArgT) -> typing.Any:  # noqa: ANN401
        """Check the server is alive.

        On a subscribed connection the ``pong`` frame is returned, and
        messages received before it are dispatched. The connection is closed
        if the check fails.
        """
        try:
            if self.connection.is_subscriber:
                return self._pubsub.ping(*args)

            return self._execute(command.Command("PING", *args))

        except (error.ModeError, error.UsageError):
            raise

        except error.RedisError:
            self.connection.close()
            raise

    def shutdown(self, *args: ArgT) -> None:
        """Ask the server to shut down and close the connection."""
        cmd = command.Command("SHUTDOWN", *args)
        self._check_mode(cmd.name)

        try:
            self.connection.quit(cmd)

        except error.RedisError:
            self.connection.close()
            raise

    def quit(self) -> None:
        """Close the connection after reading all pending replies.

        Does nothing if the connection is already closed.
        """
        self.connection.quit()

    # Publish/subscribe

    def subscribe(self, *topics: str | bytes, callback: pubsub.MessageCallback) -> None:
        """Subscribe to topics; ``callback(message, topic, topic)`` is called per message."""
        self._pubsub.subscribe(*topics, callback=callback)

    def psubscribe(self, *patterns: str | bytes, callback: pubsub.MessageCallback) -> None:
        """Subscribe to topic patterns; ``callback(message, topic, pattern)`` is called per message."""
        self._pubsub.psubscribe(*patterns, callback=callback)

    def unsubscribe(self, *topics: str | bytes, callback: pubsub.MessageCallback) -> None:
        self._pubsub.unsubscribe(*topics, callback=callback)

    def punsubscribe(self, *patterns: str | bytes, callback: pubsub.MessageCallback) -> None:
        self._pubsub.punsubscribe(*patterns, callback=callback)

    def wait_for_messages(self, timeout: float = 0) -> int:
        """Dispatch incoming messages until none arrived for ``timeout`` seconds (0 waits forever)."""
        return self._pubsub.wait_for_messages(timeout)

    # Scan iteration

    def _scan(
        self,
        name: str,
        key: ArgT | None,
        match: ArgT | None,
        count: int | None,
    ) -> collections.abc.Iterator[typing.Any]:
        cursor = 0
        while True:
            cmd = command.Command(name)
            if key is not None:
                cmd.arg(key)

            cmd.arg(cursor)
            if match is not None:
                cmd.arg("MATCH").arg(match)

            if count is not None:
                cmd.arg("COUNT").arg(count)

            cursor, items = transform.transform_scan(self._execute(cmd))
            yield from items

            if cursor == 0:
                return

    def scan_iter(self, match: ArgT | None = None, count: int | None = None) -> collections.abc.Iterator[bytes]:
        """Iterate over the keyspace with SCAN."""
        return self._scan("SCAN", None, match, count)

    def sscan_iter(
        self,
        key: ArgT,
        match: ArgT | None = None,
        count: int | None = None,
    ) -> collections.abc.Iterator[bytes]:
        """Iterate over the members of a set with SSCAN."""
        return self._scan("SSCAN", key, match, count)

    def hscan_iter(
        self,
        key: ArgT,
        match: ArgT | None = None,
        count: int | None = None,
    ) -> collections.abc.Iterator[tuple[bytes, bytes]]:
        """Iterate over the ``(field, value)`` pairs of a hash with HSCAN."""
        items = self._scan("HSCAN", key, match, count)
        return zip(items, items, strict=True)

    def zscan_iter(
        self,
        key: ArgT,
        match: ArgT | None = None,
        count: int | None = None,
    ) -> collections.abc.Iterator[tuple[bytes, float]]:
        """Iterate over the ``(member, score)`` pairs of a sorted set with ZSCAN."""
        items = self._scan("ZSCAN", key, match, count)
        return ((member, float(score)) for member, score in zip(items, items, strict=True))

    def every(
        self,
        callback: collections.abc.Callable[[bytes], object],
        match: ArgT | None = None,
        count: int | None = None,
    ) -> int:
        """Call ``callback`` with every key matching ``match``, returning how many keys were seen."""
        seen = 0
        for key in self.scan_iter(match, count):
            callback(key)
            seen += 1

        return seen

    # Convenience wrappers

    def get(self, key: ArgT, *, callback: ReplyCallback | None = None) -> bytes | None:
        return self._execute(command.Command("GET", key), callback)

    def set(  # noqa: A003
        self,
        key: ArgT,
        value: ArgT,
        *,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
        xx: bool = False,
        callback: ReplyCallback | None = None,
    ) -> str | None:
        cmd = command.Command("SET", key, value)
        if ex is not None:
            cmd.arg("EX").arg(ex)

        if px is not None:
            cmd.arg("PX").arg(px)

        if nx:
            cmd.arg("NX")

        if xx:
            cmd.arg("XX")

        return self._execute(cmd, callback)

    def delete(self, *keys: ArgT, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("DEL", *keys), callback)

    def exists(self, *keys: ArgT, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("EXISTS", *keys), callback)

    def incr(self, key: ArgT, *, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("INCR", key), callback)

    def decr(self, key: ArgT, *, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("DECR", key), callback)

    def expire(self, key: ArgT, seconds: int, *, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("EXPIRE", key, seconds), callback)

    def ttl(self, key: ArgT, *, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("TTL", key), callback)

    def lpush(self, key: ArgT, *values: ArgT, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("LPUSH", key, *values), callback)

    def rpush(self, key: ArgT, *values: ArgT, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("RPUSH", key, *values), callback)

    def lrange(
        self,
        key: ArgT,
        start: int,
        stop: int,
        *,
        callback: ReplyCallback | None = None,
    ) -> list[bytes] | None:
        return self._execute(command.Command("LRANGE", key, start, stop), callback)

    def hget(self, key: ArgT, field: ArgT, *, callback: ReplyCallback | None = None) -> bytes | None:
        return self._execute(command.Command("HGET", key, field), callback)

    def hset(
        self,
        key: ArgT,
        mapping: collections.abc.Mapping[ArgT, ArgT],
        *,
        callback: ReplyCallback | None = None,
    ) -> int | None:
        cmd = command.Command("HSET", key)
        for field, value in mapping.items():
            cmd.arg(field).arg(value)

        return self._execute(cmd, callback)

    def hgetall(self, key: ArgT, *, callback: ReplyCallback | None = None) -> dict[bytes, bytes] | None:
        return self._execute_transformed(command.Command("HGETALL", key), transform.pairwise_to_dict, callback)

    def publish(self, topic: ArgT, message: ArgT, *, callback: ReplyCallback | None = None) -> int | None:
        """Publish ``message`` to ``topic``, returning the number of subscribers that received it."""
        return self._execute(command.Command("PUBLISH", topic, message), callback)

    def echo(self, message: ArgT, *, callback: ReplyCallback | None = None) -> bytes | None:
        return self._execute(command.Command("ECHO", message), callback)

    def dbsize(self, *, callback: ReplyCallback | None = None) -> int | None:
        return self._execute(command.Command("DBSIZE"), callback)

    def flushdb(self, *, callback: ReplyCallback | None = None) -> str | None:
        return self._execute(command.Command("FLUSHDB"), callback)

    def __enter__(self) -> "typing_extensions.Self":
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_value: BaseException | None,
        _exc_tb: types.TracebackType | None,
    ) -> None:
        self.quit()
