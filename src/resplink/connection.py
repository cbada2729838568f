"""Module containing the connection state machine."""

import collections
import collections.abc
import dataclasses
import enum
import os
import select
import time
import typing

import structlog

from resplink import codec, command, config, error, protocol, transport

__all__: collections.abc.Sequence[str] = (
    "State",
    "PendingRequest",
    "Connection",
    "ConnectHook",
    "ReplyCallback",
)


logger = structlog.get_logger(__name__)

T = typing.TypeVar("T")

ConnectHook: typing.TypeAlias = collections.abc.Callable[["Connection"], None]
ReplyCallback: typing.TypeAlias = collections.abc.Callable[[typing.Any, error.RedisError | None], None]
AddressResolver: typing.TypeAlias = collections.abc.Callable[[], config.Address]

_NETWORK_ERRORS: typing.Final = (error.ConnectionError, error.TimeoutError, error.ProtocolError)


class State(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"


@dataclasses.dataclass(slots=True)
class PendingRequest:
    """A command that was sent and still awaits its reply."""

    command: str
    callback: ReplyCallback | None = None
    collect_errors: bool = False
    value: typing.Any = dataclasses.field(default=None, init=False, repr=False)
    err: error.RedisError | None = dataclasses.field(default=None, init=False)
    done: bool = dataclasses.field(default=False, init=False)

    def resolve(self, value: typing.Any, err: error.RedisError | None) -> None:  # noqa: ANN401
        self.value = value
        self.err = err
        self.done = True

        if self.callback is not None:
            self.callback(value, err)


def _describe(cmd: protocol.CommandProto) -> str:
    if cmd.name == "AUTH":
        return "AUTH (redacted)"

    return str(cmd)


@dataclasses.dataclass(slots=True)
class Connection:
    """Low-level connection implementation.

    This connection owns the transport, the read buffer and the queue of
    requests awaiting replies. Replies are matched to requests strictly in
    the order the requests were sent. It does not implement any higher-level
    commands.
    """

    options: config.ClientConfig
    resolve_address: AddressResolver | None = dataclasses.field(default=None, repr=False)

    state: State = dataclasses.field(default=State.DISCONNECTED, init=False)
    database: int | None = dataclasses.field(default=None, init=False)
    is_subscriber: bool = dataclasses.field(default=False, init=False)
    in_transaction: bool = dataclasses.field(default=False, init=False)
    in_watch: bool = dataclasses.field(default=False, init=False)
    pid: int | None = dataclasses.field(default=None, init=False, repr=False)

    _post_connect_hooks: dict[str, ConnectHook] = dataclasses.field(
        default_factory=dict,
        init=False,
        repr=False,
    )
    _transport: protocol.TransportProto | None = dataclasses.field(default=None, init=False, repr=False)
    _reader: codec.Reader | None = dataclasses.field(default=None, init=False, repr=False)
    _queue: collections.deque[PendingRequest] = dataclasses.field(
        default_factory=collections.deque,
        init=False,
        repr=False,
    )
    _policy: config.ReconnectPolicy = dataclasses.field(init=False, repr=False)
    _auth_failed: bool = dataclasses.field(default=False, init=False, repr=False)
    _ever_connected: bool = dataclasses.field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        self._policy = self.options.reconnect_policy
        self.database = self.options.database

    def __del__(self) -> None:
        if getattr(self, "_transport", None) is not None:
            self._close_transport()

    @property
    def reconnect_policy(self) -> config.ReconnectPolicy:
        return self._policy

    @property
    def reconnect_enabled(self) -> bool:
        """Whether lost connections are re-established.

        A rejected AUTH disables reconnecting for the rest of this connection's lifetime.
        """
        return self._policy.enabled and not self._auth_failed

    @property
    def pending_count(self) -> int:
        return len(self._queue)

    @property
    def transport(self) -> protocol.TransportProto | None:
        return self._transport

    def is_alive(self) -> bool:
        """Check whether this connection has an open transport."""
        return self._transport is not None

    def add_connect_hook(self, name: str, hook: ConnectHook) -> None:
        """Register a hook to run, in registration order, after every successful connect."""
        self._post_connect_hooks[name] = hook

    def _address(self) -> config.Address:
        if self.resolve_address is not None:
            return self.resolve_address()

        address = self.options.address
        assert address is not None
        return address

    def _close_transport(self) -> None:
        if self._transport is not None:
            self._transport.close()

        self._transport = None
        self._reader = None

    def _mark_failed(self) -> None:
        self._close_transport()
        self.state = State.ERROR

    def _fail_pending(self, exc: error.RedisError) -> None:
        pending = list(self._queue)
        self._queue.clear()
        self._mark_failed()

        if pending:
            logger.warning("failing pending requests", count=len(pending), error=str(exc))

        for request in pending:
            request.resolve(None, exc)

    def connect(self) -> None:
        """Connect to Redis with the connection parameters provided at instantiation.

        Any previous transport is dropped and requests still awaiting replies
        on it are abandoned. Credentials are sent and post-connect hooks run
        before this returns.
        """
        self._close_transport()
        if self._queue:
            logger.warning("abandoning pending requests", count=len(self._queue))
            self._queue.clear()

        self.state = State.CONNECTING
        options = self.options

        try:
            address = self._address()
            self._transport = transport.open_transport(
                address,
                use_ssl=options.ssl,
                ssl_context=options.ssl_context,
                connect_timeout=options.connect_timeout,
                read_timeout=options.read_timeout,
                write_timeout=options.write_timeout,
            )

        except BaseException:
            self.state = State.DISCONNECTED
            raise

        self._reader = codec.Reader(self._transport)
        self.pid = os.getpid()
        self.in_transaction = self.in_watch = False
        # Set again by the resubscribe hook when subscriptions are restored.
        self.is_subscriber = False
        self._ever_connected = True
        self.state = State.CONNECTED
        logger.info("connected", address=str(address))

        try:
            self._authenticate()

            for hook in self._post_connect_hooks.values():
                hook(self)

        except error.ReconnectNeeded as exc:
            msg = f"Connection lost while setting it up: {exc}"
            raise error.ConnectionError(msg) from exc.__cause__ or exc

    def _authenticate(self) -> None:
        options = self.options
        if options.password is None:
            return

        auth = command.Command("AUTH")
        if options.username is not None:
            auth.arg(options.username)

        auth.arg(options.password)

        try:
            self.call(auth)

        except error.CommandError as exc:
            self._auth_failed = True
            self._close_transport()
            self.state = State.DISCONNECTED
            msg = f"Redis server refused authentication: {exc.code} {exc.message}".rstrip()
            raise error.AuthError(msg) from exc

    def reconnect(self) -> None:
        """Connect again, retrying until the reconnect policy's time budget runs out."""
        policy = self._policy
        started = time.monotonic()
        attempts = 0

        while True:
            attempts += 1
            self.state = State.RECONNECTING

            try:
                self.connect()

            except error.ConnectionError as exc:
                elapsed = time.monotonic() - started
                if elapsed >= policy.max_seconds:
                    logger.warning("giving up reconnecting", attempts=attempts, elapsed=round(elapsed, 3))
                    raise

                logger.warning(
                    "reconnect attempt failed",
                    attempt=attempts,
                    elapsed=round(elapsed, 3),
                    error=str(exc),
                )
                time.sleep(policy.delay)

            else:
                logger.info("reconnected", attempts=attempts)
                return

    def _refuse_reconnect(self, reason: str, exc: error.ReconnectNeeded) -> typing.NoReturn:
        refused = error.ReconnectRefused(reason)
        self.in_transaction = self.in_watch = False
        self._fail_pending(refused)
        raise refused from exc.__cause__ or exc

    def with_reconnect(self, func: collections.abc.Callable[[], T], /) -> T:
        """Run ``func``, reconnecting and running it once more if the connection was lost."""
        try:
            return func()

        except error.ReconnectNeeded as exc:
            if self.in_transaction or self.in_watch:
                self._refuse_reconnect("reconnect disabled inside transaction or watch", exc)

            if self._policy.conservative and self._queue:
                self._refuse_reconnect(
                    "reconnect disabled while responses are pending and conservative reconnect is enabled",
                    exc,
                )

            self.reconnect()

        try:
            return func()

        except error.ReconnectNeeded as exc:
            msg = f"Connection lost again after reconnecting: {exc}"
            lost = error.ConnectionError(msg)
            self._fail_pending(lost)
            raise lost from exc.__cause__ or exc

    def _lost(self, reason: str, exc: error.RedisError | None = None) -> typing.NoReturn:
        if self.reconnect_enabled:
            self._mark_failed()
            raise error.ReconnectNeeded(reason) from exc

        if exc is None:
            exc = error.ConnectionError(reason)

        self._fail_pending(exc)
        raise exc

    def _ensure_connected(self) -> protocol.TransportProto:
        if self._transport is not None and self.pid != os.getpid():
            logger.info("process forked, reconnecting", parent_pid=self.pid, pid=os.getpid())
            # The parent still uses this socket, so it is dropped without any I/O.
            self._transport = self._reader = None
            self._queue.clear()
            self.connect()

        if self._transport is None:
            if not self._ever_connected:
                self.connect()

            elif self.reconnect_enabled:
                self._lost("Not connected to any server")

            else:
                msg = "Not connected to any server"
                raise error.StateError(msg)

        assert self._transport is not None
        return self._transport

    def write(self, cmd: protocol.CommandProto, /) -> None:
        """Write a command without queueing a request for its reply.

        Used for commands whose replies are read with ``read_reply``.
        """
        sock = self._ensure_connected()

        if self.reconnect_enabled:
            # A closed peer is only noticed here if the server dropped us while idle.
            try:
                probe = sock.try_read_one()

            except error.ConnectionError as exc:
                self._lost("Error probing connection", exc)

            if probe is protocol.ReadProbe.EOF:
                self._lost("Redis server closed connection")

        if self.options.debug:
            logger.debug("sending command", command=_describe(cmd))

        try:
            sock.write(cmd.encode())

        except error.ConnectionError as exc:
            self._lost(f"Could not write to Redis server: {exc}", exc)

        except error.TimeoutError as exc:
            self._fail_pending(exc)
            raise

    def send(self, cmd: protocol.CommandProto, request: PendingRequest, /) -> None:
        """Write a command and queue the request awaiting its reply."""
        self.write(cmd)
        self._queue.append(request)

    def read_reply(self, command_name: str, *, collect_errors: bool = False) -> codec.Reply:
        """Read one reply that is not tracked by the request queue.

        Used for pub/sub frames, which the server pushes without a request.
        """
        if self._reader is None:
            msg = "Not connected to any server"
            raise error.StateError(msg)

        try:
            reply = self._reader.read_reply(command_name, collect_errors=collect_errors)

        except _NETWORK_ERRORS:
            self._mark_failed()
            raise

        if self.options.debug:
            logger.debug("received reply", command=command_name, reply=reply[0], error=reply[1])

        return reply

    def wait_one_response(self) -> bool:
        """Read the reply to the oldest pending request and resolve it.

        Returns ``False`` if no request was pending.
        """
        if not self._queue:
            return False

        request = self._queue[0]
        try:
            value, err = self.read_reply(request.command, collect_errors=request.collect_errors)

        except _NETWORK_ERRORS as exc:
            self._fail_pending(exc)
            return True

        self._queue.popleft()
        request.resolve(value, err)
        return True

    def wait_all_responses(self) -> None:
        """Read and resolve the replies to all pending requests."""
        while self.wait_one_response():
            pass

    def call(self, cmd: protocol.CommandProto, /, *, collect_errors: bool = False) -> typing.Any:  # noqa: ANN401
        """Send a command and block until its reply has been read.

        Replies to requests pipelined before this one are resolved first.
        """
        request = PendingRequest(cmd.name, collect_errors=collect_errors)
        self.send(cmd, request)

        while not request.done:
            if not self.wait_one_response():
                msg = f"Reply to {cmd.name} was lost"
                raise error.ConnectionError(msg)

        if request.err is not None:
            raise request.err

        return request.value

    def can_read(self, timeout: float | None) -> bool:
        """Wait up to ``timeout`` seconds (``None`` waits forever) for input to arrive."""
        if self._reader is None or self._transport is None:
            msg = "Not connected to any server"
            raise error.StateError(msg)

        if self._reader.has_buffered():
            return True

        readable, _, _ = select.select([self._transport], [], [], timeout)
        return bool(readable)

    def has_pending_input(self) -> bool:
        """Check, without blocking, whether a reply can be read right away.

        Raises ``ServerEOFError`` when the server closed the connection.
        """
        if self._reader is None or self._transport is None:
            msg = "Not connected to any server"
            raise error.StateError(msg)

        if self._reader.has_buffered():
            return True

        try:
            probe = self._transport.try_read_one()

        except error.ConnectionError:
            self._mark_failed()
            raise

        if probe is protocol.ReadProbe.EOF:
            self._mark_failed()
            msg = "EOF from server"
            raise error.ServerEOFError(msg)

        return probe is protocol.ReadProbe.DATA

    def quit(self, cmd: protocol.CommandProto | None = None, /) -> None:
        """Send QUIT (or another closing command) after draining all pending replies.

        Does nothing if the connection is already closed.
        """
        if self._transport is None:
            return

        self.wait_all_responses()
        sock = self._transport
        if sock is None:
            return

        cmd = cmd or command.Command("QUIT")
        if self.options.debug:
            logger.debug("sending command", command=_describe(cmd))

        try:
            sock.write(cmd.encode())

        finally:
            self.close()

    def close(self) -> None:
        """Close the transport without sending anything."""
        if self._queue:
            logger.warning("abandoning pending requests", count=len(self._queue))
            self._queue.clear()

        self._close_transport()
        self.state = State.DISCONNECTED
