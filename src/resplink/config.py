"""Module containing client configuration."""

import collections.abc
import dataclasses
import os
import ssl
import typing

__all__: collections.abc.Sequence[str] = (
    "DEFAULT_SERVER",
    "SERVER_ENV",
    "DEBUG_ENV",
    "TcpAddress",
    "UnixAddress",
    "Address",
    "ReconnectPolicy",
    "ClientConfig",
    "parse_server",
)


DEFAULT_SERVER: typing.Final = "127.0.0.1:6379"
SERVER_ENV: typing.Final = "REDIS_SERVER"
DEBUG_ENV: typing.Final = "REDIS_DEBUG"


class TcpAddress(typing.NamedTuple):
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class UnixAddress(typing.NamedTuple):
    path: str

    def __str__(self) -> str:
        return self.path


Address: typing.TypeAlias = TcpAddress | UnixAddress


def parse_server(server: str, /) -> Address:
    """Parse a server string into an address.

    Accepted forms are ``/path/to/socket``, ``unix:/path/to/socket``,
    ``host:port`` and ``tcp:host:port``.
    """
    if server.startswith("unix:"):
        path = server[len("unix:"):]
        if not path:
            msg = f"Missing socket path in server '{server}'"
            raise ValueError(msg)

        return UnixAddress(path)

    if server.startswith("/"):
        return UnixAddress(server)

    if server.startswith("tcp:"):
        server = server[len("tcp:"):]

    host, sep, port = server.rpartition(":")
    if not sep or not host or not port.isdigit():
        msg = f"Server '{server}' is not of the form 'host:port'"
        raise ValueError(msg)

    return TcpAddress(host.strip("[]"), int(port))


@dataclasses.dataclass(slots=True, frozen=True)
class ReconnectPolicy:
    """How long and how often to retry a lost connection.

    A ``max_seconds`` of zero disables reconnection.
    """

    max_seconds: float = 0
    delay: float = 0.001
    conservative: bool = False

    @property
    def enabled(self) -> bool:
        return self.max_seconds > 0


@dataclasses.dataclass(slots=True)
class ClientConfig:
    """Construction-time options of a ``Redis`` client."""

    server: str | None = None
    sentinels: collections.abc.Sequence[str] | None = None
    service: str | None = None

    reconnect: float = 0
    reconnect_delay: float = 0.001
    conservative_reconnect: bool = False

    connect_timeout: float | None = None
    read_timeout: float | None = None
    write_timeout: float | None = None

    username: str | None = None
    password: str | None = dataclasses.field(default=None, repr=False)

    name: str | collections.abc.Callable[[typing.Any], str | None] | None = None
    on_connect: collections.abc.Callable[[typing.Any], None] | None = dataclasses.field(
        default=None,
        repr=False,
    )
    auto_connect: bool = True
    database: int | None = None

    # Declared before the "ssl" flag, which shadows the module in the class body.
    ssl_context: ssl.SSLContext | None = dataclasses.field(default=None, repr=False)
    ssl: bool = False

    debug: bool = dataclasses.field(default_factory=lambda: bool(os.environ.get(DEBUG_ENV)))

    sentinel_connect_timeout: float = 0.1
    sentinel_read_timeout: float | None = None

    def __post_init__(self) -> None:
        if self.sentinels is not None:
            if self.server is not None:
                msg = "Options 'server' and 'sentinels' are mutually exclusive"
                raise ValueError(msg)

            if not self.sentinels:
                msg = "Option 'sentinels' needs at least one sentinel address"
                raise ValueError(msg)

            if not self.service:
                msg = "Option 'sentinels' requires the 'service' option"
                raise ValueError(msg)

        elif self.server is None:
            self.server = os.environ.get(SERVER_ENV) or DEFAULT_SERVER

        if self.reconnect < 0 or self.reconnect_delay < 0:
            msg = "Reconnect durations must not be negative"
            raise ValueError(msg)

    @property
    def address(self) -> Address | None:
        """The fixed server address, or ``None`` when it is resolved through sentinels."""
        if self.server is None:
            return None

        return parse_server(self.server)

    @property
    def reconnect_policy(self) -> ReconnectPolicy:
        return ReconnectPolicy(
            max_seconds=self.reconnect,
            delay=self.reconnect_delay,
            conservative=self.conservative_reconnect,
        )
