"""A pipelining Redis client speaking RESP over blocking sockets."""

import collections.abc

from resplink.client import Redis
from resplink.command import Command
from resplink.config import ClientConfig, ReconnectPolicy, TcpAddress, UnixAddress, parse_server
from resplink.error import (
    AuthError,
    CommandError,
    ConnectError,
    ConnectionError,  # noqa: A004
    ModeError,
    ProtocolError,
    ReconnectRefused,
    RedisError,
    ServerEOFError,
    StateError,
    TimeoutError,  # noqa: A004
    UsageError,
)
from resplink.pubsub import PubSub, SubscriptionTable
from resplink.sentinel import Sentinels
from resplink.views import RedisHash, RedisList

__all__: collections.abc.Sequence[str] = (
    "Redis",
    "Command",
    "ClientConfig",
    "ReconnectPolicy",
    "TcpAddress",
    "UnixAddress",
    "parse_server",
    "RedisError",
    "ConnectionError",
    "ConnectError",
    "ServerEOFError",
    "ReconnectRefused",
    "AuthError",
    "ProtocolError",
    "CommandError",
    "ModeError",
    "UsageError",
    "StateError",
    "TimeoutError",
    "PubSub",
    "SubscriptionTable",
    "Sentinels",
    "RedisList",
    "RedisHash",
)

__version__ = "0.1.0"
