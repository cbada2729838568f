"""Module containing protocols that prescribe resplink implementations."""

import collections.abc
import enum
import typing

__all__: collections.abc.Sequence[str] = (
    "ReadProbe",
    "TransportProto",
    "CommandProto",
    "ConnectionProto",
)


class ReadProbe(enum.Enum):
    """Outcome of a non-blocking single byte read probe."""

    DATA = enum.auto()
    NO_DATA = enum.auto()
    EOF = enum.auto()


class TransportProto(typing.Protocol):
    """Byte stream transport protocol."""

    def write(self, data: bytes, /) -> int:
        """Write all of ``data`` to the stream, returning the number of bytes written."""
        ...

    def recv(self, size: int, /) -> bytes:
        """Block until at least one byte is available and return up to ``size`` bytes.

        Returns an empty bytestring when the peer closed the stream.
        """
        ...

    def try_read_one(self) -> ReadProbe:
        """Check whether unread data is available without blocking and without losing it."""
        ...

    def pending(self) -> bool:
        """Check whether this transport already holds data it has not handed out."""
        ...

    def fileno(self) -> int: ...

    def close(self) -> None: ...


class CommandProto(typing.Protocol):
    """Redis command protocol."""

    name: str

    def arg(self, value: str | bytes | int | float | None) -> "CommandProto":
        """Add an argument to this command."""
        ...

    def encode(self) -> bytes:
        """Encode this command as a RESP multi-bulk request."""
        ...

    def __iter__(self) -> typing.Iterator[bytes | None]: ...

    def __len__(self) -> int: ...


class ConnectionProto(typing.Protocol):
    """Redis connection protocol."""

    def connect(self) -> None:
        """Connect to Redis with the connection parameters provided at instantiation."""
        ...

    def close(self) -> None:
        """Close the connection with Redis."""
        ...

    def call(self, command: CommandProto, /, *, collect_errors: bool = False) -> typing.Any:  # noqa: ANN401
        """Send a command and block until its reply has been read."""
        ...
