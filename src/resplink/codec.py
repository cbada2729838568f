"""Module containing the RESP reply decoder."""

import collections.abc
import dataclasses
import enum
import typing

from resplink import error, protocol

__all__: collections.abc.Sequence[str] = ("ReplyKind", "Reply", "Reader")


CRLF: typing.Final = b"\r\n"
DEFAULT_CHUNK_SIZE: typing.Final = 64 * 1024

Reply: typing.TypeAlias = tuple[typing.Any, error.CommandError | None]


class ReplyKind(bytes, enum.Enum):
    # https://redis.io/docs/latest/develop/reference/protocol-spec/#resp-protocol-description
    STATUS = b"+"
    ERROR = b"-"
    INTEGER = b":"
    BULK = b"$"
    ARRAY = b"*"


@dataclasses.dataclass(slots=True)
class Reader:
    """Buffered reader decoding RESP replies from a transport.

    Network data is pulled in large chunks into a growable buffer; lines and
    bulk payloads are sliced out of that buffer, so socket timeouts apply the
    same way to every kind of read.
    """

    transport: protocol.TransportProto
    chunk_size: int = DEFAULT_CHUNK_SIZE
    _buffer: bytearray = dataclasses.field(default_factory=bytearray, init=False, repr=False)
    _pos: int = dataclasses.field(default=0, init=False, repr=False)

    def has_buffered(self) -> bool:
        """Check whether unread bytes are held by this reader or its transport."""
        return len(self._buffer) > self._pos or self.transport.pending()

    def _fill(self) -> None:
        data = self.transport.recv(self.chunk_size)
        if not data:
            msg = "Redis server closed connection"
            raise error.ServerEOFError(msg)

        if self._pos:
            del self._buffer[: self._pos]
            self._pos = 0

        self._buffer += data

    def read_line(self) -> bytes:
        """Read up to the next CRLF, returning the line without it."""
        start = self._pos
        while (end := self._buffer.find(CRLF, start)) < 0:
            # A CR may already be buffered without its LF.
            start = max(len(self._buffer) - 1 - self._pos, 0)
            self._fill()
            start += self._pos

        line = bytes(self._buffer[self._pos : end])
        self._pos = end + len(CRLF)
        return line

    def read_exact(self, n: int) -> bytes:
        """Read exactly ``n`` bytes."""
        while len(self._buffer) - self._pos < n:
            self._fill()

        data = bytes(self._buffer[self._pos : self._pos + n])
        self._pos += n
        return data

    def _read_bulk(self, length: int) -> bytes:
        data = self.read_exact(length + len(CRLF))
        if data[-2:] != CRLF:
            msg = f"Bulk reply of {length} bytes is not terminated by CRLF"
            raise error.ProtocolError(msg)

        return data[:-2]

    @staticmethod
    def _parse_int(kind: bytes, payload: bytes) -> int:
        try:
            return int(payload)

        except ValueError:
            msg = f"Invalid length or integer in '{kind.decode()}' reply: {payload!r}"
            raise error.ProtocolError(msg) from None

    def read_reply(self, command: str, *, collect_errors: bool = False) -> Reply:
        """Decode exactly one reply frame.

        Returns a ``(value, error)`` pair. Status replies decode to ``str``,
        integers to ``int``, bulk strings to ``bytes`` and arrays to ``list``;
        null bulk strings and null arrays decode to ``None``. Error frames
        decode to ``(None, CommandError)``.

        With ``collect_errors`` set, the elements of a top-level array are
        ``(value, error)`` pairs. Otherwise the first error nested in an array
        becomes the error of the whole reply; the rest of the array is still
        consumed so that the stream stays aligned.
        """
        line = self.read_line()

        # First character is a symbol that determines the data type,
        # the rest is the actual data.
        kind, payload = line[:1], line[1:]

        if kind == ReplyKind.STATUS:
            return payload.decode("utf-8", errors="replace"), None

        if kind == ReplyKind.ERROR:
            return None, error.CommandError.from_response(command, payload)

        if kind == ReplyKind.INTEGER:
            return self._parse_int(kind, payload), None

        if kind == ReplyKind.BULK:
            length = self._parse_int(kind, payload)
            if length < 0:
                return None, None

            return self._read_bulk(length), None

        if kind == ReplyKind.ARRAY:
            count = self._parse_int(kind, payload)
            if count < 0:
                return None, None

            return self._read_array(command, count, collect_errors=collect_errors)

        msg = f"Unknown reply type {kind!r} ({payload!r})"
        raise error.ProtocolError(msg)

    def _read_array(self, command: str, count: int, *, collect_errors: bool) -> Reply:
        items: list[typing.Any] = []
        first_error: error.CommandError | None = None

        for _ in range(count):
            value, err = self.read_reply(command)

            if collect_errors:
                items.append((value, err))

            elif err is not None:
                first_error = first_error or err

            else:
                items.append(value)

        if first_error is not None:
            return None, first_error

        return items, None
