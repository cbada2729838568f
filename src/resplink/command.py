"""Module containing command implementation."""

import collections.abc
import dataclasses
import re
import typing

from resplink import protocol

if typing.TYPE_CHECKING:
    import typing_extensions

__all__: collections.abc.Sequence[str] = ("Command", "ArgT")


ArgT: typing.TypeAlias = str | bytes | int | float | None

_NAME_SEPARATOR: typing.Final = re.compile(r"\s+")


@dataclasses.dataclass(slots=True)
class Command:
    """A Redis command.

    This class handles encoding of arguments before they're accepted by a
    ``Connection``. Multi-word command names such as ``"SCRIPT LOAD"`` are
    split into separate words on the wire.
    """

    name: str
    arguments: list[bytes | None]

    def __init__(self, name: str | bytes, *args: ArgT) -> None:
        if isinstance(name, bytes):
            name = name.decode()

        words = [word.upper() for word in _NAME_SEPARATOR.split(name.strip()) if word]
        if not words:
            msg = "A command needs a name"
            raise ValueError(msg)

        self.name = " ".join(words)
        self.arguments = []
        for word in words:
            self.arg(word)

        for arg in args:
            self.arg(arg)

    def arg(self, value: ArgT) -> "typing_extensions.Self":
        """Add an argument to this command.

        Bytes are sent untouched, strings are UTF-8 encoded and numbers are
        sent in their decimal representation. ``None`` is sent as a null bulk
        string.
        """
        if value is None or isinstance(value, bytes):
            pass
        elif isinstance(value, str):
            value = value.encode()
        elif isinstance(value, int | float):
            value = repr(value).encode()
        else:
            msg = f"Cannot send argument of type {type(value).__name__} to Redis"
            raise TypeError(msg)

        self.arguments.append(value)
        return self

    def encode(self) -> bytes:
        """Encode this command as a RESP multi-bulk request."""
        parts = [b"*%i\r\n" % len(self.arguments)]
        for arg in self.arguments:
            if arg is None:
                parts.append(b"$-1\r\n")
                continue

            parts.append(b"$%i\r\n" % len(arg))
            parts.append(arg)
            parts.append(b"\r\n")

        return b"".join(parts)

    def execute(self, con: protocol.ConnectionProto, *, collect_errors: bool = False) -> typing.Any:  # noqa: ANN401
        """Execute this command on a given connection."""
        return con.call(self, collect_errors=collect_errors)

    def __str__(self) -> str:
        return " ".join(
            "(nil)" if arg is None else arg.decode("utf-8", errors="replace")
            for arg in self.arguments
        )

    def __len__(self) -> int:
        return len(self.arguments)

    def __iter__(self) -> collections.abc.Iterator[bytes | None]:
        return iter(self.arguments)
