"""Module containing byte stream transports."""

import collections.abc
import contextlib
import dataclasses
import socket
import ssl
import typing

from resplink import config, error, protocol

__all__: collections.abc.Sequence[str] = (
    "SocketTransport",
    "TcpTransport",
    "UnixTransport",
    "TlsTransport",
    "open_transport",
)


@contextlib.contextmanager
def _socket_errors(
    action: str,
    address: object,
    on_error: collections.abc.Callable[[], None],
) -> typing.Iterator[None]:
    try:
        yield

    except (socket.timeout, ssl.SSLWantReadError, ssl.SSLWantWriteError) as exc:
        on_error()
        msg = f"Timeout {action} '{address}'"
        raise error.TimeoutError(msg) from exc

    except OSError as exc:
        on_error()
        msg = f"Error {action} '{address}': {exc}"
        raise error.ConnectionError(msg) from exc


@dataclasses.dataclass(slots=True)
class SocketTransport:
    """Blocking transport over a connected socket.

    A single look-ahead byte backs ``try_read_one`` so that probing for data
    never consumes it.
    """

    _sock: socket.socket | None = dataclasses.field(repr=False)
    address: object
    read_timeout: float | None = None
    write_timeout: float | None = None
    _lookahead: bytes = dataclasses.field(default=b"", init=False, repr=False)

    @property
    def sock(self) -> socket.socket:
        if self._sock is None:
            msg = f"Transport to '{self.address}' is closed."
            raise error.StateError(msg)

        return self._sock

    def fileno(self) -> int:
        return self.sock.fileno()

    def write(self, data: bytes, /) -> int:
        sock = self.sock
        with _socket_errors("writing to", self.address, self.close):
            sock.settimeout(self.write_timeout)
            sock.sendall(data)

        return len(data)

    def recv(self, size: int, /) -> bytes:
        if self._lookahead:
            data, self._lookahead = self._lookahead, b""
            return data

        sock = self.sock
        with _socket_errors("reading from", self.address, self.close):
            sock.settimeout(self.read_timeout)
            return sock.recv(size)

    def pending(self) -> bool:
        return bool(self._lookahead)

    def try_read_one(self) -> protocol.ReadProbe:
        if self._lookahead:
            return protocol.ReadProbe.DATA

        sock = self.sock
        with _socket_errors("reading from", self.address, self.close):
            sock.setblocking(False)  # noqa: FBT003
            try:
                data = self._peek(sock)

            except (BlockingIOError, ssl.SSLWantReadError):
                return protocol.ReadProbe.NO_DATA

            finally:
                sock.settimeout(self.read_timeout)

        return protocol.ReadProbe.DATA if data else protocol.ReadProbe.EOF

    def _peek(self, sock: socket.socket) -> bytes:
        data = sock.recv(1)
        self._lookahead = data
        return data

    def close(self) -> None:
        if self._sock is None:
            return

        sock, self._sock = self._sock, None
        self._lookahead = b""
        sock.close()


@dataclasses.dataclass(slots=True)
class TcpTransport(SocketTransport):
    """Plain TCP transport."""

    def _peek(self, sock: socket.socket) -> bytes:
        return sock.recv(1, socket.MSG_PEEK)

    @classmethod
    def connect(
        cls,
        address: config.TcpAddress,
        *,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
    ) -> "TcpTransport":
        with _socket_errors("connecting to", address, lambda: None):
            sock = socket.create_connection(tuple(address), timeout=connect_timeout)

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return cls(sock, address, read_timeout=read_timeout, write_timeout=write_timeout)


@dataclasses.dataclass(slots=True)
class UnixTransport(SocketTransport):
    """UNIX domain socket transport."""

    def _peek(self, sock: socket.socket) -> bytes:
        return sock.recv(1, socket.MSG_PEEK)

    @classmethod
    def connect(
        cls,
        address: config.UnixAddress,
        *,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
    ) -> "UnixTransport":
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        with _socket_errors("connecting to", address, sock.close):
            sock.settimeout(connect_timeout)
            sock.connect(address.path)

        return cls(sock, address, read_timeout=read_timeout, write_timeout=write_timeout)


@dataclasses.dataclass(slots=True)
class TlsTransport(SocketTransport):
    """TLS transport over TCP.

    TLS sockets cannot peek, so the look-ahead byte is used for probing, and
    records already decrypted by the TLS layer count as pending data.
    """

    def pending(self) -> bool:
        if self._lookahead:
            return True

        sock = self.sock
        return isinstance(sock, ssl.SSLSocket) and sock.pending() > 0

    @classmethod
    def connect(
        cls,
        address: config.TcpAddress,
        *,
        context: ssl.SSLContext | None = None,
        connect_timeout: float | None = None,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
    ) -> "TlsTransport":
        context = context or ssl.create_default_context()
        with _socket_errors("connecting to", address, lambda: None):
            raw = socket.create_connection(tuple(address), timeout=connect_timeout)

        raw.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        with _socket_errors("negotiating TLS with", address, raw.close):
            sock = context.wrap_socket(raw, server_hostname=address.host)

        return cls(sock, address, read_timeout=read_timeout, write_timeout=write_timeout)


def open_transport(
    address: config.Address,
    *,
    use_ssl: bool = False,
    ssl_context: ssl.SSLContext | None = None,
    connect_timeout: float | None = None,
    read_timeout: float | None = None,
    write_timeout: float | None = None,
) -> protocol.TransportProto:
    """Open a transport to the provided address."""
    timeouts = {
        "connect_timeout": connect_timeout,
        "read_timeout": read_timeout,
        "write_timeout": write_timeout,
    }

    try:
        if isinstance(address, config.UnixAddress):
            if use_ssl:
                msg = "TLS is only supported over TCP"
                raise ValueError(msg)

            return UnixTransport.connect(address, **timeouts)

        if use_ssl:
            return TlsTransport.connect(address, context=ssl_context, **timeouts)

        return TcpTransport.connect(address, **timeouts)

    except error.ConnectionError as exc:
        msg = f"Could not connect to Redis server at '{address}': {exc.__cause__ or exc}"
        raise error.ConnectError(msg) from exc

    except error.TimeoutError as exc:
        msg = f"Timed out connecting to Redis server at '{address}'"
        raise error.ConnectError(msg) from exc
