"""RESP frame builders and a scripted fake server for unit tests."""

import dataclasses
import socket

from resplink import config, error, transport


def status(text: str) -> bytes:
    return b"+" + text.encode() + b"\r\n"


def err(text: str) -> bytes:
    return b"-" + text.encode() + b"\r\n"


def integer(value: int) -> bytes:
    return b":%i\r\n" % value


def bulk(data: bytes | str | None) -> bytes:
    if data is None:
        return b"$-1\r\n"

    if isinstance(data, str):
        data = data.encode()

    return b"$%i\r\n" % len(data) + data + b"\r\n"


def array(*items: bytes) -> bytes:
    return b"*%i\r\n" % len(items) + b"".join(items)


def command(*words: bytes | str) -> bytes:
    """Encode a request the way a client writes it."""
    return array(*(bulk(word) for word in words))


@dataclasses.dataclass
class FakeServer:
    """Server end of a socket pair."""

    sock: socket.socket

    def reply(self, *frames: bytes) -> None:
        self.sock.sendall(b"".join(frames))

    def received(self) -> bytes:
        """Return everything the client wrote since the last call."""
        chunks = []
        self.sock.setblocking(False)
        try:
            while True:
                try:
                    data = self.sock.recv(65536)

                except BlockingIOError:
                    break

                if not data:
                    break

                chunks.append(data)

        finally:
            self.sock.setblocking(True)

        return b"".join(chunks)

    def close(self) -> None:
        self.received()
        self.sock.close()


@dataclasses.dataclass
class FakeRedis:
    """Replaces ``transport.open_transport`` with in-process socket pairs.

    ``preload`` frames are sent as soon as the next connection is opened, which
    is how replies to AUTH and the post-connect hooks are scripted.
    """

    servers: list[FakeServer] = dataclasses.field(default_factory=list)
    preload: list[bytes] = dataclasses.field(default_factory=list)
    addresses: list[config.Address] = dataclasses.field(default_factory=list)
    fail_connects: int = 0

    @property
    def server(self) -> FakeServer:
        return self.servers[-1]

    def open_transport(
        self,
        address: config.Address,
        *,
        read_timeout: float | None = None,
        write_timeout: float | None = None,
        **_kwargs: object,
    ) -> transport.SocketTransport:
        self.addresses.append(address)
        if self.fail_connects:
            self.fail_connects -= 1
            msg = f"Could not connect to Redis server at '{address}': refused"
            raise error.ConnectError(msg)

        client_sock, server_sock = socket.socketpair()
        server = FakeServer(server_sock)
        server.reply(*self.preload)
        self.preload.clear()
        self.servers.append(server)

        return transport.UnixTransport(
            client_sock,
            address,
            read_timeout=read_timeout if read_timeout is not None else 2.0,
            write_timeout=write_timeout if write_timeout is not None else 2.0,
        )

    def close(self) -> None:
        for server in self.servers:
            server.sock.close()
