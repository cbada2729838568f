"""Wire codec tests."""

import dataclasses

import pytest

from resplink import codec, command, error
from tests.helpers import array, bulk, err, integer, status


@dataclasses.dataclass
class ChunkedTransport:
    """Hands out ``data`` a few bytes at a time to exercise buffer refills."""

    data: bytes
    chunk: int = 3

    def recv(self, size: int, /) -> bytes:
        piece = self.data[: min(size, self.chunk)]
        self.data = self.data[len(piece) :]
        return piece

    def pending(self) -> bool:
        return False


def _reader(data: bytes, chunk: int = 3) -> codec.Reader:
    return codec.Reader(ChunkedTransport(data, chunk))  # type: ignore[arg-type]


@pytest.mark.parametrize("chunk", [1, 2, 3, 1024])
def test_scalar_replies(chunk: int):
    """Test every scalar reply kind across chunk boundaries."""
    reader = _reader(status("OK") + integer(-42) + bulk(b"hello") + bulk(None) + bulk(b""), chunk)

    assert reader.read_reply("X") == ("OK", None)
    assert reader.read_reply("X") == (-42, None)
    assert reader.read_reply("X") == (b"hello", None)
    assert reader.read_reply("X") == (None, None)
    assert reader.read_reply("X") == (b"", None)
    assert not reader.has_buffered()


def test_bulk_with_crlf_and_binary_payload():
    payload = b"a\r\nb\x00\xff\r\n"
    reader = _reader(bulk(payload), chunk=2)

    assert reader.read_reply("GET") == (payload, None)


def test_null_array_differs_from_empty_array():
    reader = _reader(b"*-1\r\n" + array())

    assert reader.read_reply("BLPOP") == (None, None)
    assert reader.read_reply("LRANGE") == ([], None)


def test_nested_arrays():
    reader = _reader(array(integer(1), array(bulk(b"a"), bulk(None)), array()))

    assert reader.read_reply("X") == ([1, [b"a", None], []], None)


def test_error_reply():
    value, exc = _reader(err("WRONGTYPE Operation against a key holding the wrong kind of value")).read_reply("INCR")

    assert value is None
    assert isinstance(exc, error.CommandError)
    assert exc.command == "INCR"
    assert exc.code == "WRONGTYPE"
    assert str(exc) == "[INCR] WRONGTYPE Operation against a key holding the wrong kind of value"


def test_nested_error_fails_whole_reply_and_keeps_stream_aligned():
    """Test the rest of an array is consumed after a nested error."""
    reader = _reader(array(status("OK"), err("ERR boom"), integer(3)) + integer(7))

    value, exc = reader.read_reply("EXEC")
    assert value is None
    assert isinstance(exc, error.CommandError)
    assert exc.message == "boom"

    assert reader.read_reply("INCR") == (7, None)


def test_collect_errors_isolates_element_errors():
    reader = _reader(array(status("OK"), err("ERR boom"), integer(3)))

    value, exc = reader.read_reply("EXEC", collect_errors=True)

    assert exc is None
    assert value[0] == ("OK", None)
    assert value[1][0] is None
    assert isinstance(value[1][1], error.CommandError)
    assert value[2] == (3, None)


def test_collect_errors_only_applies_to_top_level():
    reader = _reader(array(array(integer(1), err("ERR nested"))))

    value, exc = reader.read_reply("EXEC", collect_errors=True)

    assert exc is None
    assert value[0][0] is None
    assert isinstance(value[0][1], error.CommandError)


def test_decodes_encoded_requests():
    """Test a multi-bulk request decodes to its arguments."""
    cmd = command.Command("SET", b"\r\n\x00", "", None, 12)

    assert _reader(cmd.encode(), chunk=5).read_reply("X") == ([b"SET", b"\r\n\x00", b"", None, b"12"], None)


@pytest.mark.parametrize(
    "data",
    [b"?what\r\n", b":abc\r\n", b"$x\r\n", b"$3\r\nabcde", b"*z\r\n"],
)
def test_malformed_frames_raise_protocol_error(data: bytes):
    with pytest.raises(error.ProtocolError):
        _reader(data).read_reply("X")


def test_eof_mid_frame():
    with pytest.raises(error.ServerEOFError):
        _reader(b"$10\r\nabc").read_reply("GET")


def test_has_buffered_tracks_unread_replies():
    reader = _reader(status("A") + status("B"), chunk=1024)
    assert reader.read_reply("X") == ("A", None)
    assert reader.has_buffered()

    assert reader.read_reply("X") == ("B", None)
    assert not reader.has_buffered()
