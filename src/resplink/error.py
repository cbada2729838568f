import collections.abc
import dataclasses

__all__: collections.abc.Sequence[str] = (
    "RedisError",
    "ConnectionError",
    "ConnectError",
    "ServerEOFError",
    "ReconnectRefused",
    "ReconnectNeeded",
    "AuthError",
    "ProtocolError",
    "CommandError",
    "ModeError",
    "UsageError",
    "StateError",
    "TimeoutError",
)


class RedisError(Exception):
    ...


class ConnectionError(RedisError):
    ...


class ConnectError(ConnectionError):
    ...


class ServerEOFError(ConnectionError):
    ...


class ReconnectRefused(ConnectionError):
    """Raised instead of reconnecting when retrying the command is unsafe.

    The error that triggered the reconnect is chained as ``__cause__``.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ReconnectNeeded(RedisError):
    """Internal signal unwinding to the reconnect wrapper."""


class AuthError(RedisError):
    ...


class ProtocolError(RedisError):
    ...


class ModeError(RedisError):
    ...


class UsageError(RedisError):
    ...


class StateError(RedisError):
    ...


class TimeoutError(RedisError):
    ...


@dataclasses.dataclass(eq=False)
class CommandError(RedisError):
    command: str
    code: str
    message: str

    def __str__(self) -> str:
        if self.message:
            return f"[{self.command}] {self.code} {self.message}"

        return f"[{self.command}] {self.code}"

    @classmethod
    def from_response(cls, command: str, response: bytes) -> "CommandError":
        code, _, message = response.decode("utf-8", errors="replace").partition(" ")
        return cls(command, code, message)
