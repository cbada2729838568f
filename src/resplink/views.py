"""Module containing collection views backed by Redis lists and hashes."""

import collections.abc
import dataclasses
import typing

from resplink import client, command, error

__all__: collections.abc.Sequence[str] = ("RedisList", "RedisHash")


_REMOVED: typing.Final = b"__resplink:removed__"


@dataclasses.dataclass(slots=True, eq=False)
class RedisList(collections.abc.MutableSequence):  # type: ignore[type-arg]
    """A ``MutableSequence`` view of a Redis list.

    Every operation is a round trip; nothing is cached.
    """

    redis: client.Redis
    key: str | bytes

    def _normalize(self, index: int) -> int:
        size = len(self)
        if index < 0:
            index += size

        if not 0 <= index < size:
            msg = "list index out of range"
            raise IndexError(msg)

        return index

    @typing.overload
    def __getitem__(self, index: int) -> bytes: ...

    @typing.overload
    def __getitem__(self, index: slice) -> list[bytes]: ...

    def __getitem__(self, index: int | slice) -> bytes | list[bytes]:
        if isinstance(index, slice):
            start, stop, step = index.indices(len(self))
            if step != 1 or start >= stop:
                return (self.redis.lrange(self.key, 0, -1) or [])[index]

            return self.redis.lrange(self.key, start, stop - 1) or []

        return self.redis.execute_command("LINDEX", self.key, self._normalize(index))

    def __setitem__(self, index: int, value: command.ArgT) -> None:  # type: ignore[override]
        self.redis.execute_command("LSET", self.key, self._normalize(index), value)

    def __delitem__(self, index: int) -> None:  # type: ignore[override]
        # Lists can only be trimmed by value, so the element is replaced by a marker first.
        index = self._normalize(index)
        self.redis.execute_command("LSET", self.key, index, _REMOVED)
        self.redis.execute_command("LREM", self.key, 1, _REMOVED)

    def __len__(self) -> int:
        return self.redis.execute_command("LLEN", self.key)

    def __iter__(self) -> collections.abc.Iterator[bytes]:
        return iter(self.redis.lrange(self.key, 0, -1) or [])

    def insert(self, index: int, value: command.ArgT) -> None:
        size = len(self)
        if index < 0:
            index += size

        if index <= 0:
            self.redis.lpush(self.key, value)

        elif index >= size:
            self.redis.rpush(self.key, value)

        else:
            msg = "Redis lists only support inserting at either end"
            raise error.UsageError(msg)

    def append(self, value: command.ArgT) -> None:
        self.redis.rpush(self.key, value)

    def pop(self, index: int = -1) -> bytes:
        if index == -1:
            value = self.redis.execute_command("RPOP", self.key)

        elif index == 0:
            value = self.redis.execute_command("LPOP", self.key)

        else:
            value = self[index]
            del self[index]
            return value

        if value is None:
            msg = "pop from empty list"
            raise IndexError(msg)

        return value

    def clear(self) -> None:
        self.redis.delete(self.key)


@dataclasses.dataclass(slots=True, eq=False)
class RedisHash(collections.abc.MutableMapping):  # type: ignore[type-arg]
    """A ``MutableMapping`` view of a Redis hash."""

    redis: client.Redis
    key: str | bytes

    def __getitem__(self, field: command.ArgT) -> bytes:
        value = self.redis.hget(self.key, field)
        if value is None:
            raise KeyError(field)

        return value

    def __setitem__(self, field: command.ArgT, value: command.ArgT) -> None:
        self.redis.hset(self.key, {field: value})

    def __delitem__(self, field: command.ArgT) -> None:
        if not self.redis.execute_command("HDEL", self.key, field):
            raise KeyError(field)

    def __contains__(self, field: object) -> bool:
        return bool(self.redis.execute_command("HEXISTS", self.key, field))

    def __iter__(self) -> collections.abc.Iterator[bytes]:
        return iter(self.redis.execute_command("HKEYS", self.key) or [])

    def __len__(self) -> int:
        return self.redis.execute_command("HLEN", self.key)

    def clear(self) -> None:
        self.redis.delete(self.key)
