"""Module containing data transformers for high-level Redis commands."""

import collections.abc
import typing

__all__: collections.abc.Sequence[str] = (
    "pairwise_to_dict",
    "transform_info",
    "transform_keys",
    "transform_scan",
)


InfoResponse: typing.TypeAlias = dict[str, str]


def pairwise_to_dict(arg: collections.abc.Iterable[typing.Any] | None) -> dict[typing.Any, typing.Any]:
    """Turn a flat ``[key 1, value 1, key 2, value 2, ...]`` reply into a mapping."""
    if arg is None:
        return {}

    arg_iter = iter(arg)
    return dict(zip(arg_iter, arg_iter, strict=True))


def transform_info(data: bytes | str | None) -> InfoResponse:
    """Transform Redis INFO output into a flat mapping.

    Section headers (lines starting with ``#``) and blank lines are skipped.
    """
    if data is None:
        return {}

    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")

    # Response is of shape
    #
    # # Server\r\n
    # redis_version:7.2.4\r\n
    # ...
    info: InfoResponse = {}
    for line in data.splitlines():
        if not line or line.startswith("#"):
            continue

        key, _, value = line.partition(":")
        info[key] = value

    return info


def transform_keys(data: list[bytes] | bytes | None) -> list[bytes]:
    """Normalize a KEYS reply to a list of keys.

    Old servers reply with a single space separated bulk string instead of an array.
    """
    if isinstance(data, list):
        return data

    if not data:
        return []

    return data.split()


def transform_scan(data: list[typing.Any]) -> tuple[int, list[typing.Any]]:
    """Split a SCAN family reply into the next cursor and the batch of items."""
    # Response is of shape
    #
    # [cursor, [item 1, item 2, ...]]
    #  b        b       b
    cursor, items = data
    return int(cursor), items or []
