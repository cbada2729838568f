"""Module containing Redis Sentinel discovery."""

import collections.abc
import dataclasses
import functools
import typing

import structlog

from resplink import command, config, connection, error, transform

__all__: collections.abc.Sequence[str] = ("Sentinels",)


logger = structlog.get_logger(__name__)


@dataclasses.dataclass(slots=True)
class Sentinels:
    """Locate the master of a service through a list of Redis Sentinels.

    Sentinels are tried in order. The sentinel that answers is moved to the
    front of the list so that it is asked first next time.
    """

    addresses: list[str]
    connect_timeout: float | None = 0.1
    read_timeout: float | None = None

    def __post_init__(self) -> None:
        self.addresses = list(self.addresses)
        if not self.addresses:
            msg = "Need at least one sentinel address"
            raise ValueError(msg)

    def _connect(self, address: str) -> connection.Connection:
        options = config.ClientConfig(
            server=address,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )
        con = connection.Connection(options)
        con.connect()
        return con

    def _ask(self, *args: command.ArgT) -> collections.abc.Iterator[tuple[int, typing.Any]]:
        """Send a SENTINEL command to each reachable sentinel, yielding its index and reply."""
        for index, address in enumerate(list(self.addresses)):
            try:
                con = self._connect(address)

            except error.ConnectError as exc:
                logger.warning("sentinel unreachable", sentinel=address, error=str(exc))
                continue

            try:
                reply = command.Command("SENTINEL", *args).execute(con)

            except (error.ConnectionError, error.TimeoutError, error.CommandError) as exc:
                logger.warning("sentinel query failed", sentinel=address, error=str(exc))
                continue

            finally:
                con.close()

            yield index, reply

    def _move_to_front(self, index: int) -> None:
        if index:
            self.addresses.insert(0, self.addresses.pop(index))

    def get_master_address(self, service: str) -> config.TcpAddress:
        """Look up the address of the master currently serving ``service``."""
        if not service:
            msg = "Need name of service to look up using Redis sentinels"
            raise ValueError(msg)

        for index, reply in self._ask("get-master-addr-by-name", service):
            if not isinstance(reply, list) or len(reply) < 2 or reply[0] is None:  # noqa: PLR2004
                continue

            host = reply[0].decode()
            if host == "IDONTKNOW":
                msg = (
                    f"Failed to look up master address for '{service}'. "
                    f"Sentinel '{self.addresses[index]}' replied with 'IDONTKNOW'"
                )
                raise error.ConnectError(msg)

            self._move_to_front(index)
            return config.TcpAddress(host, int(reply[1]))

        msg = f"Failed to look up master address for '{service}' from any Sentinel"
        raise error.ConnectError(msg)

    def resolver(self, service: str) -> collections.abc.Callable[[], config.TcpAddress]:
        """Build an address resolver for a ``Connection``."""
        return functools.partial(self.get_master_address, service)

    def refresh_sentinels(self, service: str) -> list[str]:
        """Add the sentinels known to the first reachable sentinel to the address list."""
        for _, reply in self._ask("sentinels", service):
            for entry in reply or ():
                details = transform.pairwise_to_dict(entry)
                address = f"{details[b'ip'].decode()}:{int(details[b'port'])}"
                if address not in self.addresses:
                    self.addresses.append(address)

            break

        return self.addresses

    def get_masters(self) -> list[dict[bytes, typing.Any]]:
        """Describe every master monitored by the first reachable sentinel."""
        for _, reply in self._ask("masters"):
            return [transform.pairwise_to_dict(master) for master in reply or ()]

        msg = "Failed to connect to any Redis Sentinel"
        raise error.ConnectError(msg)
