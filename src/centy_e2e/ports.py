"""Endpoint allocation for daemon instances.

Ports come from a base plus a monotonically increasing counter. There is no
port-in-use probing: uniqueness only holds within this process, which is
enough because every instance in a test run is started from here.

All allocators share one process-wide counter unless given their own, so two
supervisors built in the same process cannot hand out the same port.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterator
from typing import Annotated, Final

from msgspec import Meta, Struct

DEFAULT_HOST: Final[str] = "127.0.0.1"
DEFAULT_BASE_PORT: Final[int] = 50100
MAX_PORT: Final[int] = 65535

Port = Annotated[int, Meta(ge=1, le=MAX_PORT)]

_process_counter: Final[Iterator[int]] = itertools.count()


class Endpoint(Struct, frozen=True, forbid_unknown_fields=True):
    """Network address a daemon instance listens on."""

    host: str
    port: Port

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @classmethod
    def parse(cls, address: str) -> Endpoint:
        """Parse ``host:port``. Raises ValueError on a malformed address."""
        host, sep, port = address.rpartition(":")
        if not sep or not host or not port.isdigit() or not 1 <= int(port) <= MAX_PORT:
            raise ValueError(f"Invalid daemon address: {address!r}")
        return cls(host=host, port=int(port))


class AddressAllocator:
    """Hands out a unique endpoint per call for the lifetime of the process."""

    __slots__ = ("_counter", "base_port", "host")

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        base_port: int = DEFAULT_BASE_PORT,
        *,
        counter: Iterator[int] | None = None,
    ) -> None:
        self.host = host
        self.base_port = base_port
        self._counter = counter if counter is not None else _process_counter

    def next_endpoint(self) -> Endpoint:
        """Return the next endpoint.

        Raises:
            ValueError: If the counter has run past the last valid port
        """
        port = self.base_port + next(self._counter)
        if port > MAX_PORT:
            raise ValueError(f"Port range exhausted: {port} is above {MAX_PORT} (base port {self.base_port})")
        return Endpoint(host=self.host, port=port)
