"""Transport protocols for the cache client.

A transport is one byte-stream link to the cache endpoint. The connection
manager opens transports through a factory so the TCP implementation can
be swapped for the in-process memory server in tests.
"""

from abc import abstractmethod
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """Byte-stream link to the cache endpoint."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Write all of ``data``.

        Raises:
            TransportError: with ``bytes_sent == 0`` when nothing left the
                client, otherwise with the count (or -1 when unknown).
        """
        ...

    @abstractmethod
    async def read(self) -> bytes:
        """Return the next chunk of bytes; ``b""`` means the peer closed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the link. Safe to call more than once."""
        ...

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the link can still carry a request."""
        ...


TransportFactory = Callable[[], Awaitable[Transport]]


class _Incomplete:
    """Sentinel returned by decoders while a frame is still partial."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "INCOMPLETE"


INCOMPLETE: Any = _Incomplete()


@runtime_checkable
class ReplyDecoder(Protocol):
    """Incremental decoder owned by a single connection."""

    def feed(self, data: bytes) -> None:
        ...

    def next_reply(self) -> Any:
        """Return the next decoded reply or ``INCOMPLETE``."""
        ...
