"""Connection entity for the cache client pool."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from .pending import PendingRequest
from .protocols import INCOMPLETE, ReplyDecoder, Transport
from ....core.exceptions import TransportError


class ConnectionState(str, Enum):
    """Liveness state of a pooled connection."""
    IDLE = "idle"
    IN_USE = "in_use"
    BROKEN = "broken"


@dataclass(eq=False)
class Connection:
    """One transport-level link to the cache endpoint.

    Owned by the connection manager and lent to the dispatcher for a single
    request/response cycle. Every connection keeps its own decoder so bytes
    left over from one read are never attributed to another link.
    """
    id: int
    transport: Transport
    decoder: ReplyDecoder
    clock: Callable[[], float] = time.monotonic
    state: ConnectionState = ConnectionState.IDLE
    created_at: float = 0.0
    last_activity: float = 0.0
    pending: Optional[PendingRequest] = field(default=None, repr=False)

    def __post_init__(self):
        now = self.clock()
        self.created_at = self.created_at or now
        self.last_activity = self.last_activity or now

    @property
    def is_broken(self) -> bool:
        return self.state is ConnectionState.BROKEN

    @property
    def is_live(self) -> bool:
        """Usable for a new request: not marked broken and the link is open."""
        return not self.is_broken and self.transport.is_open

    def touch(self) -> None:
        self.last_activity = self.clock()

    def idle_for(self, now: Optional[float] = None) -> float:
        return (self.clock() if now is None else now) - self.last_activity

    def mark_in_use(self) -> None:
        self.state = ConnectionState.IN_USE
        self.touch()

    def mark_idle(self) -> None:
        self.state = ConnectionState.IDLE
        self.touch()

    def mark_broken(self) -> None:
        self.state = ConnectionState.BROKEN

    def attach(self, pending: PendingRequest) -> None:
        """Bind an in-flight request to this connection."""
        if self.pending is not None and not self.pending.is_done:
            raise RuntimeError(
                f"Connection {self.id} already carries request {self.pending.correlation_id}"
            )
        self.pending = pending

    def detach(self) -> None:
        self.pending = None

    async def send(self, frame: bytes) -> None:
        """Write one encoded request frame.

        A link that is already broken or closed fails without writing.
        """
        if not self.is_live:
            raise TransportError(f"Connection {self.id} is not live", bytes_sent=0)
        await self.transport.write(frame)
        self.touch()

    async def read_reply(self) -> Any:
        """Read until one complete reply frame has been decoded."""
        while True:
            reply = self.decoder.next_reply()
            if reply is not INCOMPLETE:
                self.touch()
                return reply
            chunk = await self.transport.read()
            if not chunk:
                raise TransportError(f"Connection {self.id} closed by peer")
            self.decoder.feed(chunk)

    async def close(self) -> None:
        await self.transport.close()
