"""In-flight request bookkeeping."""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Optional

from .operation import OperationKind


@dataclass
class PendingRequest:
    """A request that has been written and is waiting for its reply.

    Attributes:
        correlation_id: Dispatcher-wide sequence number
        kind: Kind of the operation that was sent
        deadline: Event loop time after which the reply is no longer awaited
        connection_id: The connection that owns this request
        result: Slot resolved with the decoded reply
    """
    correlation_id: int
    kind: OperationKind
    deadline: float
    connection_id: int
    result: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    expired: bool = False

    def remaining(self, now: float) -> float:
        return max(0.0, self.deadline - now)

    def resolve(self, reply: Any) -> None:
        if not self.result.done():
            self.result.set_result(reply)

    def expire(self) -> None:
        """Mark the deadline as reached; the reply will never be delivered."""
        self.expired = True
        if not self.result.done():
            self.result.cancel()

    @property
    def is_done(self) -> bool:
        return self.result.done()

    def reply(self) -> Optional[Any]:
        if self.result.done() and not self.result.cancelled():
            return self.result.result()
        return None
