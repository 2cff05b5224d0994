"""Request dispatcher: runs one request/response cycle per operation."""

import asyncio
import itertools
import logging
from typing import Any, Dict, List, Optional

from ..adapters.resp_codec import RespCodec
from ..entities.config import ClientConfig
from ..entities.connection import Connection
from ..entities.operation import Operation
from ..entities.pending import PendingRequest
from ..repositories.connection_manager import ConnectionManager
from ....core.exceptions import (
    AmbiguousOutcomeError,
    CacheTimeoutError,
    ConnectionUnavailableError,
    ProtocolError,
    RemoteError,
    TransportError,
)

logger = logging.getLogger(__name__)

# Failures where the request never left the client.
RETRYABLE_REASONS = frozenset({
    ConnectionUnavailableError.CONNECT_FAILED,
    ConnectionUnavailableError.SEND_FAILED,
})


class RequestDispatcher:
    """Executes operations over pooled connections.

    A connection carries exactly one request at a time. Failures before any
    request byte was written are retried on a fresh connection for
    idempotent operations; once bytes are on the wire an operation is never
    replayed, and a lost reply surfaces as ``AmbiguousOutcomeError``.
    """

    def __init__(self, pool: ConnectionManager, codec: RespCodec, config: ClientConfig):
        self._pool = pool
        self._codec = codec
        self._config = config
        self._ids = itertools.count(1)
        self._pending: Dict[int, PendingRequest] = {}

    @property
    def in_flight(self) -> List[PendingRequest]:
        return list(self._pending.values())

    async def execute(self, operation: Operation, timeout: Optional[float] = None) -> Any:
        """Run ``operation`` and return the decoded reply.

        Args:
            operation: What to send
            timeout: Deadline in seconds for the whole call, retries
                included (defaults to ``command_timeout``)

        Raises:
            ConnectionUnavailableError: no connection, or the request could
                not be sent and retrying was not allowed or exhausted
            AmbiguousOutcomeError: the link failed after the request was sent
            CacheTimeoutError: no reply before the deadline, or the deadline
                passed before the request was written
            ProtocolError: the request could not be encoded or the reply was
                malformed
            RemoteError: the endpoint answered with an error frame
        """
        if timeout is None:
            timeout = self._config.command_timeout
        frame = self._codec.encode(operation)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        attempt = 0
        while True:
            try:
                return await self._execute_once(operation, frame, deadline)
            except ConnectionUnavailableError as e:
                if (
                    e.reason not in RETRYABLE_REASONS
                    or not operation.is_idempotent
                    or attempt >= self._config.max_retries
                ):
                    raise
                attempt += 1
                backoff = self._config.retry_backoff * attempt
                if loop.time() + backoff >= deadline:
                    raise self._deadline_passed(operation, attempt) from e
                logger.warning(
                    f"Retrying {operation.kind.value} ({attempt}/{self._config.max_retries}) "
                    f"after {e.reason}: {e.message}"
                )
                if backoff:
                    await asyncio.sleep(backoff)

    async def _execute_once(self, operation: Operation, frame: bytes, deadline: float) -> Any:
        loop = asyncio.get_running_loop()
        kind = operation.kind.value
        if loop.time() >= deadline:
            raise self._deadline_passed(operation)
        conn = await self._pool.acquire()
        pending: Optional[PendingRequest] = None
        try:
            # Nothing has been written yet, so the connection stays reusable
            if loop.time() >= deadline:
                raise self._deadline_passed(operation)
            await self._send(conn, operation, frame)

            pending = PendingRequest(
                correlation_id=next(self._ids),
                kind=operation.kind,
                deadline=deadline,
                connection_id=conn.id,
            )
            conn.attach(pending)
            self._pending[pending.correlation_id] = pending

            try:
                reply = await asyncio.wait_for(conn.read_reply(), pending.remaining(loop.time()))
            except asyncio.TimeoutError as e:
                self._abandon(conn, pending)
                raise CacheTimeoutError(
                    f"{kind} got no reply within its deadline",
                    details={"connection_id": conn.id, "correlation_id": pending.correlation_id},
                ) from e
            except TransportError as e:
                self._abandon(conn, pending)
                raise AmbiguousOutcomeError(
                    f"Connection lost after sending {kind}; outcome unknown: {e.message}",
                    details={"connection_id": conn.id, "operation": kind},
                ) from e
            except (ProtocolError, asyncio.CancelledError):
                self._abandon(conn, pending)
                raise

            pending.resolve(reply)
        finally:
            if pending is not None:
                self._pending.pop(pending.correlation_id, None)
            await self._pool.release(conn)

        if isinstance(reply, RemoteError):
            raise reply
        return reply

    async def _send(self, conn: Connection, operation: Operation, frame: bytes) -> None:
        kind = operation.kind.value
        try:
            await conn.send(frame)
        except TransportError as e:
            conn.mark_broken()
            if e.nothing_sent:
                raise ConnectionUnavailableError(
                    f"Connection {conn.id} failed before sending {kind}: {e.message}",
                    reason=ConnectionUnavailableError.SEND_FAILED,
                ) from e
            raise AmbiguousOutcomeError(
                f"Write of {kind} failed part-way; outcome unknown: {e.message}",
                details={"connection_id": conn.id, "operation": kind},
            ) from e
        except asyncio.CancelledError:
            conn.mark_broken()
            raise

    @staticmethod
    def _abandon(conn: Connection, pending: PendingRequest) -> None:
        """Stop waiting: the reply, if any, would desynchronize the link."""
        conn.mark_broken()
        pending.expire()

    @staticmethod
    def _deadline_passed(operation: Operation, attempts: int = 0) -> CacheTimeoutError:
        return CacheTimeoutError(
            f"{operation.kind.value} not sent: deadline passed before the request could be written",
            details={"operation": operation.kind.value, "sent": False, "retries": attempts},
        )
