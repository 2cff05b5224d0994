"""Connection pool for the cache client."""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, List, Optional

from ..adapters.resp_codec import RespCodec
from ..adapters.tcp_transport import tcp_transport_factory
from ..entities.config import ClientConfig
from ..entities.connection import Connection
from ..entities.protocols import TransportFactory
from ....core.exceptions import (
    ConnectionUnavailableError,
    ProtocolError,
    RemoteError,
    TransportError,
)

logger = logging.getLogger(__name__)


@dataclass
class PoolStats:
    """Snapshot of the connection pool."""
    total: int = 0
    idle: int = 0
    in_use: int = 0
    opening: int = 0
    created: int = 0
    discarded: int = 0
    max_size: int = 0


class ConnectionManager:
    """Owns the transport connections to one cache endpoint.

    Connections are opened lazily up to ``pool_max_size``. Idle ones are
    reused most-recently-released first, so the oldest idle connections are
    the ones that go stale and get pruned.

    Pool state is only mutated between awaits, so every transition
    (reserve a slot, register, release, discard) completes even when the
    calling task is cancelled. Tasks waiting for capacity park on futures
    in ``_waiters`` and are woken in FIFO order; transports are opened and
    closed after the bookkeeping is done.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport_factory: Optional[TransportFactory] = None,
        codec: Optional[RespCodec] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config
        self._factory = transport_factory or tcp_transport_factory(config)
        self._codec = codec or RespCodec(config.encoding)
        self._clock = clock
        self._idle: Deque[Connection] = deque()
        self._in_use: Dict[int, Connection] = {}
        self._opening = 0
        self._ids = itertools.count(1)
        self._waiters: Deque[asyncio.Future] = deque()
        self._closed = False
        self._created = 0
        self._discarded = 0

    @property
    def _total(self) -> int:
        return len(self._idle) + len(self._in_use) + self._opening

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def stats(self) -> PoolStats:
        return PoolStats(
            total=self._total,
            idle=len(self._idle),
            in_use=len(self._in_use),
            opening=self._opening,
            created=self._created,
            discarded=self._discarded,
            max_size=self._config.pool_max_size,
        )

    async def acquire(self) -> Connection:
        """Hand out a live connection.

        Raises:
            ConnectionUnavailableError: pool exhausted for the whole
                ``acquire_timeout``, endpoint unreachable, authentication
                rejected, or pool closed.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.acquire_timeout
        while True:
            if self._closed:
                raise ConnectionUnavailableError(
                    "Connection pool is closed",
                    reason=ConnectionUnavailableError.CLOSED,
                )
            unusable = self._drop_unusable_idle()
            if unusable:
                await self._close_quietly(unusable)
                continue
            if self._idle:
                conn = self._idle.pop()
                self._check_out(conn)
                return conn
            if self._total < self._config.pool_max_size:
                break
            await self._wait_for_capacity(deadline - loop.time())

        self._opening += 1
        try:
            conn = await self._open_connection()
        except BaseException:
            self._opening -= 1
            self._wake_one()
            raise
        self._opening -= 1

        if self._closed:
            self._wake_one()
            await self._close_quietly([conn])
            raise ConnectionUnavailableError(
                "Connection pool is closed",
                reason=ConnectionUnavailableError.CLOSED,
            )
        self._check_out(conn)
        return conn

    async def release(self, conn: Connection) -> None:
        """Return a connection; broken ones are closed and discarded."""
        if self._in_use.pop(conn.id, None) is None:
            logger.warning(f"Ignoring release of connection {conn.id} not held by the pool")
            return
        conn.detach()
        to_close: List[Connection] = []
        if conn.is_live and not self._closed:
            conn.mark_idle()
            self._idle.append(conn)
        else:
            if conn.is_broken:
                logger.debug(f"Discarding broken connection {conn.id}")
            to_close.append(conn)
            self._discarded += 1
        to_close.extend(self._collect_stale())
        self._wake_one()
        await self._close_quietly(to_close)

    async def prune_idle(self) -> int:
        """Close idle connections older than ``idle_timeout``.

        Returns the number of connections closed.
        """
        stale = self._collect_stale()
        if stale:
            self._wake_all()
        await self._close_quietly(stale)
        return len(stale)

    async def warm_up(self) -> int:
        """Open idle connections until the pool reaches ``pool_min_size``."""
        opened = 0
        while not self._closed and self._total < self._config.pool_min_size:
            self._opening += 1
            try:
                conn = await self._open_connection()
            except BaseException:
                self._opening -= 1
                self._wake_one()
                raise
            self._opening -= 1
            self._wake_one()
            if self._closed:
                await self._close_quietly([conn])
                break
            conn.mark_idle()
            self._idle.append(conn)
            opened += 1
        return opened

    async def close(self) -> None:
        """Close idle connections now and in-use ones as they come back."""
        if self._closed:
            return
        self._closed = True
        idle = list(self._idle)
        self._idle.clear()
        self._discarded += len(idle)
        for conn in self._in_use.values():
            conn.mark_broken()
        self._wake_all()
        await self._close_quietly(idle)
        logger.info(f"Closed connection pool for {self._config.safe_url}")

    # Internals

    def _check_out(self, conn: Connection) -> None:
        conn.mark_in_use()
        self._in_use[conn.id] = conn

    async def _wait_for_capacity(self, remaining: float) -> None:
        """Park until a slot may have freed up, at most ``remaining`` seconds."""
        if remaining <= 0:
            raise self._exhausted()
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            async with asyncio.timeout(remaining):
                await waiter
        except TimeoutError:
            self._forget_waiter(waiter)
            raise self._exhausted()
        except BaseException:
            self._forget_waiter(waiter)
            raise

    def _forget_waiter(self, waiter: asyncio.Future) -> None:
        """Drop a waiter that gave up; hand its wake-up on if it had one."""
        try:
            self._waiters.remove(waiter)
        except ValueError:
            if waiter.done() and not waiter.cancelled():
                self._wake_one()

    def _wake_one(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _wake_all(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def _drop_unusable_idle(self) -> List[Connection]:
        """Remove dead or stale idle connections regardless of the floor."""
        now = self._clock()
        unusable = [
            conn for conn in self._idle
            if not conn.is_live or conn.idle_for(now) > self._config.idle_timeout
        ]
        for conn in unusable:
            self._idle.remove(conn)
            logger.debug(f"Dropping {'stale' if conn.is_live else 'dead'} idle connection {conn.id}")
        self._discarded += len(unusable)
        return unusable

    def _collect_stale(self) -> List[Connection]:
        now = self._clock()
        stale: List[Connection] = []
        keep: Deque[Connection] = deque()
        for conn in self._idle:
            dead = not conn.is_live
            expired = conn.idle_for(now) > self._config.idle_timeout
            above_floor = self._total - len(stale) > self._config.pool_min_size
            if dead or (expired and above_floor):
                stale.append(conn)
            else:
                keep.append(conn)
        self._idle = keep
        self._discarded += len(stale)
        return stale

    def _exhausted(self) -> ConnectionUnavailableError:
        return ConnectionUnavailableError(
            f"No connection to {self._config.safe_url} available within "
            f"{self._config.acquire_timeout}s (pool size {self._config.pool_max_size})",
            reason=ConnectionUnavailableError.EXHAUSTED,
            details={"in_use": len(self._in_use), "opening": self._opening},
        )

    async def _close_quietly(self, conns: List[Connection]) -> None:
        """Close transports after they have left the pool's bookkeeping."""
        for conn in conns:
            try:
                await conn.close()
            except (TransportError, OSError) as e:
                logger.debug(f"Error closing connection {conn.id}: {e}")

    async def _open_connection(self) -> Connection:
        """Open and authenticate a new connection."""
        url = self._config.safe_url
        try:
            transport = await asyncio.wait_for(self._factory(), self._config.connect_timeout)
        except asyncio.TimeoutError as e:
            raise ConnectionUnavailableError(
                f"Timed out connecting to {url} after {self._config.connect_timeout}s",
                reason=ConnectionUnavailableError.CONNECT_FAILED,
            ) from e
        except (TransportError, OSError) as e:
            raise ConnectionUnavailableError(
                f"Failed to connect to {url}: {e}",
                reason=ConnectionUnavailableError.CONNECT_FAILED,
            ) from e

        conn = Connection(
            id=next(self._ids),
            transport=transport,
            decoder=self._codec.new_decoder(),
            clock=self._clock,
        )
        try:
            await self._handshake(conn)
        except BaseException:
            await self._close_quietly([conn])
            raise

        self._created += 1
        logger.debug(f"Opened connection {conn.id} to {url}")
        return conn

    async def _handshake(self, conn: Connection) -> None:
        token = self._config.auth_token
        if not token:
            return
        username = self._config.auth_username
        parts = ["AUTH", username, token] if username else ["AUTH", token]
        url = self._config.safe_url
        try:
            await conn.send(self._codec.encode_command(*parts))
            reply = await asyncio.wait_for(conn.read_reply(), self._config.connect_timeout)
        except (TransportError, ProtocolError, asyncio.TimeoutError) as e:
            raise ConnectionUnavailableError(
                f"Handshake with {url} failed: {e}",
                reason=ConnectionUnavailableError.CONNECT_FAILED,
            ) from e
        if isinstance(reply, RemoteError):
            logger.error(f"Authentication rejected by {url}: {reply.message}")
            raise ConnectionUnavailableError(
                f"Authentication rejected by {url}: {reply.message}",
                reason=ConnectionUnavailableError.AUTH_FAILED,
            )
