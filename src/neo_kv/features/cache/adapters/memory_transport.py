"""In-process cache endpoint for neo-kv.

``MemoryCacheServer`` keeps entries in a dict and speaks the same RESP wire
protocol as the remote service, so a client wired to it exercises the full
encode / write / read / decode path. Expiry is evaluated lazily against an
injectable clock, which lets tests move time forward.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set

from .resp_codec import RespCodec, RespDecoder
from ..entities.operation import Operation, OperationKind
from ..entities.protocols import INCOMPLETE, TransportFactory
from ....core.exceptions import ProtocolError, RemoteError, TransportError

logger = logging.getLogger(__name__)

NOT_AN_INTEGER = "ERR value is not an integer or out of range"


@dataclass
class MemoryCacheEntry:
    """Stored value with optional absolute expiry (server clock)."""
    value: bytes
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class MemoryCacheServer:
    """Minimal Redis-compatible endpoint living in the current process."""

    def __init__(
        self,
        token: Optional[str] = None,
        username: str = "default",
        clock: Callable[[], float] = time.monotonic,
        encoding: str = "utf-8",
    ):
        self.token = token
        self.username = username
        self.clock = clock
        self.codec = RespCodec(encoding)
        self._data: Dict[bytes, MemoryCacheEntry] = {}
        self._transports: Set["MemoryTransport"] = set()
        self.commands: List[List[bytes]] = []
        self.accepting = True
        self.connections_opened = 0

    # Connection handling

    async def connect(self, chunk_size: Optional[int] = None) -> "MemoryTransport":
        if not self.accepting:
            raise TransportError("Memory cache server is not accepting connections", bytes_sent=0)
        transport = MemoryTransport(self, chunk_size=chunk_size)
        self._transports.add(transport)
        self.connections_opened += 1
        return transport

    def transport_factory(self, chunk_size: Optional[int] = None) -> TransportFactory:
        """Factory for ``ConnectionManager``; ``chunk_size`` splits replies."""
        async def factory() -> "MemoryTransport":
            return await self.connect(chunk_size=chunk_size)
        return factory

    def drop_connections(self) -> int:
        """Close every open link from the server side."""
        dropped = [t for t in self._transports if t.is_open]
        for transport in dropped:
            transport.close_from_server()
        self._transports.clear()
        return len(dropped)

    def _forget(self, transport: "MemoryTransport") -> None:
        self._transports.discard(transport)

    @property
    def open_connections(self) -> int:
        return sum(1 for t in self._transports if t.is_open)

    # Storage

    def _live_entry(self, key: bytes) -> Optional[MemoryCacheEntry]:
        entry = self._data.get(key)
        if entry is not None and entry.is_expired(self.clock()):
            del self._data[key]
            return None
        return entry

    def keys(self) -> List[bytes]:
        return [key for key in list(self._data) if self._live_entry(key) is not None]

    def flush(self) -> None:
        self._data.clear()

    # Command execution

    def handle(self, parts: Any, session: "MemoryTransport") -> Any:
        """Execute one decoded request and return the reply value."""
        if not isinstance(parts, list) or not parts:
            return RemoteError("ERR Protocol error: expected a command array")
        self.commands.append(parts)
        name = parts[0].upper() if isinstance(parts[0], bytes) else b""

        if name == b"AUTH":
            return self._auth(parts[1:], session)
        if self.token is not None and not session.authenticated:
            return RemoteError("NOAUTH Authentication required.")

        try:
            operation = self.codec.decode_operation(parts)
        except ProtocolError as e:
            return RemoteError(f"ERR {e.message}")
        return self.apply(operation)

    def _auth(self, args: List[bytes], session: "MemoryTransport") -> Any:
        if len(args) not in (1, 2):
            return RemoteError("ERR wrong number of arguments for 'auth' command")
        if self.token is None:
            return RemoteError(
                "ERR AUTH <password> called without any password configured for the default user."
            )
        user = args[0].decode(errors="replace") if len(args) == 2 else self.username
        if user == self.username and args[-1] == self.token.encode():
            session.authenticated = True
            return "OK"
        return RemoteError("WRONGPASS invalid username-password pair or user is disabled.")

    def apply(self, operation: Operation) -> Any:
        kind = operation.kind
        now = self.clock()
        if kind is OperationKind.PING:
            return "PONG"

        key = self.codec.to_bytes(operation.key)
        entry = self._live_entry(key)

        if kind is OperationKind.GET:
            return entry.value if entry is not None else None

        if kind is OperationKind.SET:
            if operation.nx and entry is not None:
                return None
            if operation.xx and entry is None:
                return None
            expires_at = now + operation.ttl if operation.ttl is not None else None
            self._data[key] = MemoryCacheEntry(self.codec.to_bytes(operation.value), expires_at)
            return "OK"

        if kind is OperationKind.DELETE:
            if entry is None:
                return 0
            del self._data[key]
            return 1

        if kind is OperationKind.INCREMENT:
            current = 0
            if entry is not None:
                digits = entry.value[1:] if entry.value[:1] == b"-" else entry.value
                if not digits.isdigit():
                    return RemoteError(NOT_AN_INTEGER)
                current = int(entry.value)
            updated = current + operation.amount
            if not -(2 ** 63) <= updated < 2 ** 63:
                return RemoteError("ERR increment or decrement would overflow")
            expires_at = entry.expires_at if entry is not None else None
            self._data[key] = MemoryCacheEntry(b"%d" % updated, expires_at)
            return updated

        if kind is OperationKind.EXPIRE:
            if entry is None:
                return 0
            entry.expires_at = now + operation.ttl
            return 1

        if kind is OperationKind.EXISTS:
            return 0 if entry is None else 1

        if kind is OperationKind.TTL:
            if entry is None:
                return -2
            if entry.expires_at is None:
                return -1
            return max(0, round(entry.expires_at - now))

        return RemoteError(f"ERR unknown command '{kind.value}'")


class MemoryTransport:
    """Client end of a link to a ``MemoryCacheServer``."""

    def __init__(self, server: MemoryCacheServer, chunk_size: Optional[int] = None):
        self._server = server
        self._chunk_size = chunk_size
        self._requests = RespDecoder()
        self._outbox = bytearray()
        self._ready = asyncio.Event()
        self._closed = False
        self.authenticated = False
        self.hold_replies = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise TransportError("Memory transport is closed", bytes_sent=0)
        try:
            self._requests.feed(data)
            while True:
                request = self._requests.next_reply()
                if request is INCOMPLETE:
                    break
                reply = self._server.handle(request, self)
                self._outbox += self._server.codec.encode_reply(reply)
        except ProtocolError as e:
            logger.warning(f"Memory server rejected request frame: {e.message}")
            self._outbox += self._server.codec.encode_reply(RemoteError(f"ERR Protocol error: {e.message}"))
            self.close_from_server()
        if not self.hold_replies:
            self._ready.set()

    def release_replies(self) -> None:
        self.hold_replies = False
        if self._outbox:
            self._ready.set()

    async def read(self) -> bytes:
        while not self._outbox or self.hold_replies:
            if self._closed:
                return b""
            self._ready.clear()
            await self._ready.wait()
        size = self._chunk_size or len(self._outbox)
        chunk = bytes(self._outbox[:size])
        del self._outbox[:size]
        return chunk

    def close_from_server(self) -> None:
        self._closed = True
        self._ready.set()

    async def close(self) -> None:
        self._closed = True
        self._ready.set()
        self._server._forget(self)
