"""Cache client facade.

The client is constructed explicitly from a ``ClientConfig`` and owned by
whoever created it; pass it to the code that needs it rather than reaching
for a module-level instance.

Example:
    config = ClientConfig(url="rediss://eu1-example.upstash.io:6379", token="...")
    async with CacheClient(config) as cache:
        await cache.set("greeting", "hello", ttl=60)
        value = await cache.get("greeting")
"""

import logging
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional, Union

from ..adapters.resp_codec import RespCodec
from ..entities.config import ClientConfig
from ..entities.operation import TTL, Key, Operation, Value
from ..entities.protocols import TransportFactory
from ..repositories.connection_manager import ConnectionManager
from .dispatcher import RequestDispatcher
from ....core.exceptions import CacheError, ConfigurationError

logger = logging.getLogger(__name__)


class CacheClient:
    """Typed operations against one cache endpoint."""

    def __init__(
        self,
        config: ClientConfig,
        transport_factory: Optional[TransportFactory] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not isinstance(config, ClientConfig):
            raise ConfigurationError(
                f"CacheClient requires a ClientConfig, got {type(config).__name__}"
            )
        self.config = config
        self._codec = RespCodec(config.encoding)
        self._pool = ConnectionManager(config, transport_factory, self._codec, clock)
        self._dispatcher = RequestDispatcher(self._pool, self._codec, config)

    @property
    def pool(self) -> ConnectionManager:
        return self._pool

    @property
    def dispatcher(self) -> RequestDispatcher:
        return self._dispatcher

    async def connect(self) -> "CacheClient":
        """Open the ``pool_min_size`` connections up front."""
        opened = await self._pool.warm_up()
        logger.info(f"Cache client ready for {self.config.safe_url} ({opened} connections opened)")
        return self

    async def close(self) -> None:
        await self._pool.close()

    async def __aenter__(self) -> "CacheClient":
        return await self.connect()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _make_key(self, key: Key, namespace: Optional[str] = None) -> Key:
        """Create a namespaced cache key."""
        prefix = self.config.key_prefix
        if namespace:
            prefix = f"{prefix}{namespace}:"
        if not prefix:
            return key
        if isinstance(key, bytes):
            return prefix.encode(self.config.encoding) + key
        return f"{prefix}{key}"

    def _decode_value(self, value: Optional[bytes]) -> Optional[Union[str, bytes]]:
        if value is None or not self.config.decode_responses:
            return value
        try:
            return value.decode(self.config.encoding)
        except UnicodeDecodeError:
            logger.debug("Returning undecodable cache value as bytes")
            return value

    async def execute(self, operation: Operation, timeout: Optional[float] = None) -> Any:
        """Send a prepared operation and return the raw decoded reply."""
        return await self._dispatcher.execute(operation, timeout)

    async def get(
        self,
        key: Key,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Optional[Union[str, bytes]]:
        """Get a value; ``None`` means the key was not found."""
        reply = await self.execute(Operation.get(self._make_key(key, namespace)), timeout)
        return self._decode_value(reply)

    async def set(
        self,
        key: Key,
        value: Value,
        ttl: Optional[TTL] = None,
        nx: bool = False,
        xx: bool = False,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Set a value; False when an ``nx``/``xx`` condition blocked the write."""
        operation = Operation.set(self._make_key(key, namespace), value, ttl=ttl, nx=nx, xx=xx)
        reply = await self.execute(operation, timeout)
        return reply == "OK"

    async def delete(
        self,
        key: Key,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Delete a key; True when it existed."""
        reply = await self.execute(Operation.delete(self._make_key(key, namespace)), timeout)
        return reply > 0

    async def increment(
        self,
        key: Key,
        by: int = 1,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Increment a counter and return its new value."""
        return await self.execute(Operation.increment(self._make_key(key, namespace), by), timeout)

    async def decrement(
        self,
        key: Key,
        by: int = 1,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        return await self.increment(key, -by, namespace=namespace, timeout=timeout)

    async def expire(
        self,
        key: Key,
        ttl: TTL,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """Set a key's time-to-live; False when the key does not exist."""
        reply = await self.execute(Operation.expire(self._make_key(key, namespace), ttl), timeout)
        return reply == 1

    async def exists(
        self,
        key: Key,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        reply = await self.execute(Operation.exists(self._make_key(key, namespace)), timeout)
        return reply > 0

    async def ttl(
        self,
        key: Key,
        namespace: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Optional[int]:
        """Remaining seconds; -1 for a key without expiry, None for a missing key."""
        reply = await self.execute(Operation.ttl_of(self._make_key(key, namespace)), timeout)
        return None if reply == -2 else reply

    async def ping(self, timeout: Optional[float] = None) -> bool:
        return await self.execute(Operation.ping(), timeout) == "PONG"

    async def health_check(self) -> bool:
        """Check endpoint health; never raises."""
        try:
            return await self.ping()
        except CacheError as e:
            logger.warning(f"Cache health check failed for {self.config.safe_url}: {e}")
            return False

    def get_status(self) -> Dict[str, Any]:
        """Get cache client status information."""
        return {
            "endpoint": self.config.safe_url,
            "tls": self.config.use_tls,
            "authenticated": self.config.auth_token is not None,
            "closed": self._pool.is_closed,
            "in_flight": len(self._dispatcher.in_flight),
            "pool": asdict(self._pool.stats),
        }
