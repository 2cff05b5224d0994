"""TCP transport for the cache endpoint, built on asyncio streams."""

import asyncio
import logging
import ssl
from typing import Optional

from ..entities.config import ClientConfig
from ..entities.protocols import TransportFactory
from ....core.exceptions import TransportError

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 64 * 1024


class TcpTransport:
    """Stream transport; TLS is negotiated when an SSL context is given."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_size: int = READ_CHUNK_SIZE,
    ):
        self._reader = reader
        self._writer = writer
        self._read_size = read_size

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> "TcpTransport":
        try:
            reader, writer = await asyncio.open_connection(
                host,
                port,
                ssl=ssl_context,
                server_hostname=host if ssl_context else None,
            )
        except OSError as e:
            raise TransportError(f"Cannot connect to {host}:{port}: {e}", bytes_sent=0) from e
        return cls(reader, writer)

    @property
    def is_open(self) -> bool:
        return not self._writer.is_closing() and not self._reader.at_eof()

    async def write(self, data: bytes) -> None:
        if not self.is_open:
            raise TransportError("Transport is closed", bytes_sent=0)
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (OSError, RuntimeError) as e:
            # The kernel may already have sent part of the buffer.
            raise TransportError(f"Write failed: {e}", bytes_sent=-1) from e

    async def read(self) -> bytes:
        try:
            return await self._reader.read(self._read_size)
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e

    async def close(self) -> None:
        if self._writer.is_closing():
            return
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except OSError as e:
            logger.debug(f"Error while closing transport: {e}")


def tcp_transport_factory(config: ClientConfig) -> TransportFactory:
    """Build the default transport factory for ``config``'s endpoint."""
    ssl_context = ssl.create_default_context() if config.use_tls else None

    async def factory() -> TcpTransport:
        return await TcpTransport.open(config.host, config.port, ssl_context)

    return factory
