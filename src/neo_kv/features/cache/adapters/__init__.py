"""Wire codec and transports for the cache client."""

from .resp_codec import RespCodec, RespDecoder
from .tcp_transport import TcpTransport, tcp_transport_factory
from .memory_transport import MemoryCacheServer, MemoryTransport

__all__ = [
    "RespCodec",
    "RespDecoder",
    "TcpTransport",
    "tcp_transport_factory",
    "MemoryCacheServer",
    "MemoryTransport",
]
