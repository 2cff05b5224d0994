"""Cache client feature for neo-kv.

Feature-First architecture:
- entities/: operations, connections, pending requests, configuration
- adapters/: RESP codec, TCP and in-memory transports
- repositories/: connection pool
- services/: request dispatcher and the client facade
"""

from .entities import ClientConfig, Operation, OperationKind
from .adapters import RespCodec, MemoryCacheServer
from .repositories import ConnectionManager
from .services import CacheClient, RequestDispatcher

__all__ = [
    "ClientConfig",
    "Operation",
    "OperationKind",
    "RespCodec",
    "MemoryCacheServer",
    "ConnectionManager",
    "CacheClient",
    "RequestDispatcher",
]
