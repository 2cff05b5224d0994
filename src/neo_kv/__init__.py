"""Neo-KV - key-value cache client core for NeoMultiTenant services.

Connection pooling, the RESP wire codec and a request dispatcher with
deadlines and bounded retries, behind an explicitly constructed
``CacheClient``.
"""

from .__version__ import __version__

from .core.exceptions import (
    # Base Exception
    NeoKvError,
    ConfigurationError,

    # Cache Exceptions
    CacheError,
    ConnectionUnavailableError,
    ProtocolError,
    CacheTimeoutError,
    AmbiguousOutcomeError,
    RemoteError,

    # Utility Functions
    create_error_response,
)

from .features.cache import (
    CacheClient,
    ClientConfig,
    ConnectionManager,
    MemoryCacheServer,
    Operation,
    OperationKind,
    RequestDispatcher,
    RespCodec,
)

from .config import CacheClientSettings, load_client_config, setup_logging

__all__ = [
    "__version__",
    "NeoKvError",
    "ConfigurationError",
    "CacheError",
    "ConnectionUnavailableError",
    "ProtocolError",
    "CacheTimeoutError",
    "AmbiguousOutcomeError",
    "RemoteError",
    "create_error_response",
    "CacheClient",
    "ClientConfig",
    "ConnectionManager",
    "MemoryCacheServer",
    "Operation",
    "OperationKind",
    "RequestDispatcher",
    "RespCodec",
    "CacheClientSettings",
    "load_client_config",
    "setup_logging",
]
