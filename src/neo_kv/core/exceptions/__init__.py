"""Exception hierarchy for neo-kv."""

from .base import NeoKvError, ConfigurationError, create_error_response
from .infrastructure import (
    CacheError,
    ConnectionUnavailableError,
    ProtocolError,
    CacheTimeoutError,
    AmbiguousOutcomeError,
    RemoteError,
    TransportError,
)

__all__ = [
    "NeoKvError",
    "ConfigurationError",
    "create_error_response",
    "CacheError",
    "ConnectionUnavailableError",
    "ProtocolError",
    "CacheTimeoutError",
    "AmbiguousOutcomeError",
    "RemoteError",
    "TransportError",
]
