"""Cache client domain objects: operations, connections, configuration."""

from .config import ClientConfig
from .connection import Connection, ConnectionState
from .operation import Operation, OperationKind
from .pending import PendingRequest
from .protocols import INCOMPLETE, ReplyDecoder, Transport, TransportFactory

__all__ = [
    "ClientConfig",
    "Connection",
    "ConnectionState",
    "Operation",
    "OperationKind",
    "PendingRequest",
    "INCOMPLETE",
    "ReplyDecoder",
    "Transport",
    "TransportFactory",
]
