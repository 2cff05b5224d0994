"""Cache client infrastructure exceptions for neo-kv."""

from typing import Any, Dict, Optional

from .base import NeoKvError


class CacheError(NeoKvError):
    """Base class for cache-related errors."""
    pass


class ConnectionUnavailableError(CacheError):
    """Raised when no live connection can be handed out.

    ``reason`` tells the cases apart:

    - ``exhausted``: the pool stayed at capacity for the whole acquire wait
    - ``connect_failed``: opening a fresh transport failed
    - ``auth_failed``: the endpoint rejected the access token
    - ``closed``: the pool has been closed
    - ``send_failed``: the transport failed before a request byte was written
    """

    EXHAUSTED = "exhausted"
    CONNECT_FAILED = "connect_failed"
    AUTH_FAILED = "auth_failed"
    CLOSED = "closed"
    SEND_FAILED = "send_failed"

    def __init__(
        self,
        message: str,
        reason: str = EXHAUSTED,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        details.setdefault("reason", reason)
        super().__init__(message, details=details)
        self.reason = reason


class ProtocolError(CacheError):
    """Raised when a frame is malformed or cannot be encoded."""
    pass


class CacheTimeoutError(CacheError):
    """Raised when a request deadline elapses before the reply arrives."""
    pass


class AmbiguousOutcomeError(CacheError):
    """Raised when the transport failed after request bytes were sent.

    The remote side may or may not have applied the operation, so it is
    never retried automatically.
    """
    pass


class RemoteError(CacheError):
    """Error reported by the cache endpoint itself.

    Error frames look like ``-WRONGTYPE Operation against a key ...``; the
    leading upper-case word is kept as ``kind``.
    """

    def __init__(self, message: str, kind: Optional[str] = None):
        if kind is None:
            head = message.split(" ", 1)[0]
            kind = head if head.isupper() else "ERR"
        super().__init__(message, error_code=kind, details={"kind": kind})
        self.kind = kind

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RemoteError):
            return NotImplemented
        return self.message == other.message and self.kind == other.kind

    def __hash__(self) -> int:
        return hash((self.message, self.kind))

    def __repr__(self) -> str:
        return f"RemoteError({self.message!r})"


class TransportError(CacheError):
    """Raised by transports when the underlying link fails.

    ``bytes_sent`` is 0 when the failure happened before anything was
    written, and -1 when it cannot be known.
    """

    def __init__(self, message: str, bytes_sent: int = -1):
        super().__init__(message, details={"bytes_sent": bytes_sent})
        self.bytes_sent = bytes_sent

    @property
    def nothing_sent(self) -> bool:
        return self.bytes_sent == 0
