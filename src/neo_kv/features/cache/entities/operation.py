"""Operation entity: one requested action against the cache endpoint."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

Key = Union[str, bytes]
Value = Union[str, bytes, int, float]
TTL = Union[int, float]


class OperationKind(str, Enum):
    """Supported operation kinds and the command each one maps to."""
    GET = "get"
    SET = "set"
    DELETE = "delete"
    INCREMENT = "increment"
    EXPIRE = "expire"
    EXISTS = "exists"
    TTL = "ttl"
    PING = "ping"

    @property
    def is_idempotent(self) -> bool:
        """Whether the operation can be replayed without changing semantics."""
        return self in _IDEMPOTENT_KINDS


_IDEMPOTENT_KINDS = frozenset({
    OperationKind.GET,
    OperationKind.DELETE,
    OperationKind.EXPIRE,
    OperationKind.EXISTS,
    OperationKind.TTL,
    OperationKind.PING,
})


@dataclass(frozen=True)
class Operation:
    """An immutable request for the dispatcher.

    Attributes:
        kind: What to do
        key: Target key (absent only for PING)
        value: Payload for SET
        ttl: Time-to-live in seconds for SET and EXPIRE. Integers map to
            second precision, fractional floats to millisecond precision.
        amount: Step for INCREMENT (may be negative)
        nx: SET only when the key does not exist
        xx: SET only when the key already exists
    """
    kind: OperationKind
    key: Optional[Key] = None
    value: Optional[Value] = None
    ttl: Optional[TTL] = None
    amount: int = 1
    nx: bool = False
    xx: bool = False

    def __post_init__(self):
        if not isinstance(self.kind, OperationKind):
            object.__setattr__(self, "kind", OperationKind(self.kind))

        if self.kind is OperationKind.PING:
            if self.key is not None:
                raise ValueError("PING does not take a key")
        elif not isinstance(self.key, (str, bytes)) or not self.key:
            raise ValueError(f"{self.kind.value} requires a non-empty key")

        if self.kind is OperationKind.SET:
            if self.value is None:
                raise ValueError("set requires a value")
            if self.nx and self.xx:
                raise ValueError("nx and xx are mutually exclusive")
        elif self.value is not None:
            raise ValueError(f"{self.kind.value} does not take a value")

        if self.kind is OperationKind.EXPIRE and self.ttl is None:
            raise ValueError("expire requires a ttl")

        if self.ttl is not None:
            if isinstance(self.ttl, bool) or not isinstance(self.ttl, (int, float)):
                raise ValueError(f"ttl must be a number, got {type(self.ttl).__name__}")
            if self.kind not in (OperationKind.SET, OperationKind.EXPIRE):
                raise ValueError(f"{self.kind.value} does not take a ttl")
            if self.ttl <= 0:
                raise ValueError(f"ttl must be positive, got {self.ttl}")

        if isinstance(self.amount, bool) or not isinstance(self.amount, int):
            raise ValueError("increment amount must be an integer")

    @property
    def is_idempotent(self) -> bool:
        return self.kind.is_idempotent

    # Constructors used by the client facade

    @classmethod
    def get(cls, key: Key) -> "Operation":
        return cls(OperationKind.GET, key)

    @classmethod
    def set(
        cls,
        key: Key,
        value: Value,
        ttl: Optional[TTL] = None,
        nx: bool = False,
        xx: bool = False,
    ) -> "Operation":
        return cls(OperationKind.SET, key, value=value, ttl=ttl, nx=nx, xx=xx)

    @classmethod
    def delete(cls, key: Key) -> "Operation":
        return cls(OperationKind.DELETE, key)

    @classmethod
    def increment(cls, key: Key, by: int = 1) -> "Operation":
        return cls(OperationKind.INCREMENT, key, amount=by)

    @classmethod
    def expire(cls, key: Key, ttl: TTL) -> "Operation":
        return cls(OperationKind.EXPIRE, key, ttl=ttl)

    @classmethod
    def exists(cls, key: Key) -> "Operation":
        return cls(OperationKind.EXISTS, key)

    @classmethod
    def ttl_of(cls, key: Key) -> "Operation":
        return cls(OperationKind.TTL, key)

    @classmethod
    def ping(cls) -> "Operation":
        return cls(OperationKind.PING)
