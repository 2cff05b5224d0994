"""Tests for cache client entities."""

import asyncio
import dataclasses

import pytest

from neo_kv.core.exceptions import TransportError
from neo_kv.features.cache.entities.connection import Connection, ConnectionState
from neo_kv.features.cache.entities.operation import Operation, OperationKind
from neo_kv.features.cache.entities.pending import PendingRequest
from neo_kv.features.cache.adapters.resp_codec import RespDecoder


class TestOperation:
    """Operation construction and validation."""

    def test_idempotent_kinds(self):
        assert Operation.get("k").is_idempotent
        assert Operation.delete("k").is_idempotent
        assert Operation.expire("k", 10).is_idempotent
        assert Operation.exists("k").is_idempotent
        assert Operation.ping().is_idempotent
        assert not Operation.set("k", "v").is_idempotent
        assert not Operation.increment("k").is_idempotent

    def test_kind_accepts_string(self):
        assert Operation("get", "k").kind is OperationKind.GET

    def test_operations_are_immutable(self):
        operation = Operation.get("k")
        with pytest.raises(dataclasses.FrozenInstanceError):
            operation.key = "other"

    @pytest.mark.parametrize("build", [
        lambda: Operation.get(""),
        lambda: Operation(OperationKind.GET),
        lambda: Operation(OperationKind.SET, "k"),
        lambda: Operation.set("k", "v", nx=True, xx=True),
        lambda: Operation(OperationKind.EXPIRE, "k"),
        lambda: Operation.expire("k", 0),
        lambda: Operation.set("k", "v", ttl=-1),
        lambda: Operation.set("k", "v", ttl=True),
        lambda: Operation(OperationKind.GET, "k", ttl=5),
        lambda: Operation(OperationKind.GET, "k", value="v"),
        lambda: Operation.increment("k", 1.5),
        lambda: Operation.increment("k", True),
        lambda: Operation(OperationKind.PING, "k"),
    ])
    def test_invalid_operations_rejected(self, build):
        with pytest.raises(ValueError):
            build()


class FakeTransport:
    def __init__(self):
        self.open = True

    @property
    def is_open(self):
        return self.open

    async def write(self, data):
        pass

    async def read(self):
        return b""

    async def close(self):
        self.open = False


class TestConnection:
    """Connection state transitions."""

    def test_state_transitions(self):
        ticks = iter([1.0, 2.0, 3.0, 4.0])
        conn = Connection(id=1, transport=FakeTransport(), decoder=RespDecoder(), clock=lambda: next(ticks))
        assert conn.state is ConnectionState.IDLE
        assert conn.last_activity == 1.0

        conn.mark_in_use()
        assert conn.state is ConnectionState.IN_USE
        assert conn.last_activity == 2.0

        conn.mark_broken()
        assert conn.is_broken
        assert not conn.is_live

    def test_closed_transport_is_not_live(self):
        transport = FakeTransport()
        conn = Connection(id=1, transport=transport, decoder=RespDecoder())
        transport.open = False
        assert not conn.is_live

    @pytest.mark.asyncio
    async def test_one_pending_request_per_connection(self):
        conn = Connection(id=7, transport=FakeTransport(), decoder=RespDecoder())
        first = PendingRequest(correlation_id=1, kind=OperationKind.GET, deadline=10.0, connection_id=7)
        second = PendingRequest(correlation_id=2, kind=OperationKind.GET, deadline=10.0, connection_id=7)

        conn.attach(first)
        with pytest.raises(RuntimeError):
            conn.attach(second)

        first.resolve(b"v")
        conn.attach(second)
        assert conn.pending is second

    @pytest.mark.asyncio
    async def test_peer_close_during_read(self):
        conn = Connection(id=1, transport=FakeTransport(), decoder=RespDecoder())
        with pytest.raises(TransportError):
            await conn.read_reply()


class TestPendingRequest:

    @pytest.mark.asyncio
    async def test_resolve_and_expire(self):
        loop = asyncio.get_running_loop()
        pending = PendingRequest(correlation_id=1, kind=OperationKind.GET, deadline=loop.time() + 5, connection_id=1)
        assert 0 < pending.remaining(loop.time()) <= 5
        pending.resolve("OK")
        assert pending.reply() == "OK"

        expired = PendingRequest(correlation_id=2, kind=OperationKind.GET, deadline=loop.time(), connection_id=1)
        expired.expire()
        assert expired.expired
        assert expired.result.cancelled()
        assert expired.reply() is None
        assert expired.remaining(loop.time() + 1) == 0.0
