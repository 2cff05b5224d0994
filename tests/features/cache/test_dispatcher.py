"""Tests for the request dispatcher."""

import asyncio

import pytest

from neo_kv.core.exceptions import (
    AmbiguousOutcomeError,
    CacheTimeoutError,
    ConnectionUnavailableError,
    ProtocolError,
    RemoteError,
)
from neo_kv.features.cache.entities.operation import Operation


class TestRetryPolicy:
    """Failures before any byte is sent."""

    @pytest.mark.asyncio
    async def test_idempotent_operation_retried_on_fresh_connection(
        self, make_client, scripted_factory, memory_server
    ):
        memory_server.apply(Operation.set("k", "v"))
        factory = scripted_factory(["before_send", "before_send", None])
        client = make_client(transport_factory=factory, max_retries=2)

        assert await client.execute(Operation.get("k")) == b"v"
        assert len(factory.transports) == 3
        assert client.pool.stats.discarded == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, make_client, scripted_factory):
        factory = scripted_factory(["before_send"] * 5)
        client = make_client(transport_factory=factory, max_retries=2)

        with pytest.raises(ConnectionUnavailableError) as exc_info:
            await client.execute(Operation.get("k"))
        assert exc_info.value.reason == ConnectionUnavailableError.SEND_FAILED
        assert factory.total_writes == 3

    @pytest.mark.asyncio
    async def test_non_idempotent_operation_not_retried(self, make_client, scripted_factory, memory_server):
        factory = scripted_factory(["before_send", None])
        client = make_client(transport_factory=factory)

        with pytest.raises(ConnectionUnavailableError):
            await client.execute(Operation.increment("counter"))
        assert factory.total_writes == 1
        assert memory_server.apply(Operation.get("counter")) is None

    @pytest.mark.asyncio
    async def test_connect_failure_retried_for_idempotent(self, make_client, memory_server):
        attempts = []

        async def flaky_factory():
            attempts.append(1)
            if len(attempts) == 1:
                raise OSError("connection refused")
            return await memory_server.connect()

        client = make_client(transport_factory=flaky_factory)
        assert await client.execute(Operation.ping()) == "PONG"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_exhausted_pool_not_retried(self, make_client, memory_server):
        client = make_client(pool_max_size=1, acquire_timeout=0.05)
        held = await client.pool.acquire()

        with pytest.raises(ConnectionUnavailableError) as exc_info:
            await client.execute(Operation.get("k"))
        assert exc_info.value.reason == ConnectionUnavailableError.EXHAUSTED
        await client.pool.release(held)


class TestAmbiguousOutcomes:
    """Failures after bytes reached the wire are never replayed."""

    @pytest.mark.asyncio
    async def test_failure_after_send_is_ambiguous(self, make_client, scripted_factory, memory_server):
        factory = scripted_factory(["after_send", None])
        client = make_client(transport_factory=factory)

        with pytest.raises(AmbiguousOutcomeError):
            await client.execute(Operation.increment("counter"))

        assert factory.total_writes == 1
        # The request did reach the server
        assert memory_server.apply(Operation.get("counter")) == b"1"
        assert client.pool.stats.idle == 0

    @pytest.mark.asyncio
    async def test_idempotent_failure_after_send_not_retried(self, make_client, scripted_factory):
        factory = scripted_factory(["after_send", None])
        client = make_client(transport_factory=factory)

        with pytest.raises(AmbiguousOutcomeError):
            await client.execute(Operation.get("k"))
        assert factory.total_writes == 1

    @pytest.mark.asyncio
    async def test_peer_closing_before_reply_is_ambiguous(self, make_client, memory_server):
        client = make_client()
        conn = await client.pool.acquire()
        conn.transport.hold_replies = True
        await client.pool.release(conn)

        task = asyncio.create_task(client.execute(Operation.set("k", "v")))
        await asyncio.sleep(0.01)
        memory_server.drop_connections()

        with pytest.raises(AmbiguousOutcomeError):
            await task
        assert client.pool.stats.total == 0


class TestDeadlines:
    """Per-call deadlines and cancellation."""

    @pytest.mark.asyncio
    async def test_timeout_marks_connection_broken(self, make_client):
        client = make_client()
        conn = await client.pool.acquire()
        conn.transport.hold_replies = True
        await client.pool.release(conn)

        with pytest.raises(CacheTimeoutError):
            await client.execute(Operation.get("k"), timeout=0.05)

        assert conn.is_broken
        assert not conn.transport.is_open
        assert client.dispatcher.in_flight == []

        # The next call gets a fresh connection
        assert await client.execute(Operation.ping()) == "PONG"

    @pytest.mark.asyncio
    async def test_retry_backoff_never_outlives_deadline(self, make_client, scripted_factory):
        factory = scripted_factory(["before_send", None])
        client = make_client(transport_factory=factory, retry_backoff=0.3)
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(CacheTimeoutError) as exc_info:
            await client.execute(Operation.get("k"), timeout=0.1)

        assert loop.time() - started < 0.3
        assert factory.total_writes == 1
        assert exc_info.value.details["sent"] is False

    @pytest.mark.asyncio
    async def test_request_not_written_after_deadline(self, make_client, memory_server):
        client = make_client(pool_max_size=1, acquire_timeout=1.0)
        held = await client.pool.acquire()

        task = asyncio.create_task(client.execute(Operation.increment("n"), timeout=0.05))
        await asyncio.sleep(0.1)
        await client.pool.release(held)

        with pytest.raises(CacheTimeoutError):
            await task

        assert [c for c in memory_server.commands if c[0] == b"INCRBY"] == []
        assert client.pool.stats.idle == 1
        assert client.pool.stats.discarded == 0

    @pytest.mark.asyncio
    async def test_pending_request_registered_while_waiting(self, make_client):
        client = make_client()
        conn = await client.pool.acquire()
        conn.transport.hold_replies = True
        await client.pool.release(conn)

        task = asyncio.create_task(client.execute(Operation.ping(), timeout=1.0))
        await asyncio.sleep(0.01)

        [pending] = client.dispatcher.in_flight
        assert pending.connection_id == conn.id
        assert conn.pending is pending
        assert not pending.is_done

        conn.transport.release_replies()
        assert await task == "PONG"
        assert pending.reply() == "PONG"
        assert client.dispatcher.in_flight == []
        assert client.pool.stats.idle == 1

    @pytest.mark.asyncio
    async def test_cancellation_after_dispatch_does_not_resend(self, make_client, memory_server):
        client = make_client()
        conn = await client.pool.acquire()
        conn.transport.hold_replies = True
        await client.pool.release(conn)

        task = asyncio.create_task(client.execute(Operation.increment("n")))
        await asyncio.sleep(0.01)
        [pending] = client.dispatcher.in_flight

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert pending.expired
        assert conn.is_broken
        assert client.dispatcher.in_flight == []
        assert [c for c in memory_server.commands if c[0] == b"INCRBY"] == [[b"INCRBY", b"n", b"1"]]


class TestReplies:
    """Error frames and malformed replies."""

    @pytest.mark.asyncio
    async def test_remote_error_raised_and_connection_kept(self, make_client, memory_server):
        memory_server.apply(Operation.set("s", "text"))
        client = make_client()

        with pytest.raises(RemoteError) as exc_info:
            await client.execute(Operation.increment("s"))
        assert exc_info.value.kind == "ERR"
        assert client.pool.stats.idle == 1
        assert client.pool.stats.discarded == 0

    @pytest.mark.asyncio
    async def test_malformed_reply_breaks_connection(self, make_client, scripted_factory):
        factory = scripted_factory(["garbage", None])
        client = make_client(transport_factory=factory)

        with pytest.raises(ProtocolError):
            await client.execute(Operation.get("k"))
        assert client.pool.stats.discarded == 1
        assert await client.execute(Operation.ping()) == "PONG"

    @pytest.mark.asyncio
    async def test_unencodable_operation_fails_before_io(self, make_client, memory_server):
        client = make_client()
        with pytest.raises(ProtocolError):
            await client.execute(Operation.set("k", True))
        assert memory_server.connections_opened == 0


class TestConcurrency:
    """Requests never share a connection."""

    @pytest.mark.asyncio
    async def test_pool_of_one_serializes_requests(self, make_client, scripted_factory, memory_server):
        factory = scripted_factory([], read_delay=True)
        client = make_client(transport_factory=factory, pool_max_size=1, acquire_timeout=2.0)

        active = set()
        overlaps = []
        original_acquire = client.pool.acquire
        original_release = client.pool.release

        async def tracking_acquire():
            conn = await original_acquire()
            if conn.id in active:
                overlaps.append(conn.id)
            active.add(conn.id)
            return conn

        async def tracking_release(conn):
            active.discard(conn.id)
            await original_release(conn)

        client.pool.acquire = tracking_acquire
        client.pool.release = tracking_release

        results = await asyncio.gather(*[
            client.execute(Operation.increment("n")) for _ in range(20)
        ])

        assert sorted(results) == list(range(1, 21))
        assert overlaps == []
        assert len(factory.transports) == 1
        assert memory_server.apply(Operation.get("n")) == b"20"

    @pytest.mark.asyncio
    async def test_concurrent_requests_use_distinct_connections(self, make_client, scripted_factory):
        factory = scripted_factory([], read_delay=True)
        client = make_client(transport_factory=factory, pool_max_size=4)

        async def run(i):
            return await client.execute(Operation.set(f"k{i}", str(i)))

        results = await asyncio.gather(*[run(i) for i in range(8)])
        assert results == ["OK"] * 8
        assert 1 <= len(factory.transports) <= 4
        for transport in factory.transports:
            assert transport.writes >= 1
