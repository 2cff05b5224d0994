"""Pytest configuration and fixtures for neo-kv tests."""

import asyncio
from typing import List, Optional

import pytest
import pytest_asyncio

from neo_kv.core.exceptions import TransportError
from neo_kv.features.cache.adapters.memory_transport import MemoryCacheServer, MemoryTransport
from neo_kv.features.cache.entities.config import ClientConfig
from neo_kv.features.cache.services.cache_client import CacheClient


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FlakyTransport:
    """Wraps a memory transport and injects failures.

    Modes:
        "before_send": write fails without delivering anything
        "after_send": write delivers the request, then fails
        "garbage": replies are replaced with an invalid frame
        None: pass-through
    """

    def __init__(self, inner: MemoryTransport, mode: Optional[str] = None, read_delay: bool = False):
        self.inner = inner
        self.mode = mode
        self.read_delay = read_delay
        self.writes = 0

    @property
    def is_open(self) -> bool:
        return self.inner.is_open

    async def write(self, data: bytes) -> None:
        self.writes += 1
        if self.mode == "before_send":
            raise TransportError("injected failure before send", bytes_sent=0)
        await self.inner.write(data)
        if self.mode == "after_send":
            raise TransportError("injected failure after send", bytes_sent=len(data))

    async def read(self) -> bytes:
        if self.read_delay:
            await asyncio.sleep(0)
        if self.mode == "garbage":
            await self.inner.read()
            return b"?garbage\r\n"
        return await self.inner.read()

    async def close(self) -> None:
        await self.inner.close()


class ScriptedFactory:
    """Transport factory handing out one failure mode per new connection."""

    def __init__(self, server: MemoryCacheServer, modes: List[Optional[str]], read_delay: bool = False):
        self.server = server
        self.modes = list(modes)
        self.read_delay = read_delay
        self.transports: List[FlakyTransport] = []

    async def __call__(self) -> FlakyTransport:
        mode = self.modes.pop(0) if self.modes else None
        transport = FlakyTransport(await self.server.connect(), mode, self.read_delay)
        self.transports.append(transport)
        return transport

    @property
    def total_writes(self) -> int:
        return sum(t.writes for t in self.transports)


@pytest.fixture
def clock():
    """Fake clock shared by the memory server and the pool."""
    return FakeClock()


@pytest.fixture
def memory_server(clock):
    """In-process cache endpoint without authentication."""
    return MemoryCacheServer(clock=clock)


@pytest.fixture
def client_config():
    """Small pool with short timeouts and no retry backoff."""
    return ClientConfig(
        url="redis://cache.test:6379",
        pool_max_size=2,
        acquire_timeout=0.2,
        connect_timeout=0.5,
        command_timeout=0.5,
        idle_timeout=60.0,
        max_retries=2,
        retry_backoff=0.0,
    )


@pytest.fixture
def make_client(memory_server, client_config, clock):
    """Build clients wired to the memory server."""
    def _make(config: Optional[ClientConfig] = None, transport_factory=None, **overrides) -> CacheClient:
        config = config or client_config
        if overrides:
            config = ClientConfig.model_validate({**config.model_dump(), **overrides})
        return CacheClient(
            config,
            transport_factory=transport_factory or memory_server.transport_factory(),
            clock=clock,
        )

    return _make


@pytest_asyncio.fixture
async def cache_client(make_client):
    """Connected cache client against the memory server."""
    client = make_client()
    async with client:
        yield client


@pytest.fixture
def scripted_factory(memory_server):
    """Build a ``ScriptedFactory`` over the memory server."""
    def _make(modes: List[Optional[str]], read_delay: bool = False) -> ScriptedFactory:
        return ScriptedFactory(memory_server, modes, read_delay)
    return _make
