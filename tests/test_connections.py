"""Tests for the connection session and its single-flight connects."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from pgexec.config import SessionConfig
from pgexec.connections import ConnectAttemptCoordinator, ConnectionSession, ConnectionState
from pgexec.errors import SessionNotConnectedError


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _FakePool:
    def __init__(self, factory: "_PoolFactory", kwargs: dict[str, Any]) -> None:
        self.factory = factory
        self.kwargs = kwargs
        self.initialized = False
        self.closed = False

    def __await__(self):  # type: ignore[no-untyped-def]
        return self._initialize().__await__()

    async def _initialize(self) -> "_FakePool":
        self.factory.connects += 1
        await asyncio.sleep(0)
        if self.factory.gate is not None:
            await self.factory.gate.wait()
        if self.factory.errors:
            raise self.factory.errors.pop(0)
        self.initialized = True
        return self

    def is_closing(self) -> bool:
        return self.closed

    async def close(self) -> None:
        if not self.initialized:
            raise RuntimeError("pool is being initialized, but not yet ready")
        if self.factory.close_error is not None:
            raise self.factory.close_error
        self.closed = True


class _PoolFactory:
    def __init__(self, *errors: BaseException) -> None:
        self.errors = list(errors)
        self.pools: list[_FakePool] = []
        self.connects = 0
        self.close_error: BaseException | None = None
        self.gate: asyncio.Event | None = None

    def __call__(self, **kwargs: Any) -> _FakePool:
        pool = _FakePool(self, kwargs)
        self.pools.append(pool)
        return pool


def _session(factory: _PoolFactory) -> ConnectionSession:
    return ConnectionSession(SessionConfig(host="db.internal", port=6543), pool_factory=factory)


@pytest.mark.anyio
async def test_concurrent_callers_share_one_connect() -> None:
    factory = _PoolFactory()
    session = _session(factory)

    pools = await asyncio.gather(*(session.get_connection() for _ in range(5)))

    assert factory.connects == 1
    assert len(factory.pools) == 1
    assert all(pool is factory.pools[0] for pool in pools)
    assert session.state is ConnectionState.CONNECTED
    assert factory.pools[0].kwargs["host"] == "db.internal"


@pytest.mark.anyio
async def test_sequential_calls_reuse_connected_pool() -> None:
    factory = _PoolFactory()
    session = _session(factory)

    first = await session.get_connection()
    second = await session.get_connection()

    assert first is second
    assert factory.connects == 1


@pytest.mark.anyio
async def test_failed_attempt_is_cleared_before_callers_resume() -> None:
    factory = _PoolFactory(OSError("Connect call failed"))
    session = _session(factory)

    results = await asyncio.gather(
        *(session.create_connection() for _ in range(3)),
        return_exceptions=True,
    )

    assert all(isinstance(result, OSError) for result in results)
    assert factory.connects == 1
    assert session.connecting is False
    assert session.state is ConnectionState.UNCONNECTED
    assert session.pool is None

    pool = await session.get_connection()

    assert factory.connects == 2
    assert pool is factory.pools[1]


@pytest.mark.anyio
async def test_init_pool_logs_background_failures(caplog: pytest.LogCaptureFixture) -> None:
    factory = _PoolFactory(OSError("Connect call failed"))
    session = _session(factory)

    with caplog.at_level(logging.ERROR, logger="pgexec.connections"):
        task = session.init_pool()
        assert session.connecting is True
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

    assert session.connected is False
    assert "Background connect to db.internal:6543 failed" in caplog.text

    pool = await session.get_connection()

    assert pool is factory.pools[1]
    assert session.connected is True


@pytest.mark.anyio
async def test_get_connection_waits_for_init_pool() -> None:
    factory = _PoolFactory()
    session = _session(factory)

    session.init_pool()
    pool = await session.get_connection()

    assert factory.connects == 1
    assert pool is factory.pools[0]
    assert pool.initialized is True


@pytest.mark.anyio
async def test_init_pool_keeps_connected_pool() -> None:
    factory = _PoolFactory()
    session = _session(factory)
    pool = await session.get_connection()

    assert await session.init_pool() is pool
    assert len(factory.pools) == 1


@pytest.mark.anyio
async def test_close_marks_session_unconnected_and_reconnects_with_new_pool() -> None:
    factory = _PoolFactory()
    session = _session(factory)
    first = await session.get_connection()

    await session.close_connection()

    assert first.closed is True
    assert session.connected is False
    second = await session.get_connection()
    assert second is not first
    assert factory.connects == 2


@pytest.mark.anyio
async def test_close_errors_propagate() -> None:
    factory = _PoolFactory()
    factory.close_error = RuntimeError("close failed")
    session = _session(factory)
    await session.get_connection()

    with pytest.raises(RuntimeError, match="close failed"):
        await session.close_connection()


@pytest.mark.anyio
async def test_teardown_waits_for_in_flight_connect() -> None:
    factory = _PoolFactory()
    factory.gate = asyncio.Event()
    session = _session(factory)
    connecting = asyncio.create_task(session.get_connection())
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    closing = asyncio.create_task(session.close_connection())
    await asyncio.sleep(0)

    assert session.connecting is True
    assert factory.pools[0].closed is False
    factory.gate.set()
    pool = await connecting
    await closing

    assert pool.initialized is True
    assert pool.closed is True
    assert session.connected is False


@pytest.mark.anyio
async def test_closing_a_used_pool_skips_an_in_flight_reconnect() -> None:
    factory = _PoolFactory()
    session = _session(factory)
    first = await session.get_connection()
    await session.close_connection(first)
    factory.gate = asyncio.Event()
    reconnect = asyncio.create_task(session.get_connection())
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    await session.close_connection(first)
    await session.close_connection(session.pool)

    assert factory.pools[1].closed is False
    factory.gate.set()
    second = await reconnect
    assert second is factory.pools[1]
    assert session.connected is True


@pytest.mark.anyio
async def test_closing_a_replaced_pool_leaves_the_current_one_open() -> None:
    factory = _PoolFactory()
    session = _session(factory)
    first = await session.get_connection()
    await session.close_connection()
    second = await session.get_connection()

    await session.close_connection(first)

    assert second.closed is False
    assert session.connected is True


@pytest.mark.anyio
async def test_wait_ready_requires_a_pool() -> None:
    session = _session(_PoolFactory())

    with pytest.raises(SessionNotConnectedError):
        await session.wait_ready()


@pytest.mark.anyio
async def test_wait_ready_skips_health_check() -> None:
    factory = _PoolFactory()
    session = _session(factory)
    pool = await session.get_connection()
    pool.closed = True

    assert await session.wait_ready() is pool
    assert factory.connects == 1


@pytest.mark.anyio
async def test_coordinator_drops_reference_after_success() -> None:
    coordinator = ConnectAttemptCoordinator()
    calls = 0

    async def _connect() -> int:
        nonlocal calls
        calls += 1
        await asyncio.sleep(0)
        return calls

    assert await asyncio.gather(coordinator.run(_connect), coordinator.run(_connect)) == [1, 1]
    assert coordinator.in_flight is False
    assert await coordinator.run(_connect) == 2


def test_server_and_port_comes_from_config() -> None:
    assert _session(_PoolFactory()).server_and_port == "db.internal:6543"
