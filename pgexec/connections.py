"""Pooled connection lifecycle: single-flight connects and teardown."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

import asyncpg

from .config import DriverConfig, SessionConfig
from .errors import SessionNotConnectedError

LOG = logging.getLogger(__name__)

T = TypeVar("T")

PoolFactory = Callable[..., Any]


class ConnectionState(str, Enum):
    """Lifecycle of the session's pool handle."""

    UNCONNECTED = "unconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ConnectAttemptCoordinator:
    """Ensures at most one connect operation is in flight at a time.

    Callers arriving while an attempt is running await the same task. The
    reference is dropped inside the task before it settles, so anyone resuming
    after a failure sees no attempt and can start a genuinely new one.
    """

    def __init__(self) -> None:
        self._attempt: asyncio.Task[Any] | None = None

    @property
    def in_flight(self) -> bool:
        return self._attempt is not None

    def start(self, connect: Callable[[], Awaitable[T]]) -> asyncio.Task[T]:
        """Return the running attempt, starting one from *connect* if needed."""

        if self._attempt is None:
            self._attempt = asyncio.ensure_future(self._settle(connect))
        return self._attempt

    async def run(self, connect: Callable[[], Awaitable[T]]) -> T:
        return await asyncio.shield(self.start(connect))

    async def wait(self) -> None:
        """Wait for the in-flight attempt, if any, re-raising its failure."""

        attempt = self._attempt
        if attempt is not None:
            await asyncio.shield(attempt)

    async def _settle(self, connect: Callable[[], Awaitable[T]]) -> T:
        try:
            return await connect()
        finally:
            self._attempt = None


class ConnectionSession:
    """Owns the pool handle and exposes connect/get/close primitives.

    The session never retries on its own; see :class:`pgexec.executor.RetryExecutor`.
    """

    def __init__(
        self,
        config: SessionConfig,
        driver_config: DriverConfig | None = None,
        *,
        pool_factory: PoolFactory | None = None,
    ) -> None:
        self._config = config
        self._driver_config = driver_config or DriverConfig()
        self._pool_factory = pool_factory or asyncpg.create_pool
        self._coordinator = ConnectAttemptCoordinator()
        self._pool: Any | None = None
        self._pool_pending = False
        self._state = ConnectionState.UNCONNECTED

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def driver_config(self) -> DriverConfig:
        return self._driver_config

    @property
    def pool(self) -> Any | None:
        """Current pool handle (may be unconnected)."""

        return self._pool

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connecting(self) -> bool:
        return self._coordinator.in_flight

    @property
    def connected(self) -> bool:
        if self._state is not ConnectionState.CONNECTED or self._pool is None:
            return False
        return not self._pool.is_closing()

    @property
    def server_and_port(self) -> str:
        return self._config.server_and_port()

    def init_pool(self) -> asyncio.Task[Any]:
        """Build the pool and start connecting it in the background.

        Failures are logged, never raised; the first :meth:`get_connection`
        call repairs the session. Must be called with a running event loop.
        """

        if self._coordinator.in_flight:
            return self._coordinator.start(self._open)
        if self.connected:
            return self._coordinator.start(self._current_pool)
        self._pool = self._pool_factory(**self._config.connect_kwargs())
        self._pool_pending = True
        task = self._coordinator.start(self._open)
        task.add_done_callback(self._log_background_failure)
        return task

    async def create_connection(self) -> Any:
        """Connect the pool, sharing any attempt already in flight."""

        return await self._coordinator.run(self._open)

    async def get_connection(self) -> Any:
        """Return a pool handle believed connected at the moment of return."""

        await self._coordinator.wait()
        if not self.connected:
            await self.create_connection()
        return self._pool

    async def wait_ready(self) -> Any:
        """Await an in-flight connect and return the pool without a health check."""

        await self._coordinator.wait()
        if self._pool is None or self._pool_pending:
            raise SessionNotConnectedError(f"No pool has been connected for {self.server_and_port}.")
        return self._pool

    async def close_connection(self, pool: Any | None = None) -> None:
        """Close the pool; close errors propagate to the caller.

        Without *pool* this is a teardown: an in-flight connect is allowed to
        settle and the resulting pool is closed. With *pool*, only that handle
        is closed, and only while it is still the session's pool and no
        reconnect is under way.
        """

        if pool is None:
            # a failed connect is reported to the callers that awaited it
            with contextlib.suppress(Exception):
                await self._coordinator.wait()
            pool = self._pool
        elif pool is not self._pool or self._coordinator.in_flight:
            return
        self._state = ConnectionState.UNCONNECTED
        if pool is None or self._pool_pending or pool.is_closing():
            return
        await pool.close()
        LOG.info("Closed pool", extra={"server": self.server_and_port})

    async def _open(self) -> Any:
        pool = self._pool
        if pool is None or not self._pool_pending:
            pool = self._pool_factory(**self._config.connect_kwargs())
            self._pool = pool
        self._pool_pending = False
        self._state = ConnectionState.CONNECTING
        try:
            await pool
        except BaseException:
            self._state = ConnectionState.UNCONNECTED
            if self._pool is pool:
                self._pool = None
            raise
        self._state = ConnectionState.CONNECTED
        LOG.info("Connected to %s", self.server_and_port, extra={"server": self.server_and_port})
        return pool

    async def _current_pool(self) -> Any:
        return self._pool

    def _log_background_failure(self, task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error(
                "Background connect to %s failed",
                self.server_and_port,
                exc_info=exc,
                extra={"server": self.server_and_port},
            )


__all__ = [
    "ConnectAttemptCoordinator",
    "ConnectionSession",
    "ConnectionState",
    "PoolFactory",
]
