"""Public entry point tying the session, dispatcher and retry executor together."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping

import asyncpg

from .config import DriverConfig, SessionConfig
from .connections import ConnectionSession, PoolFactory
from .dispatch import Row, StatementDispatcher
from .executor import RetryExecutor, Sleep
from .models import StatementRequest, coerce_statement, statement_label

LOG = logging.getLogger(__name__)


class Database:
    """Resilient statement execution over a pooled asyncpg connection."""

    native = asyncpg

    def __init__(
        self,
        session_config: SessionConfig,
        driver_config: DriverConfig | None = None,
        *,
        pool_factory: PoolFactory | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._session = ConnectionSession(session_config, driver_config, pool_factory=pool_factory)
        self._dispatcher = StatementDispatcher(self.native)
        self._executor = RetryExecutor(self._session, dispatcher=self._dispatcher, sleep=sleep)

    @property
    def session(self) -> ConnectionSession:
        return self._session

    @property
    def pool(self) -> Any | None:
        return self._session.pool

    def init_pool(self) -> asyncio.Task[Any]:
        """Start connecting in the background; see :meth:`ConnectionSession.init_pool`."""

        return self._session.init_pool()

    async def execute(
        self,
        statement: StatementRequest | str | Mapping[str, Any],
        *,
        debug: bool = False,
        return_multiple_sets: bool = False,
    ) -> list[Row] | list[list[Row]]:
        """Run a query, retrying transient connection failures."""

        return await self._executor.execute(
            statement,
            debug=debug,
            return_multiple_sets=return_multiple_sets,
        )

    async def execute_sp(self, statement: StatementRequest | str | Mapping[str, Any]) -> list[Row]:
        """Call a stored procedure once; errors propagate without retry."""

        request = coerce_statement(statement)
        pool = await self._session.wait_ready()
        try:
            result = await self._dispatcher.run_procedure(pool, request)
        except Exception as exc:
            LOG.error("SQL error: %s", exc, extra={"statement": statement_label(request)})
            raise
        return result.recordset or []

    async def close(self) -> None:
        await self._session.close_connection()

    async def __aenter__(self) -> Database:
        await self._session.get_connection()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


__all__ = ["Database"]
