"""Retrying execution path over a :class:`ConnectionSession`."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

from .connections import ConnectionSession
from .debug import render_debug
from .dispatch import Row, StatementDispatcher
from .errors import is_transient
from .models import StatementRequest, coerce_statement, statement_label

LOG = logging.getLogger(__name__)

# Delay before the second and later reconnect attempts; the first retry is immediate.
RECONNECT_DELAY = 2.0

Sleep = Callable[[float], Awaitable[Any]]


class RetryExecutor:
    """Dispatches statements and retries transient connection failures."""

    def __init__(
        self,
        session: ConnectionSession,
        *,
        dispatcher: StatementDispatcher | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._session = session
        self._dispatcher = dispatcher or StatementDispatcher()
        self._sleep = sleep or asyncio.sleep

    @property
    def max_retry_to_connect(self) -> int:
        return self._session.driver_config.max_retry_to_connect

    async def execute(
        self,
        statement: StatementRequest | str | Mapping[str, Any],
        *,
        debug: bool = False,
        return_multiple_sets: bool = False,
    ) -> list[Row] | list[list[Row]]:
        """Run *statement*, reconnecting on transient connection errors.

        Up to ``max_retry_to_connect`` retries are made; the loop admits one
        more pass than that so the exhaustion check fires on the next
        transient failure. Non-transient errors are re-raised unchanged.
        """

        request = coerce_statement(statement)
        max_retries = self.max_retry_to_connect
        retry_count = 0
        correlation_id = int(time.time() * 1000)
        while retry_count <= max_retries:
            pool = None
            try:
                pool = await self._session.get_connection()
                if retry_count > 0:
                    LOG.info(
                        "Connection re-established to %s [%s]",
                        self._session.server_and_port,
                        correlation_id,
                        extra={"correlation_id": correlation_id, "retry_count": retry_count},
                    )
                if debug:
                    LOG.debug("Executing statement:\n%s", render_debug(request))
                result = await self._dispatcher.run(pool, request, multiple_sets=return_multiple_sets)
            except Exception as exc:
                if is_transient(exc) and retry_count < max_retries:
                    retry_count += 1
                    LOG.warning(
                        "Transient connection error, retrying (%d/%d) [%s]: %s",
                        retry_count,
                        max_retries,
                        correlation_id,
                        exc,
                        extra={
                            "correlation_id": correlation_id,
                            "retry_count": retry_count,
                            "max_retry_to_connect": max_retries,
                        },
                    )
                    if pool is not None:
                        await self._session.close_connection(pool)
                    if retry_count > 1:
                        await self._sleep(RECONNECT_DELAY)
                    continue
                LOG.error(
                    "SQL error: %s",
                    exc,
                    extra={"statement": statement_label(request), "correlation_id": correlation_id},
                )
                raise
            LOG.debug(
                "Statement completed in %d ms [%s]",
                result.elapsed_ms,
                correlation_id,
                extra={"correlation_id": correlation_id, "elapsed_ms": result.elapsed_ms},
            )
            if return_multiple_sets:
                return [list(rows) for rows in result.recordsets]
            return result.recordset or []
        raise RuntimeError("Retry loop exited unexpectedly")


__all__ = ["RECONNECT_DELAY", "RetryExecutor"]
