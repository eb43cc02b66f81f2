"""Statement dispatch: turns statement requests into driver calls."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import asyncpg

from .models import (
    Builder,
    BoundParam,
    InvalidStatementError,
    Literal,
    StatementRequest,
    Structured,
    Typed,
)
from .statements import Binding, CompiledStatement, compile_named, procedure_call, split_statements

Row = dict[str, Any]

DEFAULT_TYPE_MAP: Mapping[type, str] = {str: "varchar"}

_type_map: dict[type, str] = dict(DEFAULT_TYPE_MAP)


def register_type(py_type: type, sql_type: str | None) -> None:
    """Change the type used for :class:`~pgexec.models.Inferred` values of *py_type*.

    Passing ``None`` removes the mapping so the server infers the type.
    """

    if sql_type is None:
        _type_map.pop(py_type, None)
    else:
        _type_map[py_type] = sql_type


def reset_type_map() -> None:
    _type_map.clear()
    _type_map.update(DEFAULT_TYPE_MAP)


def inferred_type(value: object) -> str | None:
    """Return the mapped SQL type for *value*, if any."""

    for klass in type(value).__mro__:
        sql_type = _type_map.get(klass)
        if sql_type is not None:
            return sql_type
    return None


class ParameterizedRequest:
    """Named parameters bound for one statement; handed to query builders."""

    def __init__(self) -> None:
        self._bindings: dict[str, Binding] = {}

    @property
    def bindings(self) -> Mapping[str, Binding]:
        return dict(self._bindings)

    @property
    def params(self) -> Mapping[str, Any]:
        """Bound values keyed by parameter name."""

        return {name: binding.value for name, binding in self._bindings.items()}

    def input(self, name: str, value: Any, sql_type: str | None = None) -> ParameterizedRequest:
        """Bind *value* under *name*; ``sql_type`` of None uses the default mapping."""

        if sql_type is None:
            sql_type = inferred_type(value)
        self._bindings[name] = Binding(sql_type, value)
        return self

    def inputs(self, params: Mapping[str, BoundParam]) -> ParameterizedRequest:
        for name, param in params.items():
            if isinstance(param, Typed):
                self.input(name, param.value, param.type)
            else:
                self.input(name, param.value)
        return self

    def ref(self, name: str) -> str:
        """Return the placeholder text referencing a bound parameter."""

        if name not in self._bindings:
            raise InvalidStatementError(f"Parameter '{name}' is not bound.")
        return f":{name}"

    def compile(self, text: str) -> CompiledStatement:
        return compile_named(text, self._bindings)


@dataclass(frozen=True, slots=True)
class StatementResult:
    """Rows produced by one dispatched request."""

    recordsets: tuple[list[Row], ...]
    elapsed_ms: int

    @property
    def recordset(self) -> list[Row] | None:
        if not self.recordsets:
            return None
        return self.recordsets[0]


class StatementDispatcher:
    """Runs statement requests against a pool and extracts result rows."""

    def __init__(self, driver: Any = asyncpg) -> None:
        self._driver = driver

    async def run(self, pool: Any, statement: StatementRequest, *, multiple_sets: bool = False) -> StatementResult:
        """Execute *statement* with query semantics.

        Batches are always issued one statement per fetch, since prepared
        statements accept a single command. *multiple_sets* only decides what
        the caller keeps; every statement in the batch runs either way.
        """

        if isinstance(statement, Literal):
            compiled = [CompiledStatement(text, ()) for text in _batch(statement.text)]
        else:
            request, text = self._prepare(statement)
            compiled = [request.compile(item) for item in _batch(text)]
        return await self._fetch(pool, compiled)

    async def run_procedure(self, pool: Any, statement: StatementRequest) -> StatementResult:
        """Execute *statement* as a stored procedure call."""

        if isinstance(statement, Literal):
            compiled = procedure_call(statement.text, {})
        else:
            request, name = self._prepare(statement)
            compiled = procedure_call(name, request.bindings)
        return await self._fetch(pool, [compiled])

    def _prepare(self, statement: Structured) -> tuple[ParameterizedRequest, str]:
        request = ParameterizedRequest().inputs(statement.params)
        source = statement.source
        if isinstance(source, Builder):
            text = source.build(request, self._driver)
            if not isinstance(text, str) or not text.strip():
                raise InvalidStatementError("Query builder must return statement text.")
        else:
            text = source.text
        return request, text

    async def _fetch(self, pool: Any, statements: Iterable[CompiledStatement]) -> StatementResult:
        started = time.perf_counter()
        recordsets: list[list[Row]] = []
        async with pool.acquire() as conn:
            for compiled in statements:
                records = await conn.fetch(compiled.text, *compiled.args)
                recordsets.append(_records_to_rows(records))
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        return StatementResult(recordsets=tuple(recordsets), elapsed_ms=elapsed_ms)


def _batch(text: str) -> list[str]:
    statements = split_statements(text)
    if len(statements) <= 1:
        return [text]
    return statements


def _records_to_rows(records: Iterable[Any] | None) -> list[Row]:
    if not records:
        return []
    return [dict(record) for record in records]


__all__ = [
    "DEFAULT_TYPE_MAP",
    "ParameterizedRequest",
    "Row",
    "StatementDispatcher",
    "StatementResult",
    "inferred_type",
    "register_type",
    "reset_type_map",
]
