"""Statement request and bound parameter types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Union


class InvalidStatementError(ValueError):
    """Raised when a statement request cannot be interpreted."""


@dataclass(frozen=True, slots=True)
class Typed:
    """Parameter bound with an explicit PostgreSQL type name."""

    type: str
    value: Any


@dataclass(frozen=True, slots=True)
class Inferred:
    """Parameter whose type comes from the driver's default mapping."""

    value: Any


BoundParam = Union[Typed, Inferred]


@dataclass(frozen=True, slots=True)
class Literal:
    """Statement text known up front."""

    text: str


@dataclass(frozen=True, slots=True)
class Builder:
    """Statement text produced from the bound request and the driver module."""

    build: Callable[[Any, Any], str]


QuerySource = Union[Literal, Builder]


@dataclass(frozen=True, slots=True)
class Structured:
    """Parameterized statement: a query source plus named parameters."""

    source: QuerySource
    params: Mapping[str, BoundParam] = field(default_factory=dict)


StatementRequest = Union[Literal, Structured]


def coerce_statement(statement: object) -> StatementRequest:
    """Normalize caller input into a :data:`StatementRequest`.

    Accepts plain text, an already-built request, or a mapping carrying a
    ``query`` (or ``execute``) entry and optional ``params``. Callables become
    :class:`Builder` sources and raw parameter values become :class:`Inferred`.
    """

    if isinstance(statement, (Literal, Structured)):
        return statement
    if isinstance(statement, str):
        if not statement.strip():
            raise InvalidStatementError("Provide SQL to execute.")
        return Literal(statement)
    if isinstance(statement, Mapping):
        unknown = set(statement) - {"query", "execute", "params"}
        if unknown:
            raise InvalidStatementError(f"Unknown statement fields: {', '.join(sorted(unknown))}")
        query = statement.get("query")
        if query is None:
            query = statement.get("execute")
        return Structured(
            source=_coerce_source(query),
            params=_coerce_params(statement.get("params")),
        )
    raise InvalidStatementError(f"Unsupported statement type: {type(statement).__name__}")


def statement_label(statement: object) -> str:
    """Short text identifying a statement in log lines."""

    if isinstance(statement, Literal):
        return statement.text
    if isinstance(statement, Structured):
        source = statement.source
        if isinstance(source, Literal):
            return source.text
        return f"<dynamic query {getattr(source.build, '__name__', 'builder')}>"
    return str(statement)


def _coerce_source(query: object) -> QuerySource:
    if isinstance(query, (Literal, Builder)):
        return query
    if isinstance(query, str):
        if not query.strip():
            raise InvalidStatementError("Provide SQL to execute.")
        return Literal(query)
    if callable(query):
        return Builder(query)
    raise InvalidStatementError("Statement mapping needs a 'query' or 'execute' entry.")


def _coerce_params(params: object) -> dict[str, BoundParam]:
    if params is None:
        return {}
    if not isinstance(params, Mapping):
        raise InvalidStatementError("Statement params must be a mapping of name to value.")
    bound: dict[str, BoundParam] = {}
    for name, value in params.items():
        if isinstance(value, (Typed, Inferred)):
            bound[str(name)] = value
        else:
            bound[str(name)] = Inferred(value)
    return bound


__all__ = [
    "BoundParam",
    "Builder",
    "Inferred",
    "InvalidStatementError",
    "Literal",
    "QuerySource",
    "StatementRequest",
    "Structured",
    "Typed",
    "coerce_statement",
    "statement_label",
]
