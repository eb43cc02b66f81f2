"""Human-readable rendering of statements for debug logging."""

from __future__ import annotations

import datetime as dt
import decimal
import uuid

from .dispatch import inferred_type
from .models import Builder, Literal, StatementRequest, Typed

_PYTHON_TYPES: tuple[tuple[type, str], ...] = (
    (bool, "boolean"),
    (int, "bigint"),
    (float, "double precision"),
    (decimal.Decimal, "numeric"),
    (str, "text"),
    (bytes, "bytea"),
    (dt.datetime, "timestamp"),
    (dt.date, "date"),
    (dt.time, "time"),
    (uuid.UUID, "uuid"),
)


def render_debug(statement: StatementRequest) -> str:
    """Return ``DECLARE`` lines for each bound parameter followed by the query."""

    if isinstance(statement, Literal):
        return statement.text
    lines: list[str] = []
    for name, param in statement.params.items():
        if param.value is None:
            continue
        sql_type = param.type if isinstance(param, Typed) else _type_label(param.value)
        lines.append(f"DECLARE @{name} AS {sql_type} = {_render_value(param.value)}")
    source = statement.source
    if isinstance(source, Builder):
        lines.append(f"-- dynamic query: {getattr(source.build, '__name__', 'builder')}")
    else:
        lines.append(source.text)
    return "\n".join(lines)


def _type_label(value: object) -> str:
    mapped = inferred_type(value)
    if mapped:
        return mapped
    for klass, label in _PYTHON_TYPES:
        if isinstance(value, klass):
            return label
    return type(value).__name__


def _render_value(value: object) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float, decimal.Decimal)):
        return str(value)
    if isinstance(value, bytes):
        return "0x" + value.hex()
    text = value.isoformat() if isinstance(value, (dt.date, dt.time)) else str(value)
    return "'" + text.replace("'", "''") + "'"


__all__ = ["render_debug"]
