"""Token-level helpers for statement text (named placeholders, batches)."""

from __future__ import annotations

import re
from typing import Any, Mapping, NamedTuple

from sqlglot.dialects.postgres import Postgres
from sqlglot.tokens import Token, TokenType

from .models import InvalidStatementError

_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")
_TYPE_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_ .,()\[\]]*\Z")


class _StatementTokenizer(Postgres.Tokenizer):
    """Postgres tokenizer that also scans ``CALL``/``EXECUTE``/``SHOW`` bodies.

    The stock tokenizer folds everything after a command keyword into a
    single string token, hiding placeholders and semicolons inside it.
    """

    COMMANDS: set = set()


_TOKENIZER = _StatementTokenizer(dialect="postgres")


class Binding(NamedTuple):
    """A named parameter resolved for the driver."""

    sql_type: str | None
    value: Any


class CompiledStatement(NamedTuple):
    """Statement text with positional placeholders and its arguments."""

    text: str
    args: tuple[Any, ...]


def tokenize(sql: str) -> list[Token]:
    return _TOKENIZER.tokenize(sql)


def split_statements(sql: str) -> list[str]:
    """Split a batch on top-level semicolons, dropping empty statements."""

    statements: list[str] = []
    start = 0
    for token in tokenize(sql):
        if token.token_type == TokenType.SEMICOLON:
            chunk = sql[start : token.start].strip()
            if chunk:
                statements.append(chunk)
            start = token.end + 1
    tail = sql[start:].strip()
    if tail:
        statements.append(tail)
    return statements


def compile_named(sql: str, bindings: Mapping[str, Binding]) -> CompiledStatement:
    """Rewrite ``:name`` references into asyncpg ``$n`` placeholders.

    Placeholders are numbered in order of first use; repeated references share
    a position. References to names that are not bound are left untouched, as
    are string literals, comments and ``::`` casts.
    """

    if not bindings:
        return CompiledStatement(sql, ())
    tokens = tokenize(sql)
    positions: dict[str, int] = {}
    args: list[Any] = []
    pieces: list[str] = []
    cursor = 0
    for current, following in zip(tokens, tokens[1:]):
        if current.token_type != TokenType.COLON or following.start != current.end + 1:
            continue
        name = sql[following.start : following.end + 1]
        if not _IDENTIFIER.match(name) or name not in bindings:
            continue
        binding = bindings[name]
        if name not in positions:
            args.append(binding.value)
            positions[name] = len(args)
        pieces.append(sql[cursor : current.start])
        pieces.append(_placeholder(positions[name], binding.sql_type))
        cursor = following.end + 1
    pieces.append(sql[cursor:])
    return CompiledStatement("".join(pieces), tuple(args))


def procedure_call(name: str, bindings: Mapping[str, Binding]) -> CompiledStatement:
    """Render a ``CALL`` statement using named argument notation.

    Arguments follow the binding order and are numbered directly, so the
    result never goes through :func:`compile_named`.
    """

    procedure = name.strip()
    if not procedure:
        raise InvalidStatementError("Provide a procedure name to execute.")
    arguments: list[str] = []
    args: list[Any] = []
    for param, binding in bindings.items():
        if not _IDENTIFIER.match(param):
            raise InvalidStatementError(f"Invalid procedure parameter name '{param}'.")
        args.append(binding.value)
        arguments.append(f"{param} => {_placeholder(len(args), binding.sql_type)}")
    return CompiledStatement(f"CALL {procedure}({', '.join(arguments)})", tuple(args))


def _placeholder(position: int, sql_type: str | None) -> str:
    if sql_type is None:
        return f"${position}"
    if not _TYPE_NAME.match(sql_type):
        raise InvalidStatementError(f"Invalid parameter type '{sql_type}'.")
    return f"${position}::{sql_type}"


__all__ = [
    "Binding",
    "CompiledStatement",
    "compile_named",
    "procedure_call",
    "split_statements",
    "tokenize",
]
