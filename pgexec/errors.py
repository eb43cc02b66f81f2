"""Failure classification for the retrying execution path."""

from __future__ import annotations

import re
from enum import Enum

import asyncpg

# SQLSTATEs raised while a connection is being established.
CONNECT_SQLSTATES = frozenset({"08001", "08004", "57P03"})

_FAILED_CONNECT = re.compile(
    r"connect call failed|failed to connect|could not connect|connection refused"
    r"|cannot connect now|the database system is (?:starting up|shutting down)"
    r"|name or service not known|no route to host|network is unreachable",
    re.IGNORECASE,
)

_LOST_CONNECTION = re.compile(
    r"connection (?:was|is|has been) closed|connection lost|connection reset"
    r"|connection does not exist|connection failure|server closed the connection"
    r"|broken pipe|terminating connection|pool is closed|pool is closing",
    re.IGNORECASE,
)


class SessionNotConnectedError(RuntimeError):
    """Raised when a statement needs a pool that was never initialized."""


class ErrorCategory(str, Enum):
    """Where in the driver stack an error originated."""

    SOCKET = "socket"
    REQUEST = "request"
    OTHER = "other"


class ErrorKind(str, Enum):
    """Retry-relevant classification of an execution failure."""

    TRANSIENT_CONNECTION = "transient_connection"
    STATEMENT = "statement"


def error_category(err: BaseException) -> ErrorCategory:
    """Map an exception onto the driver layer that produced it."""

    sqlstate = getattr(err, "sqlstate", None)
    if sqlstate in CONNECT_SQLSTATES:
        return ErrorCategory.SOCKET
    if isinstance(err, OSError) and not isinstance(err, TimeoutError):
        return ErrorCategory.SOCKET
    if isinstance(err, (asyncpg.PostgresError, asyncpg.InterfaceError)):
        return ErrorCategory.REQUEST
    return ErrorCategory.OTHER


def is_transient(err: BaseException) -> bool:
    """Return True when *err* reflects a lost or failed connection."""

    category = error_category(err)
    message = str(err)
    if category is ErrorCategory.SOCKET:
        return bool(_FAILED_CONNECT.search(message))
    if category is ErrorCategory.REQUEST:
        return bool(_LOST_CONNECTION.search(message))
    return False


def classify(err: BaseException) -> ErrorKind:
    if is_transient(err):
        return ErrorKind.TRANSIENT_CONNECTION
    return ErrorKind.STATEMENT


__all__ = [
    "CONNECT_SQLSTATES",
    "ErrorCategory",
    "ErrorKind",
    "SessionNotConnectedError",
    "classify",
    "error_category",
    "is_transient",
]
