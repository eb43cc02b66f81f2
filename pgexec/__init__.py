"""Resilient statement execution over a pooled PostgreSQL connection."""

from __future__ import annotations

__version__ = "0.1.0"

from .config import AppConfig, DriverConfig, SessionConfig, load_config
from .connections import ConnectAttemptCoordinator, ConnectionSession, ConnectionState
from .database import Database
from .debug import render_debug
from .dispatch import ParameterizedRequest, StatementDispatcher, StatementResult, register_type
from .errors import ErrorKind, SessionNotConnectedError, classify, is_transient
from .executor import RECONNECT_DELAY, RetryExecutor
from .models import (
    Builder,
    Inferred,
    InvalidStatementError,
    Literal,
    Structured,
    Typed,
    coerce_statement,
)

__all__ = [
    "AppConfig",
    "Builder",
    "ConnectAttemptCoordinator",
    "ConnectionSession",
    "ConnectionState",
    "Database",
    "DriverConfig",
    "ErrorKind",
    "Inferred",
    "InvalidStatementError",
    "Literal",
    "ParameterizedRequest",
    "RECONNECT_DELAY",
    "RetryExecutor",
    "SessionConfig",
    "SessionNotConnectedError",
    "StatementDispatcher",
    "StatementResult",
    "Structured",
    "Typed",
    "__version__",
    "classify",
    "coerce_statement",
    "is_transient",
    "load_config",
    "register_type",
    "render_debug",
]
