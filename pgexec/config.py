"""Session and driver configuration loading helpers."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping
from urllib.parse import urlsplit

import tomllib

from pydantic import BaseModel, ConfigDict, Field, ValidationError

CONFIG_FILE = Path.home() / ".config" / "pgexec" / "config.toml"

DEFAULT_PORT = 5432


class SessionConfig(BaseModel):
    """Connection parameters handed to the driver when the pool is created."""

    model_config = ConfigDict(frozen=True)

    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    min_size: int = Field(1, ge=0)
    max_size: int = Field(10, ge=1)
    connect_timeout: float = 5.0
    command_timeout: float | None = None
    server_settings: Mapping[str, str] | None = None

    def connect_kwargs(self) -> dict[str, object]:
        """Keyword arguments accepted by ``asyncpg.create_pool``."""

        kwargs: dict[str, object] = {}
        if self.dsn:
            kwargs["dsn"] = self.dsn
        else:
            kwargs["host"] = self.host or "localhost"
            if self.port is not None:
                kwargs["port"] = self.port
            if self.user:
                kwargs["user"] = self.user
            if self.password:
                kwargs["password"] = self.password
            if self.database:
                kwargs["database"] = self.database
        kwargs["min_size"] = self.min_size
        kwargs["max_size"] = self.max_size
        kwargs["timeout"] = self.connect_timeout
        if self.command_timeout is not None:
            kwargs["command_timeout"] = self.command_timeout
        if self.server_settings:
            kwargs["server_settings"] = dict(self.server_settings)
        return kwargs

    def server_and_port(self) -> str:
        """Return ``host:port`` for log lines."""

        if self.dsn:
            parts = urlsplit(self.dsn)
            host = parts.hostname or self.host or "localhost"
            port = parts.port or self.port or DEFAULT_PORT
        else:
            host = self.host or "localhost"
            port = self.port or DEFAULT_PORT
        return f"{host}:{port}"


class DriverConfig(BaseModel):
    """Retry behaviour of the execution layer."""

    model_config = ConfigDict(frozen=True)

    max_retry_to_connect: int = Field(3, ge=0)


class AppConfig(BaseModel):
    """Shape of the configuration file."""

    session: SessionConfig = Field(default_factory=SessionConfig)
    driver: DriverConfig = Field(default_factory=DriverConfig)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        data = _read_config_file(path or CONFIG_FILE)
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        return AppConfig()

    try:
        return AppConfig(
            session=SessionConfig(**data.get("session", {})),
            driver=DriverConfig(**data.get("driver", {})),
        )
    except ValidationError:
        return AppConfig()


def _read_config_file(path: Path) -> dict[str, dict[str, object]]:
    with path.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, dict[str, object]] = {}
    session = raw.get("session")
    if isinstance(session, dict):
        parsed: dict[str, object] = {}
        for key in ("dsn", "host", "user", "password", "database"):
            value = session.get(key)
            if isinstance(value, str):
                parsed[key] = value
        for key in ("port", "min_size", "max_size"):
            value = session.get(key)
            if isinstance(value, int) and not isinstance(value, bool):
                parsed[key] = value
        for key in ("connect_timeout", "command_timeout"):
            value = session.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                parsed[key] = float(value)
        settings = session.get("server_settings")
        if isinstance(settings, dict):
            parsed["server_settings"] = {str(name): str(val) for name, val in settings.items()}
        data["session"] = parsed
    driver = raw.get("driver")
    if isinstance(driver, dict):
        retries = driver.get("max_retry_to_connect")
        if isinstance(retries, int) and not isinstance(retries, bool) and retries >= 0:
            data["driver"] = {"max_retry_to_connect": retries}
    return data


__all__ = [
    "AppConfig",
    "CONFIG_FILE",
    "DriverConfig",
    "SessionConfig",
    "load_config",
]
