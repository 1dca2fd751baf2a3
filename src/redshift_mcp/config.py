"""
Environment-driven settings for Redshift MCP.

Connection details come from ``DATABASE_URL`` or the individual ``REDSHIFT_*``
variables; Spectrum behaviour from ``REDSHIFT_SPECTRUM_*``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping
from urllib.parse import unquote, urlparse

from redshift_mcp.errors import ConfigurationError

DEFAULT_PORT = 5439
DEFAULT_MAX_CONNECTIONS = 5

_URL_SCHEMES = {"redshift", "postgres", "postgresql"}


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class ConnectionSettings:
    """Arguments for ``redshift_connector.connect``."""

    host: str
    database: str
    user: str
    password: str = ""
    port: int = DEFAULT_PORT
    ssl: bool = True
    timeout: int | None = None

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> "ConnectionSettings":
        parsed = urlparse(url)
        if parsed.scheme not in _URL_SCHEMES:
            raise ConfigurationError(
                f"Unsupported DATABASE_URL scheme {parsed.scheme!r}; use redshift:// or postgres://"
            )
        values: Dict[str, Any] = {
            "host": parsed.hostname or "",
            "database": parsed.path.lstrip("/"),
            "user": unquote(parsed.username or ""),
            "password": unquote(parsed.password or ""),
            "port": parsed.port or DEFAULT_PORT,
        }
        values.update(overrides)
        return cls._checked(**values)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ConnectionSettings":
        env = os.environ if env is None else env
        ssl = _flag(env.get("REDSHIFT_SSL"), True)
        timeout = _int(env, "REDSHIFT_TIMEOUT", None)

        url = env.get("DATABASE_URL")
        if url:
            return cls.from_url(url, ssl=ssl, timeout=timeout)

        return cls._checked(
            host=env.get("REDSHIFT_HOST", ""),
            database=env.get("REDSHIFT_DATABASE", ""),
            user=env.get("REDSHIFT_USER", ""),
            password=env.get("REDSHIFT_PASSWORD", ""),
            port=_int(env, "REDSHIFT_PORT", DEFAULT_PORT),
            ssl=ssl,
            timeout=timeout,
        )

    @classmethod
    def _checked(cls, **values: Any) -> "ConnectionSettings":
        missing = [name for name in ("host", "database", "user") if not values.get(name)]
        if missing:
            raise ConfigurationError(
                "Missing Redshift connection settings: " + ", ".join(missing)
                + ". Set DATABASE_URL or REDSHIFT_HOST/REDSHIFT_DATABASE/REDSHIFT_USER."
            )
        return cls(**values)

    def connect_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "database": self.database,
            "user": self.user,
            "password": self.password,
            "ssl": self.ssl,
        }
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        return kwargs

    def __repr__(self) -> str:
        return (
            f"ConnectionSettings(host={self.host!r}, port={self.port}, "
            f"database={self.database!r}, user={self.user!r}, ssl={self.ssl})"
        )


@dataclass(frozen=True)
class SpectrumSettings:
    """Federated (Spectrum) table support flags."""

    enabled: bool = True
    debug_logging: bool = False

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "SpectrumSettings":
        env = os.environ if env is None else env
        # Only an explicit "false" turns Spectrum support off.
        enabled = (env.get("REDSHIFT_SPECTRUM_ENABLED") or "").strip().lower() != "false"
        return cls(
            enabled=enabled,
            debug_logging=_flag(env.get("REDSHIFT_SPECTRUM_DEBUG"), False),
        )


@dataclass(frozen=True)
class ServerSettings:
    """Everything the MCP server needs at startup."""

    connection: ConnectionSettings | None = None
    spectrum: SpectrumSettings = field(default_factory=SpectrumSettings)
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "ServerSettings":
        env = os.environ if env is None else env
        max_connections = _int(env, "REDSHIFT_MAX_CONNECTIONS", DEFAULT_MAX_CONNECTIONS)
        if max_connections < 1:
            raise ConfigurationError("REDSHIFT_MAX_CONNECTIONS must be >= 1")
        return cls(
            connection=ConnectionSettings.from_env(env),
            spectrum=SpectrumSettings.from_env(env),
            max_connections=max_connections,
            log_level=(env.get("REDSHIFT_MCP_LOG_LEVEL") or "INFO").upper(),
        )


__all__ = ["ConnectionSettings", "SpectrumSettings", "ServerSettings"]
