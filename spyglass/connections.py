"""Connection handles, their factory, and the latency probe."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy.engine import URL
from sqlalchemy.exc import ArgumentError, NoSuchModuleError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from .config import ConnectionProfile
from .drivers import DriverRegistry

LOG = logging.getLogger(__name__)

APP_NAME = "Spyglass SQL"


class ConnectionFailureError(RuntimeError):
    """Raised when a handle cannot be built or a connection cannot be used."""


@dataclass(frozen=True, slots=True)
class DialectSpec:
    """How a client kind maps onto SQLAlchemy, sqlglot and the probe query."""

    drivername: str
    sql_dialect: str
    probe: str
    requires_password: bool = True


DIALECTS: Mapping[str, DialectSpec] = {
    "pg": DialectSpec("postgresql+asyncpg", "postgres", "SELECT current_user"),
    "sqlite3": DialectSpec("sqlite+aiosqlite", "sqlite", "SELECT 1", requires_password=False),
    "mysql": DialectSpec("mysql+aiomysql", "mysql", "SELECT CURRENT_USER()"),
    "oracledb": DialectSpec("oracle+oracledb", "oracle", "SELECT USER FROM DUAL"),
    "tedious": DialectSpec("mssql+aioodbc", "tsql", "SELECT SYSTEM_USER"),
}

MSSQL_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"


def dialect_for(client: str) -> DialectSpec:
    try:
        return DIALECTS[client]
    except KeyError as exc:
        raise ConnectionFailureError(f"Unsupported client '{client}'") from exc


@dataclass(frozen=True, slots=True)
class ConnectionHandle:
    """Live (lazily connecting) engine bound to one profile."""

    profile: ConnectionProfile
    engine: AsyncEngine
    generation: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def client(self) -> str:
        return self.profile.client

    @property
    def dialect(self) -> DialectSpec:
        return dialect_for(self.profile.client)

    @property
    def is_postgres(self) -> bool:
        return self.profile.client == "pg"

    async def dispose(self) -> None:
        """Close pooled connections; the handle must not be used afterwards."""

        await self.engine.dispose()


class ConnectionFactory:
    """Builds connection handles from profiles without touching the network."""

    def __init__(self, *, application_name: str = APP_NAME) -> None:
        self._application_name = application_name

    def url_for(self, profile: ConnectionProfile, password: str | None) -> URL:
        spec = dialect_for(profile.client)
        if profile.client == "sqlite3":
            return URL.create(spec.drivername, database=profile.database)
        query: dict[str, str] = {}
        if profile.client == "tedious":
            query = {
                "driver": MSSQL_ODBC_DRIVER,
                "TrustServerCertificate": "yes",
                "APP": self._application_name,
            }
        return URL.create(
            spec.drivername,
            username=profile.username or None,
            password=password,
            host=profile.host or None,
            port=profile.port,
            database=profile.database or None,
            query=query,
        )

    def connect_args(self, profile: ConnectionProfile) -> dict[str, Any]:
        """Driver keyword arguments tagging the server-side session with the app name."""

        if profile.client == "pg":
            return {"server_settings": {"application_name": self._application_name}}
        if profile.client == "mysql":
            return {"program_name": self._application_name}
        if profile.client == "oracledb":
            return {"program": self._application_name}
        return {}

    def build(
        self,
        profile: ConnectionProfile,
        password: str | None,
        *,
        generation: int = 0,
    ) -> ConnectionHandle:
        """Create a handle; credentials are only checked once it is used."""

        url = self.url_for(profile, password)
        try:
            engine = create_async_engine(url, connect_args=self.connect_args(profile))
        except (ImportError, NoSuchModuleError, ArgumentError) as exc:
            raise ConnectionFailureError(
                f"Failed to create engine for profile '{profile.name}': {exc}"
            ) from exc
        LOG.debug(
            "Built connection handle",
            extra={"profile": profile.name, "client": profile.client, "generation": generation},
        )
        return ConnectionHandle(profile=profile, engine=engine, generation=generation)


class ConnectionTester:
    """Runs the probe query against a candidate profile and reports latency."""

    def __init__(
        self,
        drivers: DriverRegistry | None = None,
        factory: ConnectionFactory | None = None,
    ) -> None:
        self._drivers = drivers or DriverRegistry()
        self._factory = factory or ConnectionFactory()

    async def test(self, profile: ConnectionProfile, password: str | None) -> int | None:
        """Return the probe round-trip in milliseconds, or ``None`` on any failure."""

        await self._drivers.ensure_installed(profile.client)
        try:
            handle = self._factory.build(profile, password)
        except ConnectionFailureError as exc:
            LOG.warning("Connection test failed for %s: %s", profile.name, exc)
            return None
        try:
            async with handle.engine.connect() as conn:
                started = time.perf_counter()
                await conn.exec_driver_sql(handle.dialect.probe)
                latency_ms = int((time.perf_counter() - started) * 1000)
        except Exception as exc:
            LOG.warning("Connection test failed for %s: %s", profile.name, exc)
            return None
        finally:
            try:
                await handle.dispose()
            except Exception:  # pragma: no cover - best effort cleanup
                LOG.debug("Failed to dispose test handle", exc_info=True)
        LOG.info("Connection test succeeded", extra={"profile": profile.name, "latency_ms": latency_ms})
        return latency_ms


__all__ = [
    "APP_NAME",
    "ConnectionFactory",
    "ConnectionFailureError",
    "ConnectionHandle",
    "ConnectionTester",
    "DIALECTS",
    "DialectSpec",
    "dialect_for",
]
