"""Tests for connection handles, the factory and the latency probe."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from spyglass.config import ConnectionProfile
from spyglass.connections import (
    APP_NAME,
    ConnectionFactory,
    ConnectionFailureError,
    ConnectionTester,
    dialect_for,
)
from spyglass.drivers import DriverRegistry


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def _profile(client: str = "pg", **overrides) -> ConnectionProfile:  # type: ignore[no-untyped-def]
    values = {
        "environment": "local",
        "name": "Local",
        "username": "postgres",
        "host": "localhost",
        "port": 5432,
        "database": "postgres",
        "client": client,
    }
    values.update(overrides)
    return ConnectionProfile(**values)


def _sqlite_profile(path: Path) -> ConnectionProfile:
    return _profile("sqlite3", username="", host="", port=None, database=str(path))


def _tester() -> ConnectionTester:
    return ConnectionTester(DriverRegistry(is_available=lambda module: True), ConnectionFactory())


def test_url_for_postgres_includes_credentials() -> None:
    url = ConnectionFactory().url_for(_profile(), "secret")

    assert url.drivername == "postgresql+asyncpg"
    assert url.username == "postgres"
    assert url.password == "secret"
    assert url.host == "localhost"
    assert url.port == 5432
    assert url.database == "postgres"


def test_url_for_sqlite_only_uses_database_path(tmp_path: Path) -> None:
    url = ConnectionFactory().url_for(_sqlite_profile(tmp_path / "demo.db"), "ignored")

    assert url.drivername == "sqlite+aiosqlite"
    assert url.database == str(tmp_path / "demo.db")
    assert url.password is None
    assert url.host is None


def test_url_for_sql_server_names_odbc_driver() -> None:
    url = ConnectionFactory(application_name="Probe").url_for(_profile("tedious", port=1433), "pw")

    assert url.drivername == "mssql+aioodbc"
    assert url.query["driver"].startswith("ODBC Driver")
    assert url.query["APP"] == "Probe"


def test_connect_args_tag_session_with_application_name() -> None:
    factory = ConnectionFactory()

    assert factory.connect_args(_profile("pg")) == {"server_settings": {"application_name": APP_NAME}}
    assert factory.connect_args(_profile("mysql")) == {"program_name": APP_NAME}
    assert factory.connect_args(_profile("sqlite3")) == {}


def test_dialect_for_unknown_client_raises() -> None:
    assert dialect_for("sqlite3").requires_password is False
    with pytest.raises(ConnectionFailureError):
        dialect_for("db2")


def test_build_returns_handle_bound_to_profile(tmp_path: Path) -> None:
    profile = _sqlite_profile(tmp_path / "demo.db")

    handle = ConnectionFactory().build(profile, None, generation=3)

    assert handle.profile is profile
    assert handle.generation == 3
    assert handle.dialect.sql_dialect == "sqlite"
    assert handle.is_postgres is False


@pytest.mark.anyio
async def test_tester_reports_latency_for_reachable_database(tmp_path: Path) -> None:
    path = tmp_path / "demo.db"
    sqlite3.connect(path).close()

    latency = await _tester().test(_sqlite_profile(path), None)

    assert latency is not None
    assert latency >= 0


@pytest.mark.anyio
async def test_tester_returns_none_when_connection_fails(tmp_path: Path) -> None:
    profile = _sqlite_profile(tmp_path / "missing-dir" / "demo.db")

    assert await _tester().test(profile, None) is None


@pytest.mark.anyio
async def test_tester_returns_none_when_handle_cannot_be_built(monkeypatch: pytest.MonkeyPatch) -> None:
    factory = ConnectionFactory()

    def _fail(profile, password, *, generation=0):  # type: ignore[no-untyped-def]
        raise ConnectionFailureError("no driver")

    monkeypatch.setattr(factory, "build", _fail)
    tester = ConnectionTester(DriverRegistry(is_available=lambda module: True), factory)

    assert await tester.test(_profile(), "secret") is None
