"""Tests for schema introspection."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import types as sqltypes

from spyglass.config import ConnectionProfile
from spyglass.connections import ConnectionFactory
from spyglass.introspection import (
    IntrospectionFailureError,
    SchemaIntrospector,
    describe_columns,
    is_numeric_type,
)
from spyglass.models import ColumnInfo, split_table_identifier


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _SchemaAwareInspector:
    """Resolves unqualified names through a ``public`` search path, like Postgres."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []

    def get_table_names(self, schema: str | None = None) -> list[str]:
        return ["users"]

    def get_columns(self, table_name: str, schema: str | None = None) -> list[dict[str, Any]]:
        self.calls.append((table_name, schema))
        if table_name == "users" and schema in (None, "public"):
            return [
                {"name": "id", "type": sqltypes.INTEGER(), "nullable": False},
                {"name": "email", "type": sqltypes.VARCHAR(255), "nullable": True},
                {"name": "balance", "type": sqltypes.NUMERIC(10, 2), "nullable": True},
            ]
        return []


def _sqlite_profile(path: Path) -> ConnectionProfile:
    return ConnectionProfile(
        environment="local",
        name="Local",
        username="",
        host="",
        database=str(path),
        client="sqlite3",
    )


def _seeded_database(path: Path) -> Path:
    with sqlite3.connect(path) as conn:
        conn.executescript(
            """
            CREATE TABLE accounts (id INTEGER PRIMARY KEY, email TEXT NOT NULL);
            CREATE TABLE orders (
                id INTEGER PRIMARY KEY,
                account_id INTEGER,
                total REAL,
                status TEXT
            );
            """
        )
    return path


def test_split_table_identifier() -> None:
    assert split_table_identifier("public.users") == ("public", "users")
    assert split_table_identifier("users") == (None, "users")
    assert split_table_identifier("sales.daily.totals") == ("sales", "daily.totals")


def test_schema_qualified_name_resolves_same_columns_as_bare_name() -> None:
    inspector = _SchemaAwareInspector()

    qualified = describe_columns(inspector, "public.users")
    bare = describe_columns(inspector, "users")

    assert qualified == bare
    assert [column.name for column in qualified] == ["id", "email", "balance"]
    assert ("users", "public") in inspector.calls
    assert inspector.get_columns("public.users") == []


def test_describe_columns_flags_numeric_types() -> None:
    columns = describe_columns(_SchemaAwareInspector(), "users")

    assert columns[0] == ColumnInfo(name="id", numeric=True, data_type="INTEGER", nullable=False)
    assert columns[1].numeric is False
    assert columns[2].numeric is True


@pytest.mark.parametrize(
    ("column_type", "expected"),
    [
        (sqltypes.Integer(), True),
        (sqltypes.BigInteger(), True),
        (sqltypes.Numeric(), True),
        (sqltypes.Float(), True),
        (sqltypes.String(), False),
        (sqltypes.DateTime(), False),
        (None, False),
    ],
)
def test_is_numeric_type(column_type: object, expected: bool) -> None:
    assert is_numeric_type(column_type) is expected


@pytest.mark.anyio
async def test_load_catalog_reads_sqlite_tables(tmp_path: Path) -> None:
    path = _seeded_database(tmp_path / "demo.db")
    handle = ConnectionFactory().build(_sqlite_profile(path), None)
    try:
        catalog = await SchemaIntrospector(handle).load_catalog()
    finally:
        await handle.dispose()

    assert catalog is not None
    assert set(catalog) == {"accounts", "orders"}
    orders = {column.name: column for column in catalog["orders"]}
    assert list(orders) == ["id", "account_id", "total", "status"]
    assert orders["total"].numeric is True
    assert orders["status"].numeric is False


@pytest.mark.anyio
async def test_columns_and_list_tables(tmp_path: Path) -> None:
    path = _seeded_database(tmp_path / "demo.db")
    handle = ConnectionFactory().build(_sqlite_profile(path), None)
    introspector = SchemaIntrospector(handle)
    try:
        tables = await introspector.list_tables()
        columns = await introspector.columns("accounts")
    finally:
        await handle.dispose()

    assert sorted(tables) == ["accounts", "orders"]
    assert [column.name for column in columns] == ["id", "email"]


@pytest.mark.anyio
async def test_unreachable_database(tmp_path: Path) -> None:
    handle = ConnectionFactory().build(_sqlite_profile(tmp_path / "missing" / "demo.db"), None)
    introspector = SchemaIntrospector(handle)
    try:
        assert await introspector.load_catalog() is None
        with pytest.raises(IntrospectionFailureError):
            await introspector.list_tables()
    finally:
        await handle.dispose()
