"""Schema introspection normalized across SQL dialects."""

from __future__ import annotations

import logging
from typing import Any, Protocol, Sequence

from sqlalchemy import inspect, types as sqltypes
from sqlalchemy.engine import Connection
from sqlalchemy.exc import CompileError
from sqlalchemy.ext.asyncio import AsyncConnection

from .connections import ConnectionHandle
from .models import ColumnInfo, TableCatalog, split_table_identifier

LOG = logging.getLogger(__name__)


class IntrospectionFailureError(RuntimeError):
    """Raised when tables or columns cannot be listed."""


class ColumnInspector(Protocol):
    """The slice of :class:`sqlalchemy.engine.Inspector` used for column lookups."""

    def get_table_names(self, schema: str | None = None) -> Sequence[str]: ...

    def get_columns(self, table_name: str, schema: str | None = None) -> Sequence[dict[str, Any]]: ...


PG_TABLES_QUERY = """
    SELECT table_schema, table_name
    FROM information_schema.tables
    WHERE table_type = 'BASE TABLE'
      AND table_schema NOT IN ('pg_catalog', 'information_schema')
    ORDER BY table_schema, table_name
"""


def is_numeric_type(column_type: Any) -> bool:
    """Columns that carry a numeric precision and can be summed."""

    return isinstance(column_type, (sqltypes.Integer, sqltypes.Numeric))


def _type_label(column_type: Any) -> str:
    try:
        return str(column_type)
    except CompileError:
        return type(column_type).__name__


def describe_columns(inspector: ColumnInspector, table: str) -> tuple[ColumnInfo, ...]:
    """Reflect the columns of ``table``, scoping the lookup to its schema first."""

    schema, name = split_table_identifier(table)
    reflected = inspector.get_columns(name, schema=schema)
    return tuple(
        ColumnInfo(
            name=str(column["name"]),
            numeric=is_numeric_type(column.get("type")),
            data_type=_type_label(column.get("type")),
            nullable=bool(column.get("nullable", True)),
        )
        for column in reflected
    )


def _reflect_catalog(sync_conn: Connection, tables: Sequence[str]) -> dict[str, tuple[ColumnInfo, ...]]:
    inspector = inspect(sync_conn)
    return {table: describe_columns(inspector, table) for table in tables}


def _reflect_table_names(sync_conn: Connection) -> list[str]:
    return list(inspect(sync_conn).get_table_names())


def _reflect_columns(sync_conn: Connection, table: str) -> tuple[ColumnInfo, ...]:
    return describe_columns(inspect(sync_conn), table)


class SchemaIntrospector:
    """Lists tables and columns through the active connection handle."""

    def __init__(self, handle: ConnectionHandle) -> None:
        self._handle = handle

    async def list_tables(self) -> list[str]:
        """Tables visible to the session; ``schema.table`` on Postgres, bare names elsewhere."""

        try:
            async with self._handle.engine.connect() as conn:
                return await self._list_tables(conn)
        except Exception as exc:
            raise IntrospectionFailureError(
                f"Failed to list tables for '{self._handle.profile.name}': {exc}"
            ) from exc

    async def columns(self, table: str) -> tuple[ColumnInfo, ...]:
        """Column metadata for one table identifier."""

        try:
            async with self._handle.engine.connect() as conn:
                return await conn.run_sync(_reflect_columns, table)
        except Exception as exc:
            raise IntrospectionFailureError(f"Failed to describe '{table}': {exc}") from exc

    async def load_catalog(self) -> TableCatalog | None:
        """Full table -> columns catalog, or ``None`` when it cannot be determined."""

        try:
            async with self._handle.engine.connect() as conn:
                tables = await self._list_tables(conn)
                catalog = await conn.run_sync(_reflect_catalog, tables)
        except Exception as exc:
            LOG.warning("Failed to introspect %s: %s", self._handle.profile.name, exc)
            return None
        LOG.debug(
            "Catalog loaded",
            extra={"profile": self._handle.profile.name, "tables": len(catalog)},
        )
        return catalog

    async def _list_tables(self, conn: AsyncConnection) -> list[str]:
        if self._handle.is_postgres:
            result = await conn.exec_driver_sql(PG_TABLES_QUERY)
            return [f"{row.table_schema}.{row.table_name}" for row in result]
        return await conn.run_sync(_reflect_table_names)


__all__ = [
    "ColumnInspector",
    "IntrospectionFailureError",
    "PG_TABLES_QUERY",
    "SchemaIntrospector",
    "describe_columns",
    "is_numeric_type",
]
