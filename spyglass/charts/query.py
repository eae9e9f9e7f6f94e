"""Compiles chart definitions into row-fetching queries and runs them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

from sqlglot import exp

from ..config import ChartDefinition
from ..connections import ConnectionHandle
from ..models import split_table_identifier

LOG = logging.getLogger(__name__)


class QueryExecutionError(RuntimeError):
    """Raised when a chart query fails to execute."""


@dataclass(frozen=True, slots=True)
class QueryResult:
    """Rows fetched for a chart, keyed by column name."""

    columns: tuple[str, ...]
    rows: tuple[Mapping[str, Any], ...]
    elapsed_ms: int
    sql: str | None = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @classmethod
    def empty(cls) -> QueryResult:
        return cls(columns=(), rows=(), elapsed_ms=0)


def _column_ref(reference: str, schema: str | None, table: str) -> exp.Column:
    """Column expression; unqualified names belong to the given table."""

    parts = reference.split(".")
    if len(parts) == 1:
        return exp.column(reference, table=table, db=schema, quoted=True)
    if len(parts) == 2:
        return exp.column(parts[1], table=parts[0], quoted=True)
    return exp.column(parts[-1], table=parts[-2], db=parts[-3], quoted=True)


def compile_query(chart: ChartDefinition, dialect: str) -> str | None:
    """SQL text for a chart, or ``None`` when it has no table.

    The ``where`` predicate is appended verbatim; it is neither parsed nor
    escaped.
    """

    if chart.table is None:
        return None
    schema, name = split_table_identifier(chart.table)
    query = exp.select("*").from_(exp.table_(name, db=schema, quoted=True))
    for join in chart.joins or ():
        join_schema, join_name = split_table_identifier(join.table)
        condition = _column_ref(join.base_column, schema, name).eq(
            _column_ref(join.foreign_column, join_schema, join_name)
        )
        query = query.join(
            exp.table_(join_name, db=join_schema, quoted=True),
            on=condition,
            join_type="inner",
        )
    sql = query.sql(dialect=dialect)
    if chart.where and chart.where.strip():
        sql = f"{sql} WHERE {chart.where}"
    return sql


class ChartQueryBuilder:
    """Fetches the rows a chart is drawn from."""

    async def build_query(self, chart: ChartDefinition, handle: ConnectionHandle) -> QueryResult:
        sql = compile_query(chart, handle.dialect.sql_dialect)
        if sql is None:
            return QueryResult.empty()
        started = time.perf_counter()
        try:
            async with handle.engine.connect() as conn:
                result = await conn.exec_driver_sql(sql, execution_options={"no_parameters": True})
                columns = tuple(str(key) for key in result.keys())
                rows = tuple(dict(zip(columns, row)) for row in result)
        except Exception as exc:
            raise QueryExecutionError(str(exc)) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        LOG.debug(
            "Chart query finished",
            extra={"table": chart.table, "rows": len(rows), "elapsed_ms": elapsed_ms},
        )
        return QueryResult(columns=columns, rows=rows, elapsed_ms=elapsed_ms, sql=sql)


__all__ = [
    "ChartQueryBuilder",
    "QueryExecutionError",
    "QueryResult",
    "compile_query",
]
