"""Per-chart orchestration: fetch rows when the source changes, project every time."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import ChartDefinition
from ..connections import ConnectionHandle
from .models import ChartData, DiagnosticListener, TransformDiagnostic
from .pipeline import classify_axis, project
from .query import ChartQueryBuilder, QueryExecutionError, QueryResult

LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _CachedRows:
    key: tuple[object, ...]
    result: QueryResult


class ChartDataService:
    """Turns chart definitions into render-ready data for one dashboard.

    Rows are kept per chart slot together with the connection generation and
    the chart's table/joins/where. Any change to those re-issues the full
    query; method or styling edits only re-project the rows already held.
    """

    def __init__(self, builder: ChartQueryBuilder | None = None) -> None:
        self._builder = builder or ChartQueryBuilder()
        self._rows: dict[int, _CachedRows] = {}

    async def render(
        self,
        slot: int,
        chart: ChartDefinition,
        handle: ConnectionHandle,
        *,
        on_diagnostic: DiagnosticListener | None = None,
    ) -> ChartData:
        if chart.table is None:
            self._rows.pop(slot, None)
            return ChartData()
        try:
            result = await self._rows_for(slot, chart, handle)
        except QueryExecutionError as exc:
            LOG.warning("Chart query failed for %s: %s", chart.table, exc)
            return ChartData(error=str(exc))

        diagnostics: list[TransformDiagnostic] = []

        def _report(diagnostic: TransformDiagnostic) -> None:
            diagnostics.append(diagnostic)
            if on_diagnostic is not None:
                on_diagnostic(diagnostic)
            else:
                LOG.warning("Chart #%s transform %s: %s", slot, diagnostic.kind.value, diagnostic.message)

        points = project(result.rows, chart.method, on_diagnostic=_report)
        return ChartData(
            points=tuple(points),
            axis=classify_axis(points),
            row_count=result.row_count,
            diagnostics=tuple(diagnostics),
        )

    def forget(self, slot: int) -> None:
        """Drop cached rows for one chart."""

        self._rows.pop(slot, None)

    def clear(self) -> None:
        """Drop all cached rows (connection changed)."""

        self._rows.clear()

    async def _rows_for(self, slot: int, chart: ChartDefinition, handle: ConnectionHandle) -> QueryResult:
        key = (handle.generation, *chart.source_key())
        cached = self._rows.get(slot)
        if cached is not None and cached.key == key:
            return cached.result
        result = await self._builder.build_query(chart, handle)
        self._rows[slot] = _CachedRows(key=key, result=result)
        return result


__all__ = ["ChartDataService"]
