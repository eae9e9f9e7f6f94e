"""Chart data services and helpers."""

from __future__ import annotations

from .models import (
    AxisKind,
    ChartData,
    Datapoint,
    DiagnosticKind,
    DiagnosticListener,
    TransformDiagnostic,
)
from .pipeline import classify_axis, project
from .query import ChartQueryBuilder, QueryExecutionError, QueryResult, compile_query
from .refresh import RefreshScheduler
from .service import ChartDataService

__all__ = [
    "AxisKind",
    "ChartData",
    "ChartDataService",
    "ChartQueryBuilder",
    "Datapoint",
    "DiagnosticKind",
    "DiagnosticListener",
    "QueryExecutionError",
    "QueryResult",
    "RefreshScheduler",
    "TransformDiagnostic",
    "classify_axis",
    "compile_query",
    "project",
]
