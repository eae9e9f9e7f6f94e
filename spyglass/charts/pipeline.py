"""Projection of raw rows into chart datapoints."""

from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Hashable, Mapping, Sequence, assert_never

from ..config import (
    AggregateCountMethod,
    AggregateSumMethod,
    ColumnMethod,
    CustomMethod,
)
from .models import (
    AxisKind,
    Datapoint,
    DiagnosticKind,
    DiagnosticListener,
    TransformDiagnostic,
)
from .sandbox import run_transform

LOG = logging.getLogger(__name__)

Row = Mapping[str, Any]
MethodVariant = ColumnMethod | AggregateSumMethod | AggregateCountMethod | CustomMethod

_DECIMAL_LITERAL = re.compile(
    r"[+-]?(?:\d+(?P<fraction>\.\d*)?|(?P<bare>\.\d+))(?P<exponent>[eE][+-]?\d+)?",
    re.ASCII,
)
_RADIX_LITERAL = re.compile(r"0(?:[xX][0-9a-fA-F]+|[oO][0-7]+|[bB][01]+)", re.ASCII)
_INFINITIES = {"Infinity": math.inf, "+Infinity": math.inf, "-Infinity": -math.inf}

_MISSING = object()


def project(
    rows: Sequence[Row],
    method: MethodVariant,
    *,
    on_diagnostic: DiagnosticListener | None = None,
) -> list[Datapoint]:
    """Map rows to datapoints according to the chart's method."""

    if isinstance(method, ColumnMethod):
        return _project_columns(rows, method.x, method.y)
    if isinstance(method, AggregateCountMethod):
        return _project_count(rows, method.x)
    if isinstance(method, AggregateSumMethod):
        return _project_sum(rows, method.x, method.y)
    if isinstance(method, CustomMethod):
        return _project_custom(rows, method.fn, on_diagnostic or _log_diagnostic)
    assert_never(method)


def _project_columns(rows: Sequence[Row], x: str | None, y: str | None) -> list[Datapoint]:
    if not x or not y:
        return []
    return [Datapoint(x=row.get(x), y=row.get(y)) for row in rows]


def _group_key(value: Any) -> Hashable:
    try:
        hash(value)
    except TypeError:
        return ("unhashable", repr(value))
    return value


def _project_count(rows: Sequence[Row], x: str | None) -> list[Datapoint]:
    if not x:
        return []
    labels: dict[Hashable, Any] = {}
    counts: dict[Hashable, int] = {}
    for row in rows:
        value = row.get(x)
        key = _group_key(value)
        labels.setdefault(key, value)
        counts[key] = counts.get(key, 0) + 1
    return [Datapoint(x=labels[key], y=count) for key, count in counts.items()]


def _project_sum(rows: Sequence[Row], x: str | None, y: str | None) -> list[Datapoint]:
    if not x or not y:
        return []
    labels: dict[Hashable, Any] = {}
    totals: dict[Hashable, int | float] = {}
    for row in rows:
        value = row.get(x)
        key = _group_key(value)
        labels.setdefault(key, value)
        totals[key] = totals.get(key, 0) + to_number(row.get(y, _MISSING))
    return [Datapoint(x=labels[key], y=total) for key, total in totals.items()]


def to_number(value: Any) -> int | float:
    """Coerce a cell to a number the way JavaScript's ``Number()`` does.

    ``None`` and blank strings count as zero; anything that is not numeric
    (including a missing column) becomes NaN, which then poisons its group.
    Strings follow the JavaScript grammar rather than Python's, so
    ``"0x1F"`` is 31 while ``"1_000"`` and ``"inf"`` are NaN.
    """

    if value is _MISSING:
        return math.nan
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, str):
        return _string_to_number(value)
    if isinstance(value, datetime):
        return value.timestamp() * 1000
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp() * 1000
    return math.nan


def _string_to_number(value: str) -> int | float:
    text = value.strip()
    if not text:
        return 0
    if text in _INFINITIES:
        return _INFINITIES[text]
    if _RADIX_LITERAL.fullmatch(text):
        return int(text, 0)
    match = _DECIMAL_LITERAL.fullmatch(text)
    if match is None:
        return math.nan
    if match["fraction"] is None and match["bare"] is None and match["exponent"] is None:
        return int(text)
    return float(text)


def _project_custom(rows: Sequence[Row], source: str, report: DiagnosticListener) -> list[Datapoint]:
    try:
        result = run_transform(source, rows)
    except Exception as exc:
        report(TransformDiagnostic(DiagnosticKind.EXECUTION_ERROR, f"{type(exc).__name__}: {exc}"))
        return []
    if not isinstance(result, (list, tuple)):
        report(
            TransformDiagnostic(
                DiagnosticKind.NOT_AN_ARRAY,
                f"Transform must return a list, got {type(result).__name__}.",
            )
        )
        return []
    if result:
        first = result[0]
        if not isinstance(first, Mapping) or "x" not in first or "y" not in first:
            report(
                TransformDiagnostic(
                    DiagnosticKind.SHAPE_WARNING,
                    "Items should be dicts with 'x' and 'y' keys.",
                )
            )
    return [Datapoint(x=item.get("x"), y=item.get("y")) for item in result if isinstance(item, Mapping)]


def _log_diagnostic(diagnostic: TransformDiagnostic) -> None:
    LOG.warning("Custom transform %s: %s", diagnostic.kind.value, diagnostic.message)


def looks_temporal(value: Any) -> bool:
    """True for dates, epoch timestamps and ISO-8601 strings."""

    if isinstance(value, bool):
        return False
    if isinstance(value, (datetime, date)):
        return True
    if isinstance(value, (int, float, Decimal)):
        return math.isfinite(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return False
        try:
            datetime.fromisoformat(text)
        except ValueError:
            return False
        return True
    return False


def classify_axis(points: Sequence[Datapoint]) -> AxisKind:
    """Temporal when the first point's ``x`` is date-like, categorical otherwise."""

    if points and looks_temporal(points[0].x):
        return AxisKind.TEMPORAL
    return AxisKind.CATEGORICAL


__all__ = [
    "MethodVariant",
    "classify_axis",
    "looks_temporal",
    "project",
    "to_number",
]
