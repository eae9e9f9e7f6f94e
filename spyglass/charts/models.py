"""Core dataclasses shared by the chart data services."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class AxisKind(str, Enum):
    """How the x-axis of a projected series should be rendered."""

    CATEGORICAL = "categorical"
    TEMPORAL = "temporal"


class DiagnosticKind(str, Enum):
    """Conditions reported while running a custom transform."""

    NOT_AN_ARRAY = "not_an_array"
    SHAPE_WARNING = "shape_warning"
    EXECUTION_ERROR = "execution_error"


@dataclass(frozen=True, slots=True)
class Datapoint:
    """Single plotted value."""

    x: Any
    y: Any

    def as_dict(self) -> dict[str, Any]:
        return {"x": self.x, "y": self.y}


@dataclass(frozen=True, slots=True)
class TransformDiagnostic:
    """Inline diagnostic for the chart editor."""

    kind: DiagnosticKind
    message: str

    @property
    def fatal(self) -> bool:
        return self.kind is not DiagnosticKind.SHAPE_WARNING


DiagnosticListener = Callable[[TransformDiagnostic], None]


@dataclass(frozen=True, slots=True)
class ChartData:
    """Render-ready output for one chart."""

    points: tuple[Datapoint, ...] = ()
    axis: AxisKind = AxisKind.CATEGORICAL
    row_count: int = 0
    diagnostics: tuple[TransformDiagnostic, ...] = ()
    error: str | None = None


__all__ = [
    "AxisKind",
    "ChartData",
    "Datapoint",
    "DiagnosticKind",
    "DiagnosticListener",
    "TransformDiagnostic",
]
