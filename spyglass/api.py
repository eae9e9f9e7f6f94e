"""Bound operations exposed to the view layer."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from pydantic import ValidationError

from .charts import ChartData, ChartDataService, DiagnosticListener, RefreshScheduler
from .charts.refresh import DEFAULT_DELAY
from .config import (
    AppConfig,
    ChartDefinition,
    ConnectionProfile,
    format_errors,
    load_config,
    save_config,
    validate_config,
)
from .connections import ConnectionFactory, ConnectionTester
from .drivers import DriverRegistry
from .introspection import SchemaIntrospector
from .models import TableCatalog
from .session import ActiveConnectionManager, NoActiveConnectionError, ProfileNotFoundError

LOG = logging.getLogger(__name__)
VIEW_LOG = logging.getLogger("spyglass.view")

STALE_CONNECTION = "Connection changed while the chart was loading."

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class ChartNotFoundError(LookupError):
    """Raised when a chart index does not exist on the active profile."""


class SpyglassApi:
    """Request/response surface the UI binds to; one instance per window."""

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        drivers: DriverRegistry | None = None,
        factory: ConnectionFactory | None = None,
        persist: Callable[[AppConfig], None] = save_config,
        refresh_delay: float = DEFAULT_DELAY,
    ) -> None:
        self._config = config if config is not None else load_config()
        self._persist = persist
        drivers = drivers or DriverRegistry()
        factory = factory or ConnectionFactory()
        self._tester = ConnectionTester(drivers, factory)
        self._connections = ActiveConnectionManager(self._config, drivers=drivers, factory=factory)
        self._charts = ChartDataService()
        self._refresh = RefreshScheduler(refresh_delay)
        self._catalog: TableCatalog | None = None

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def connections(self) -> ActiveConnectionManager:
        return self._connections

    @property
    def catalog(self) -> TableCatalog | None:
        """Catalog from the last ``get_tables`` call on the current connection."""

        return self._catalog

    async def test_connection(
        self,
        profile: ConnectionProfile | Mapping[str, Any],
        password: str | None = None,
    ) -> int | None:
        """Probe a candidate profile; latency in ms, ``None`` if it does not work."""

        if not isinstance(profile, ConnectionProfile):
            try:
                profile = ConnectionProfile.model_validate({"charts": [], **profile})
            except ValidationError as exc:
                LOG.warning("Connection test skipped, invalid profile: %s", "; ".join(format_errors(exc)))
                return None
        return await self._tester.test(profile, password if password is not None else profile.password)

    async def set_active_connection(self, index: int, password: str | None = None) -> None:
        """Open the profile at ``index`` (``-1`` closes the active connection)."""

        self._refresh.cancel_all()
        self._charts.clear()
        self._catalog = None
        await self._connections.set_active(index, password)

    async def get_tables(self) -> TableCatalog | None:
        """Rebuild the catalog for the active connection; ``None`` if introspection fails."""

        async with self._connections.use() as handle:
            catalog = await SchemaIntrospector(handle).load_catalog()
            if self._connections.is_current(handle):
                self._catalog = catalog
        return catalog

    async def get_config(self) -> dict[str, Any]:
        return self._config.to_payload()

    async def save_config(self, payload: Mapping[str, Any]) -> list[str]:
        """Validate and persist a full config; returns validation errors (empty on success)."""

        config, errors = validate_config(payload)
        if config is None:
            LOG.warning("Rejected config: %s", "; ".join(errors))
            return errors
        await self._apply_config(config)
        return []

    async def add_connection(self, payload: Mapping[str, Any], *, save_password: bool = False) -> list[str]:
        """Append a new profile; the password is only stored when ``save_password`` is set."""

        try:
            profile = ConnectionProfile.model_validate(payload)
        except ValidationError as exc:
            return format_errors(exc)
        if any(existing.name == profile.name for existing in self._config.connections):
            return [f"name: Duplicate connection name '{profile.name}'"]
        if not save_password:
            profile = profile.without_password()
        await self._apply_config(self._config.with_connection_added(profile))
        return []

    async def get_chart_data(
        self,
        chart_index: int,
        *,
        on_diagnostic: DiagnosticListener | None = None,
    ) -> ChartData:
        """Query and project one chart of the active profile."""

        async with self._connections.use() as handle:
            chart = self._chart_at(chart_index)
            data = await self._charts.render(chart_index, chart, handle, on_diagnostic=on_diagnostic)
            if not self._connections.is_current(handle):
                LOG.debug("Dropping chart #%s rendered on retired generation %s", chart_index, handle.generation)
                return ChartData(error=STALE_CONNECTION)
        return data

    def schedule_chart_refresh(
        self,
        chart_index: int,
        on_data: Callable[[ChartData], None],
        *,
        on_diagnostic: DiagnosticListener | None = None,
    ) -> None:
        """Debounced ``get_chart_data`` for editors that fire on every keystroke."""

        async def _render() -> None:
            on_data(await self.get_chart_data(chart_index, on_diagnostic=on_diagnostic))

        self._refresh.submit(chart_index, _render)

    async def add_chart(self, chart: ChartDefinition | Mapping[str, Any]) -> int:
        """Append a chart to the active profile and return its index."""

        index, profile = self._active_profile()
        chart = ChartDefinition.model_validate(chart) if not isinstance(chart, ChartDefinition) else chart
        charts = [*profile.charts, chart]
        await self._apply_config(self._config.with_connection(index, profile.with_charts(charts)))
        return len(charts) - 1

    async def update_chart(self, chart_index: int, chart: ChartDefinition | Mapping[str, Any]) -> None:
        """Replace a chart definition and persist it."""

        index, profile = self._active_profile()
        self._chart_at(chart_index)
        chart = ChartDefinition.model_validate(chart) if not isinstance(chart, ChartDefinition) else chart
        charts = list(profile.charts)
        charts[chart_index] = chart
        await self._apply_config(self._config.with_connection(index, profile.with_charts(charts)))

    async def set_chart_table(self, chart_index: int, table: str | None) -> None:
        """Point a chart at another table; clearing it resets the method."""

        await self.update_chart(chart_index, self._chart_at(chart_index).with_table(table))

    async def remove_chart(self, chart_index: int) -> None:
        index, profile = self._active_profile()
        self._chart_at(chart_index)
        charts = [chart for position, chart in enumerate(profile.charts) if position != chart_index]
        self._refresh.cancel_all()
        self._charts.clear()
        await self._apply_config(self._config.with_connection(index, profile.with_charts(charts)))

    def log(self, level: str, *parts: object) -> None:
        """Forward a view-side log line into the application log."""

        VIEW_LOG.log(_LOG_LEVELS.get(level.lower(), logging.INFO), " ".join(str(part) for part in parts))

    async def close(self) -> None:
        self._refresh.cancel_all()
        await self._connections.close()

    def _active_profile(self) -> tuple[int, ConnectionProfile]:
        state = self._connections.state
        if state is None:
            raise NoActiveConnectionError("No active connection; open a connection first.")
        if state.index >= len(self._config.connections):
            raise ProfileNotFoundError(f"Profile #{state.index} not found.")
        return state.index, self._config.connections[state.index]

    def _chart_at(self, chart_index: int) -> ChartDefinition:
        _, profile = self._active_profile()
        if chart_index < 0 or chart_index >= len(profile.charts):
            raise ChartNotFoundError(f"Chart #{chart_index} not found on '{profile.name}'.")
        return profile.charts[chart_index]

    async def _apply_config(self, config: AppConfig) -> None:
        self._persist(config)
        self._config = config
        was_active = self._connections.is_active
        await self._connections.replace_config(config)
        if was_active and not self._connections.is_active:
            self._refresh.cancel_all()
            self._charts.clear()
            self._catalog = None


__all__ = ["ChartNotFoundError", "SpyglassApi"]
