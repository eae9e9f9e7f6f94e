"""App configuration models and loading helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal, Mapping, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializationInfo,
    SerializerFunctionWrapHandler,
    ValidationError,
    field_validator,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .models import ClientKind, Environment

LOG = logging.getLogger(__name__)

CONFIG_FILE = Path.home() / ".config" / "spyglass" / "spyglass.json"


class _ConfigModel(BaseModel):
    """Base for persisted shapes: camelCase on disk, unset optionals omitted."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    omit_when_none: ClassVar[frozenset[str]] = frozenset()

    @model_serializer(mode="wrap")
    def _omit_unset_optionals(
        self, handler: SerializerFunctionWrapHandler, info: SerializationInfo
    ) -> dict[str, Any]:
        data = handler(self)
        for name in self.omit_when_none:
            field = type(self).model_fields[name]
            key = field.alias if info.by_alias and field.alias else name
            if key in data and data[key] is None:
                del data[key]
        return data


class ChartPosition(_ConfigModel):
    """Free-form placement of a chart on the dashboard grid."""

    x: int | float
    y: int | float
    width: int | float
    height: int | float


class Join(_ConfigModel):
    """Inner join of ``table`` on ``base_column = foreign_column``."""

    table: str
    base_column: str
    foreign_column: str


class ColumnMethod(_ConfigModel):
    type: Literal["column"] = "column"
    x: str | None
    y: str | None


class AggregateSumMethod(_ConfigModel):
    type: Literal["aggregate_sum"] = "aggregate_sum"
    x: str | None
    y: str | None


class AggregateCountMethod(_ConfigModel):
    type: Literal["aggregate_count"] = "aggregate_count"
    x: str | None


class CustomMethod(_ConfigModel):
    """User-authored transform; ``fn`` is the body of ``transform(rows)``."""

    type: Literal["custom"] = "custom"
    fn: str


Method = Annotated[
    Union[ColumnMethod, AggregateSumMethod, AggregateCountMethod, CustomMethod],
    Field(discriminator="type"),
]


def default_method() -> ColumnMethod:
    return ColumnMethod(x=None, y=None)


class ChartDefinition(_ConfigModel):
    """Declarative description of one dashboard widget."""

    omit_when_none: ClassVar[frozenset[str]] = frozenset(
        {"subtitle", "joins", "where", "x_formatter", "y_formatter"}
    )

    pos: ChartPosition
    title: str
    subtitle: str | None = None
    table: str | None
    x_title: str
    y_title: str
    method: Method = Field(default_factory=default_method)
    style: Literal["bar", "line", "pie"]
    joins: list[Join] | None = None
    where: str | None = None
    x_formatter: str | None = None
    y_formatter: str | None = None

    @model_validator(mode="after")
    def _reset_method_without_table(self) -> ChartDefinition:
        if self.table is None and self.method != default_method():
            self.method = default_method()
        return self

    def with_table(self, table: str | None) -> ChartDefinition:
        """Return a copy pointing at ``table``; clearing it resets the method."""

        if table is None:
            return self.model_copy(update={"table": None, "method": default_method()})
        return self.model_copy(update={"table": table})

    def with_method(
        self, method: ColumnMethod | AggregateSumMethod | AggregateCountMethod | CustomMethod
    ) -> ChartDefinition:
        """Return a copy with the projection method replaced."""

        return self.model_copy(update={"method": method})

    def source_key(self) -> tuple[object, ...]:
        """Everything that changes the row set a chart is drawn from."""

        joins = tuple((j.table, j.base_column, j.foreign_column) for j in self.joins or ())
        return self.table, joins, self.where or None


class ConnectionProfile(_ConfigModel):
    """Connection profile stored in the config file."""

    omit_when_none: ClassVar[frozenset[str]] = frozenset({"port", "password"})

    environment: Environment
    name: str
    username: str
    password: str | None = None
    host: str
    port: int | None = None
    database: str
    client: ClientKind
    charts: list[ChartDefinition] = Field(default_factory=list)

    @field_validator("port", mode="before")
    @classmethod
    def _parse_port(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            if stripped.isdigit():
                return int(stripped)
        return value

    @field_validator("password", mode="before")
    @classmethod
    def _blank_password(cls, value: object) -> object:
        if value == "":
            return None
        return value

    def without_password(self) -> ConnectionProfile:
        """Copy suitable for saving when the user did not opt in to storing the password."""

        return self.model_copy(update={"password": None})

    def with_charts(self, charts: list[ChartDefinition]) -> ConnectionProfile:
        return self.model_copy(update={"charts": charts})


class AppConfig(_ConfigModel):
    """Shape of the application configuration file."""

    theme: Literal["system", "light", "dark"] = "system"
    connections: list[ConnectionProfile] = Field(default_factory=list)

    @field_validator("connections")
    @classmethod
    def _unique_names(cls, profiles: list[ConnectionProfile]) -> list[ConnectionProfile]:
        seen: set[str] = set()
        for profile in profiles:
            if profile.name in seen:
                raise ValueError(f"Duplicate connection name '{profile.name}'")
            seen.add(profile.name)
        return profiles

    def with_connection(self, index: int, profile: ConnectionProfile) -> AppConfig:
        """Return a copy with the profile at ``index`` replaced."""

        connections = list(self.connections)
        connections[index] = profile
        return self.model_copy(update={"connections": connections})

    def with_connection_added(self, profile: ConnectionProfile) -> AppConfig:
        return self.model_copy(update={"connections": [*self.connections, profile]})

    def to_payload(self) -> dict[str, Any]:
        """Mapping in the on-disk shape (camelCase keys)."""

        return self.model_dump(mode="json", by_alias=True)


def format_errors(exc: ValidationError) -> list[str]:
    """Flatten a pydantic error into ``loc: message`` strings for display."""

    errors: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        errors.append(f"{location}: {error['msg']}" if location else error["msg"])
    return errors


def validate_config(payload: Mapping[str, Any]) -> tuple[AppConfig | None, list[str]]:
    """Validate an untrusted config mapping; returns the model or the error list."""

    try:
        return AppConfig.model_validate(payload), []
    except ValidationError as exc:
        return None, format_errors(exc)


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing or invalid."""

    try:
        raw = CONFIG_FILE.read_text()
    except FileNotFoundError:
        LOG.debug("No config file at %s; using defaults", CONFIG_FILE)
        return AppConfig()
    except OSError as exc:
        LOG.warning("Failed to read config. Using defaults: %s", exc)
        return AppConfig()
    try:
        return AppConfig.model_validate_json(raw)
    except ValidationError as exc:
        LOG.warning("Failed to load config. Using defaults: %s", "; ".join(format_errors(exc)))
        return AppConfig()


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    CONFIG_FILE.write_text(json.dumps(config.to_payload(), indent=2) + "\n")
    LOG.debug("Config saved to %s", CONFIG_FILE)


def config_json_schema() -> dict[str, Any]:
    """JSON schema of the config file, for editor tooling."""

    return AppConfig.model_json_schema(by_alias=True)


__all__ = [
    "AggregateCountMethod",
    "AggregateSumMethod",
    "AppConfig",
    "CONFIG_FILE",
    "ChartDefinition",
    "ChartPosition",
    "ColumnMethod",
    "ConnectionProfile",
    "CustomMethod",
    "Join",
    "Method",
    "config_json_schema",
    "default_method",
    "format_errors",
    "load_config",
    "save_config",
    "validate_config",
]
