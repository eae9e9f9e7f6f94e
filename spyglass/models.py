"""Shared dataclasses used across connection/introspection modules."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping

ClientKind = Literal["pg", "sqlite3", "mysql", "oracledb", "tedious"]
Environment = Literal["local", "testing", "development", "staging", "production"]


@dataclass(frozen=True, slots=True)
class ColumnInfo:
    """Column metadata surfaced to the chart editors."""

    name: str
    numeric: bool
    data_type: str = ""
    nullable: bool = True


TableCatalog = Mapping[str, tuple[ColumnInfo, ...]]


def split_table_identifier(identifier: str) -> tuple[str | None, str]:
    """Split ``schema.table`` into its parts; bare names have no schema."""

    if "." in identifier:
        schema, table = identifier.split(".", 1)
        return schema or None, table
    return None, identifier


__all__ = [
    "ClientKind",
    "ColumnInfo",
    "Environment",
    "TableCatalog",
    "split_table_identifier",
]
