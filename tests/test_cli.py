"""Tests for the command line entry point."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path

import pytest

from spyglass import config as config_module
from spyglass.cli import main, parse_args
from spyglass.config import (
    AggregateCountMethod,
    AppConfig,
    ChartDefinition,
    ChartPosition,
    ConnectionProfile,
    save_config,
)


@pytest.fixture
def configured(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    database = tmp_path / "demo.db"
    with sqlite3.connect(database) as conn:
        conn.executescript(
            """
            CREATE TABLE orders (id INTEGER PRIMARY KEY, status TEXT);
            INSERT INTO orders (status) VALUES ('complete'), ('complete'), ('pending');
            """
        )
    monkeypatch.setattr(config_module, "CONFIG_FILE", tmp_path / "spyglass.json")
    chart = ChartDefinition(
        pos=ChartPosition(x=0, y=0, width=1, height=1),
        title="By status",
        table="orders",
        x_title="Status",
        y_title="Orders",
        method=AggregateCountMethod(x="status"),
        style="pie",
    )
    profile = ConnectionProfile(
        environment="local",
        name="Local",
        username="",
        host="",
        database=str(database),
        client="sqlite3",
        charts=[chart],
    )
    save_config(AppConfig(connections=[profile]))
    return database


def test_parse_args_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        parse_args([])

    args = parse_args(["--log-level", "debug", "chart", "Local", "2"])
    assert args.command == "chart"
    assert args.index == 2
    assert args.password is None


def test_schema_command_prints_json_schema(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["schema"]) == 0

    schema = json.loads(capsys.readouterr().out)
    assert "connections" in schema["properties"]


def test_chart_command_prints_points(configured: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["chart", "Local", "0"]) == 0

    payload = json.loads(capsys.readouterr().out)
    assert payload["axis"] == "categorical"
    assert payload["points"] == [{"x": "complete", "y": 2}, {"x": "pending", "y": 1}]


def test_tables_command_lists_columns(configured: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["tables", "Local"]) == 0

    output = capsys.readouterr().out.splitlines()
    assert output[0] == "orders"
    assert output[1].strip().startswith("id INTEGER")


def test_test_command_reports_latency(configured: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["test", "Local"]) == 0

    assert capsys.readouterr().out.startswith("Local: ok (")


def test_unknown_chart_index_fails(configured: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["chart", "Local", "4"]) == 1

    assert "Chart #4 not found" in capsys.readouterr().err
