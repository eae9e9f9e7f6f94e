"""Command line access to the backend operations."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from . import __version__
from .api import SpyglassApi
from .config import CONFIG_FILE, config_json_schema, load_config
from .connections import ConnectionFailureError
from .session import SessionError

LOG = logging.getLogger(__name__)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="spyglass", description="Spyglass SQL backend tools.")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (DEBUG, INFO, ...)")
    commands = parser.add_subparsers(dest="command", required=True)

    test = commands.add_parser("test", help="Probe a saved connection and print its latency")
    test.add_argument("name", help="Connection profile name")
    test.add_argument("--password", help="Password to use instead of the stored one")

    tables = commands.add_parser("tables", help="List tables and columns of a saved connection")
    tables.add_argument("name", help="Connection profile name")
    tables.add_argument("--password", help="Password to use instead of the stored one")

    chart = commands.add_parser("chart", help="Print the datapoints of one chart")
    chart.add_argument("name", help="Connection profile name")
    chart.add_argument("index", type=int, help="Chart index within the profile")
    chart.add_argument("--password", help="Password to use instead of the stored one")

    commands.add_parser("schema", help="Print the JSON schema of the config file")
    return parser.parse_args(argv)


def _profile_index(api: SpyglassApi, name: str) -> int:
    for index, profile in enumerate(api.config.connections):
        if profile.name == name:
            return index
    raise SystemExit(f"No connection named '{name}' in {CONFIG_FILE}.")


async def _test(api: SpyglassApi, args: argparse.Namespace) -> int:
    profile = api.config.connections[_profile_index(api, args.name)]
    latency = await api.test_connection(profile, args.password)
    if latency is None:
        print(f"{args.name}: connection failed")
        return 1
    print(f"{args.name}: ok ({latency} ms)")
    return 0


async def _tables(api: SpyglassApi, args: argparse.Namespace) -> int:
    await api.set_active_connection(_profile_index(api, args.name), args.password)
    catalog = await api.get_tables()
    if catalog is None:
        print(f"{args.name}: could not read the schema")
        return 1
    for table, columns in sorted(catalog.items()):
        print(table)
        for column in columns:
            marker = " #" if column.numeric else ""
            print(f"  {column.name} {column.data_type}{marker}")
    return 0


async def _chart(api: SpyglassApi, args: argparse.Namespace) -> int:
    await api.set_active_connection(_profile_index(api, args.name), args.password)
    data = await api.get_chart_data(args.index)
    for diagnostic in data.diagnostics:
        print(f"{diagnostic.kind.value}: {diagnostic.message}", file=sys.stderr)
    if data.error is not None:
        print(data.error, file=sys.stderr)
        return 1
    payload = {
        "axis": data.axis.value,
        "rows": data.row_count,
        "points": [point.as_dict() for point in data.points],
    }
    print(json.dumps(payload, indent=2, default=str))
    return 0


_COMMANDS = {"test": _test, "tables": _tables, "chart": _chart}


async def run(args: argparse.Namespace) -> int:
    api = SpyglassApi(load_config())
    try:
        return await _COMMANDS[args.command](api, args)
    except (SessionError, ConnectionFailureError, LookupError) as exc:
        print(exc, file=sys.stderr)
        return 1
    finally:
        await api.close()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "schema":
        print(json.dumps(config_json_schema(), indent=2))
        return 0
    return asyncio.run(run(args))


__all__ = ["main", "parse_args", "run"]
