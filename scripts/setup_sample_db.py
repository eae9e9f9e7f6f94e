"""Start a seeded PostgreSQL container and register it as a Spyglass connection."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time

from spyglass.config import (
    CONFIG_FILE,
    AggregateCountMethod,
    AggregateSumMethod,
    ChartDefinition,
    ChartPosition,
    ColumnMethod,
    ConnectionProfile,
    Join,
    load_config,
    save_config,
)

PROFILE_NAME = "Docker Sample"
DEFAULT_CONTAINER = "spyglass-sample-db"
DEFAULT_PORT = 5544
DEFAULT_PASSWORD = "spyglass"
DEFAULT_DB = "spyglass_demo"
DEFAULT_USER = "spyglass"
DOCKER_IMAGE = "postgres:16-alpine"

SEED_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id SERIAL PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    region TEXT NOT NULL,
    created_at TIMESTAMPTZ DEFAULT now()
);
CREATE TABLE IF NOT EXISTS orders (
    id SERIAL PRIMARY KEY,
    account_id INTEGER REFERENCES accounts(id),
    total NUMERIC(10,2) NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    placed_on DATE NOT NULL DEFAULT current_date
);
INSERT INTO accounts (email, region) VALUES
    ('anna@example.com', 'emea'),
    ('ben@example.com', 'amer'),
    ('cara@example.com', 'apac')
ON CONFLICT DO NOTHING;
INSERT INTO orders (account_id, total, status, placed_on)
SELECT a.id,
       (random() * 100)::numeric(10,2),
       (ARRAY['pending', 'complete', 'refunded'])[1 + (g % 3)],
       current_date - g
FROM accounts a CROSS JOIN generate_series(0, 29) AS g
WHERE NOT EXISTS (SELECT 1 FROM orders);
""".strip()


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int, password: str, database: str, user: str) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(
            [
                "docker", "run", "-d", "--name", name,
                "-e", f"POSTGRES_PASSWORD={password}",
                "-e", f"POSTGRES_DB={database}",
                "-e", f"POSTGRES_USER={user}",
                "-p", f"{port}:5432",
                DOCKER_IMAGE,
            ]
        )
    wait_for_start(name, user)


def wait_for_start(name: str, user: str, retries: int = 15, delay: float = 1.0) -> None:
    for _ in range(retries):
        result = subprocess.run(["docker", "exec", name, "pg_isready", "-U", user], text=True)
        if result.returncode == 0:
            return
        time.sleep(delay)
    print("Warning: database did not report ready state; continuing anyway.")


def seed_data(name: str, database: str, user: str) -> None:
    run(
        ["docker", "exec", "-i", name, "psql", "-U", user, "-d", database, "-v", "ON_ERROR_STOP=1"],
        input=SEED_SQL,
    )


def sample_charts() -> list[ChartDefinition]:
    """A few charts exercising each built-in projection."""

    return [
        ChartDefinition(
            pos=ChartPosition(x=0, y=0, width=6, height=4),
            title="Orders by status",
            table="public.orders",
            x_title="Status",
            y_title="Orders",
            method=AggregateCountMethod(x="status"),
            style="pie",
        ),
        ChartDefinition(
            pos=ChartPosition(x=6, y=0, width=6, height=4),
            title="Revenue by region",
            subtitle="Completed orders only",
            table="public.orders",
            x_title="Region",
            y_title="Revenue",
            method=AggregateSumMethod(x="region", y="total"),
            style="bar",
            joins=[Join(table="public.accounts", base_column="account_id", foreign_column="id")],
            where="status = 'complete'",
            y_formatter="currency",
        ),
        ChartDefinition(
            pos=ChartPosition(x=0, y=4, width=12, height=4),
            title="Order totals over time",
            table="public.orders",
            x_title="Placed on",
            y_title="Total",
            method=ColumnMethod(x="placed_on", y="total"),
            style="line",
        ),
    ]


def update_config(port: int, user: str, database: str, password: str) -> None:
    config = load_config()
    if any(profile.name == PROFILE_NAME for profile in config.connections):
        print(f"Profile '{PROFILE_NAME}' already present in config; leaving as-is.")
        return
    profile = ConnectionProfile(
        environment="local",
        name=PROFILE_NAME,
        username=user,
        password=password,
        host="localhost",
        port=port,
        database=database,
        client="pg",
        charts=sample_charts(),
    )
    config = config.with_connection_added(profile)
    save_config(config)
    print(f"Added '{PROFILE_NAME}' profile to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Postgres on")
    parser.add_argument("--password", default=DEFAULT_PASSWORD, help="Postgres password")
    parser.add_argument("--database", default=DEFAULT_DB, help="Database name to create")
    parser.add_argument("--user", default=DEFAULT_USER, help="Database user")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        start_container(args.container, args.port, args.password, args.database, args.user)
        seed_data(args.container, args.database, args.user)
    except FileNotFoundError:
        print("Docker is not installed or not on PATH.")
        return 1
    update_config(args.port, args.user, args.database, args.password)
    print(f"Sample database is ready. Try: python -m spyglass chart '{PROFILE_NAME}' 1")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
