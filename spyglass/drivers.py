"""On-demand provisioning of the asyncio SQL drivers behind each client kind."""

from __future__ import annotations

import asyncio
import importlib
import importlib.util
import logging
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

LOG = logging.getLogger(__name__)


class InstallFailureError(RuntimeError):
    """Raised when a driver distribution cannot be installed."""


@dataclass(frozen=True, slots=True)
class DriverSpec:
    """Import module + index distribution implementing a client kind."""

    module: str
    distribution: str


DRIVERS: Mapping[str, DriverSpec] = {
    "pg": DriverSpec(module="asyncpg", distribution="asyncpg"),
    "sqlite3": DriverSpec(module="aiosqlite", distribution="aiosqlite"),
    "mysql": DriverSpec(module="aiomysql", distribution="aiomysql"),
    "oracledb": DriverSpec(module="oracledb", distribution="oracledb"),
    "tedious": DriverSpec(module="aioodbc", distribution="aioodbc"),
}

Installer = Callable[[str], Awaitable[None]]


async def pip_install(distribution: str) -> None:
    """Install a distribution into the running interpreter without recording it anywhere."""

    process = await asyncio.create_subprocess_exec(
        sys.executable,
        "-m",
        "pip",
        "install",
        "--disable-pip-version-check",
        "--no-input",
        distribution,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    _, stderr = await process.communicate()
    if process.returncode != 0:
        message = stderr.decode(errors="replace").strip().splitlines()
        detail = message[-1] if message else f"exit code {process.returncode}"
        raise InstallFailureError(f"pip could not install '{distribution}': {detail}")


def _module_available(module: str) -> bool:
    try:
        return importlib.util.find_spec(module) is not None
    except (ImportError, ValueError):
        return False


class DriverRegistry:
    """Checks driver availability and installs missing drivers once."""

    def __init__(
        self,
        drivers: Mapping[str, DriverSpec] | None = None,
        *,
        installer: Installer = pip_install,
        is_available: Callable[[str], bool] = _module_available,
    ) -> None:
        self._drivers = dict(drivers or DRIVERS)
        self._installer = installer
        self._is_available = is_available
        self._ready: set[str] = set()

    def spec_for(self, client: str) -> DriverSpec | None:
        """Driver implementing the client kind, if known."""

        return self._drivers.get(client)

    def is_installed(self, client: str) -> bool:
        if client in self._ready:
            return True
        spec = self._drivers.get(client)
        if spec is None:
            return False
        if self._is_available(spec.module):
            self._ready.add(client)
            return True
        return False

    async def ensure_installed(self, client: str) -> None:
        """Install the driver for ``client`` unless it already resolves.

        Install failures are logged and swallowed; the connection attempt
        that follows surfaces the problem as a connection failure.
        """

        spec = self._drivers.get(client)
        if spec is None:
            LOG.warning("No driver registered for client", extra={"client": client})
            return
        if self.is_installed(client):
            return
        LOG.info("Installing driver", extra={"client": client, "distribution": spec.distribution})
        try:
            await self._installer(spec.distribution)
        except (InstallFailureError, OSError) as exc:
            LOG.error("Failed to install driver for %s: %s", client, exc)
            return
        importlib.invalidate_caches()
        self._ready.add(client)
        LOG.debug("Driver installed", extra={"client": client})


__all__ = [
    "DRIVERS",
    "DriverRegistry",
    "DriverSpec",
    "InstallFailureError",
    "Installer",
    "pip_install",
]
