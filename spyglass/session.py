"""Owner of the single active connection."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import AsyncIterator, Callable

from .config import AppConfig, ConnectionProfile
from .connections import ConnectionFactory, ConnectionFailureError, ConnectionHandle, dialect_for
from .drivers import DriverRegistry

LOG = logging.getLogger(__name__)

NO_CONNECTION = -1

SessionListener = Callable[["SessionState | None"], None]


class SessionError(RuntimeError):
    """Base error for active connection management."""


class ProfileNotFoundError(SessionError):
    """Raised when a profile index does not resolve."""


class MissingCredentialError(SessionError):
    """Raised when neither a stored nor a supplied password is available."""


class NoActiveConnectionError(SessionError):
    """Raised when an operation needs the active connection but none is set."""


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot."""

    index: int
    profile: ConnectionProfile
    generation: int
    activated_at: datetime


class ActiveConnectionManager:
    """Holds at most one live handle and swaps it on request.

    Handles are only lent out through :meth:`use`, which counts borrowers.
    Swaps run under a lock and wait for every borrower of the previous
    handle to finish before disposing it and building the next one, so two
    handles are never open at once and a retired handle serves no request.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        drivers: DriverRegistry | None = None,
        factory: ConnectionFactory | None = None,
    ) -> None:
        self._config = config
        self._drivers = drivers or DriverRegistry()
        self._factory = factory or ConnectionFactory()
        self._lock = asyncio.Lock()
        self._handle: ConnectionHandle | None = None
        self._state: SessionState | None = None
        self._generation = 0
        self._borrowers = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._listeners: set[SessionListener] = set()

    @property
    def state(self) -> SessionState | None:
        """Current session state, ``None`` when no connection is active."""

        return self._state

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        return tuple(self._config.connections)

    @property
    def is_active(self) -> bool:
        return self._handle is not None

    @property
    def borrowers(self) -> int:
        return self._borrowers

    def is_current(self, handle: ConnectionHandle) -> bool:
        """True while ``handle`` is still the active one."""

        return self._handle is not None and self._handle.generation == handle.generation

    async def replace_config(self, config: AppConfig) -> None:
        """Swap in a newly saved config and re-anchor the active session.

        The session follows its profile by name. It is retired when that
        profile disappears or its connection settings change.
        """

        async with self._lock:
            self._config = config
            state = self._state
            if state is None:
                return
            index, profile = self._find_profile(state.profile.name)
            if profile is None or _endpoint(profile) != _endpoint(state.profile):
                LOG.info(
                    "Active profile removed or changed; closing connection",
                    extra={"profile": state.profile.name},
                )
                await self._retire()
            else:
                self._state = replace(state, index=index, profile=profile)
        self._notify()

    async def set_active(self, profile_index: int, password: str | None = None) -> None:
        """Activate the profile at ``profile_index``; ``NO_CONNECTION`` tears down."""

        async with self._lock:
            if profile_index == NO_CONNECTION:
                await self._retire()
                self._notify()
                return
            profile = self._profile_at(profile_index)
            effective = password if password is not None else profile.password
            if effective is None and dialect_for(profile.client).requires_password:
                raise MissingCredentialError(f"Profile '{profile.name}' needs a password to connect.")
            await self._drivers.ensure_installed(profile.client)
            await self._retire()
            self._generation += 1
            try:
                self._handle = self._factory.build(profile, effective, generation=self._generation)
            except ConnectionFailureError:
                self._notify()
                raise
            self._state = SessionState(
                index=profile_index,
                profile=profile,
                generation=self._generation,
                activated_at=datetime.now(tz=timezone.utc),
            )
            LOG.info(
                "Activated connection",
                extra={"profile": profile.name, "generation": self._generation},
            )
        self._notify()

    @asynccontextmanager
    async def use(self) -> AsyncIterator[ConnectionHandle]:
        """Borrow the active handle for the duration of the block.

        Waits for a swap in progress; the handle is not disposed until the
        block exits.
        """

        async with self._lock:
            handle = self._handle
            if handle is None:
                raise NoActiveConnectionError("No active connection; open a connection first.")
            self._borrowers += 1
            self._idle.clear()
        try:
            yield handle
        finally:
            self._borrowers -= 1
            if self._borrowers == 0:
                self._idle.set()

    async def close(self) -> None:
        """Retire the active handle, if any."""

        async with self._lock:
            await self._retire()
        self._notify()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _profile_at(self, index: int) -> ConnectionProfile:
        profiles = self._config.connections
        if index < 0 or index >= len(profiles):
            raise ProfileNotFoundError(f"Profile #{index} not found.")
        return profiles[index]

    def _find_profile(self, name: str) -> tuple[int, ConnectionProfile | None]:
        for index, profile in enumerate(self._config.connections):
            if profile.name == name:
                return index, profile
        return NO_CONNECTION, None

    async def _retire(self) -> None:
        handle = self._handle
        self._handle = None
        self._state = None
        if handle is None:
            return
        if not self._idle.is_set():
            LOG.debug("Waiting for %d borrower(s) before disposing", self._borrowers)
            await self._idle.wait()
        try:
            await handle.dispose()
        except Exception:
            LOG.warning("Failed to dispose handle for %s", handle.profile.name, exc_info=True)
        LOG.debug(
            "Retired connection",
            extra={"profile": handle.profile.name, "generation": handle.generation},
        )

    def _notify(self) -> None:
        for listener in tuple(self._listeners):
            listener(self._state)


def _endpoint(profile: ConnectionProfile) -> tuple[object, ...]:
    """Settings that decide which server and database a handle talks to."""

    return (profile.client, profile.host, profile.port, profile.database, profile.username)


__all__ = [
    "ActiveConnectionManager",
    "MissingCredentialError",
    "NO_CONNECTION",
    "NoActiveConnectionError",
    "ProfileNotFoundError",
    "SessionError",
    "SessionState",
]
