"""Async debounce of chart re-renders, one pending render per chart."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

LOG = logging.getLogger(__name__)

DEFAULT_DELAY = 0.2


class RefreshScheduler:
    """Coalesces rapid edits to a chart into a single render.

    A submission cancels the slot's render while it is still waiting out the
    delay. Once a render has started it runs to completion, and renders of
    the same slot run one at a time.
    """

    def __init__(self, delay: float = DEFAULT_DELAY) -> None:
        self._delay = delay
        self._waiting: dict[int, asyncio.Task[Any]] = {}
        self._locks: dict[int, asyncio.Lock] = {}

    def submit(self, slot: int, coro_factory: Callable[[], Awaitable[Any]]) -> None:
        """Schedule a render for ``slot``, cancelling a pending one."""

        self.cancel(slot)
        loop = asyncio.get_running_loop()
        self._waiting[slot] = loop.create_task(self._runner(slot, coro_factory))

    def cancel(self, slot: int) -> None:
        """Cancel a render that has not started yet."""

        task = self._waiting.pop(slot, None)
        if task is not None:
            task.cancel()

    def cancel_all(self) -> None:
        for slot in tuple(self._waiting):
            self.cancel(slot)

    def pending(self, slot: int) -> bool:
        return slot in self._waiting

    async def _runner(self, slot: int, coro_factory: Callable[[], Awaitable[Any]]) -> None:
        try:
            await asyncio.sleep(self._delay)
        except asyncio.CancelledError:
            return
        if self._waiting.get(slot) is asyncio.current_task():
            del self._waiting[slot]
        lock = self._locks.setdefault(slot, asyncio.Lock())
        async with lock:
            try:
                await coro_factory()
            except Exception:
                LOG.exception("Chart #%s refresh failed", slot)


__all__ = ["DEFAULT_DELAY", "RefreshScheduler"]
