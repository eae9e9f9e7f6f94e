"""Tests for the debounced chart refresh scheduler."""

from __future__ import annotations

import asyncio

import pytest

from spyglass.charts import RefreshScheduler


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.mark.anyio
async def test_rapid_submissions_coalesce() -> None:
    scheduler = RefreshScheduler(delay=0.01)
    runs: list[str] = []

    for label in ("a", "ab", "abc"):

        async def _render(label: str = label) -> None:
            runs.append(label)

        scheduler.submit(0, _render)

    assert scheduler.pending(0) is True
    await asyncio.sleep(0.05)

    assert runs == ["abc"]
    assert scheduler.pending(0) is False


@pytest.mark.anyio
async def test_slots_do_not_cancel_each_other() -> None:
    scheduler = RefreshScheduler(delay=0.01)
    runs: list[int] = []

    for slot in (0, 1):

        async def _render(slot: int = slot) -> None:
            runs.append(slot)

        scheduler.submit(slot, _render)

    await asyncio.sleep(0.05)

    assert sorted(runs) == [0, 1]


@pytest.mark.anyio
async def test_started_render_is_not_cancelled() -> None:
    scheduler = RefreshScheduler(delay=0)
    started = asyncio.Event()
    release = asyncio.Event()
    finished: list[str] = []

    async def _slow() -> None:
        started.set()
        await release.wait()
        finished.append("slow")

    async def _fast() -> None:
        finished.append("fast")

    scheduler.submit(0, _slow)
    await started.wait()
    scheduler.submit(0, _fast)
    await asyncio.sleep(0.01)
    release.set()
    await asyncio.sleep(0.01)

    assert finished == ["slow", "fast"]


@pytest.mark.anyio
async def test_cancel_all_drops_waiting_renders() -> None:
    scheduler = RefreshScheduler(delay=0.01)
    runs: list[int] = []

    async def _render() -> None:
        runs.append(1)

    scheduler.submit(0, _render)
    scheduler.submit(1, _render)
    scheduler.cancel_all()
    await asyncio.sleep(0.05)

    assert runs == []
    assert scheduler.pending(0) is False


@pytest.mark.anyio
async def test_failing_render_is_logged(caplog: pytest.LogCaptureFixture) -> None:
    scheduler = RefreshScheduler(delay=0)

    async def _broken() -> None:
        raise RuntimeError("boom")

    with caplog.at_level("ERROR"):
        scheduler.submit(3, _broken)
        await asyncio.sleep(0.01)

    assert "Chart #3 refresh failed" in caplog.text
