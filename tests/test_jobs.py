import asyncio
from unittest.mock import AsyncMock

import pytest

from groupbot.jobs import PeriodicJob


def _raise(exc: Exception):
    def func() -> None:
        raise exc

    return func


@pytest.mark.asyncio
async def test_run_once_contains_failures() -> None:
    job = PeriodicJob("broken", 1.0, _raise(OSError("disk full")))

    assert await job.run_once() is False
    assert job.failures == 1
    assert job.runs == 1


@pytest.mark.asyncio
async def test_run_once_awaits_coroutines() -> None:
    func = AsyncMock()
    job = PeriodicJob("async", 1.0, func)

    assert await job.run_once() is True
    func.assert_awaited_once()


@pytest.mark.asyncio
async def test_job_keeps_running_after_failure() -> None:
    calls = []

    def flaky() -> None:
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first run fails")

    job = PeriodicJob("flaky", 0.01, flaky)
    job.start()
    for _ in range(100):
        if len(calls) >= 3:
            break
        await asyncio.sleep(0.01)
    await job.stop()

    assert len(calls) >= 3
    assert job.failures == 1
    assert not job.is_running


@pytest.mark.asyncio
async def test_failing_job_does_not_affect_other_job() -> None:
    calls = []
    bad = PeriodicJob("bad", 0.01, _raise(ValueError("nope")))
    ok = PeriodicJob("ok", 0.01, lambda: calls.append(1))
    bad.start()
    ok.start()
    for _ in range(100):
        if len(calls) >= 2:
            break
        await asyncio.sleep(0.01)
    await bad.stop()
    await ok.stop()

    assert len(calls) >= 2
    assert bad.failures >= 1


def test_interval_must_be_positive() -> None:
    with pytest.raises(ValueError):
        PeriodicJob("zero", 0, lambda: None)
