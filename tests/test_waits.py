import asyncio

import pytest

from qb_harvest.waits import poll


def counting_check(values):
    calls = []

    async def check():
        calls.append(1)
        return values[min(len(calls), len(values)) - 1]

    return check, calls


def test_poll_stops_at_first_accepted_value():
    check, calls = counting_check(["", "", "ready", "later"])
    slept = []

    async def sleep(seconds):
        slept.append(seconds)

    result = asyncio.run(poll(check, attempts=10, interval=0.5, sleep=sleep))

    assert result.ok and result.value == "ready"
    assert result.attempts == 3
    assert len(calls) == 3
    assert slept == [0.5, 0.5]


def test_poll_reports_exhausted_attempts_without_raising():
    check, calls = counting_check([False])

    async def sleep(seconds):
        return None

    result = asyncio.run(poll(check, attempts=4, interval=1, sleep=sleep))

    assert not result
    assert result.attempts == 4
    assert len(calls) == 4


def test_poll_needs_a_bound():
    check, _ = counting_check([True])
    with pytest.raises(ValueError):
        asyncio.run(poll(check, interval=1))


def test_zero_timeout_checks_once():
    check, calls = counting_check([False])
    result = asyncio.run(poll(check, timeout=0, interval=0.5))

    assert not result
    assert len(calls) == 1


def test_deadline_stops_sleeping_at_the_timeout():
    now = [0.0]
    slept = []

    async def sleep(seconds):
        slept.append(seconds)
        now[0] += seconds

    check, calls = counting_check([False])
    result = asyncio.run(
        poll(check, timeout=2.0, interval=0.75, sleep=sleep, clock=lambda: now[0])
    )

    assert not result
    assert len(calls) == 3
    assert slept == [0.75, 0.75, 0.5]


def test_deadline_cancels_a_slow_check():
    async def slow_check():
        await asyncio.sleep(5)
        return True

    async def run():
        loop = asyncio.get_running_loop()
        started = loop.time()
        result = await poll(slow_check, timeout=0.3, interval=0.1)
        return result, loop.time() - started

    result, elapsed = asyncio.run(run())

    assert not result
    assert result.attempts == 1
    assert elapsed < 1.0
