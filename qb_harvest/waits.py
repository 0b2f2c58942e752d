"""Poll-with-deadline primitive used by every bounded wait in the navigator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


@dataclass
class PollResult(Generic[T]):
    """Outcome of a poll: whether the check succeeded and its last value."""

    ok: bool
    value: Optional[T]
    attempts: int

    def __bool__(self) -> bool:
        return self.ok


async def poll(
    check: Callable[[], Awaitable[T]],
    *,
    interval: float,
    timeout: Optional[float] = None,
    attempts: Optional[int] = None,
    accept: Callable[[T], bool] = bool,
    sleep: Sleeper = asyncio.sleep,
    clock: Optional[Clock] = None,
) -> PollResult[T]:
    """Call ``check`` until ``accept`` passes, the deadline passes or ``attempts`` run out.

    ``timeout`` is a wall-clock ceiling covering the checks themselves as well
    as the sleeps between them: a check still running at the deadline is
    cancelled. A ``timeout`` of zero or less means a single unbounded check.
    At least one of ``timeout`` and ``attempts`` must be given. Timeouts are
    reported through the result, never raised.
    """
    if timeout is None and attempts is None:
        raise ValueError("poll needs a timeout or an attempt limit")
    clock = clock or asyncio.get_running_loop().time
    deadline = clock() + timeout if timeout is not None and timeout > 0 else None
    single = timeout is not None and timeout <= 0

    value: Optional[T] = None
    attempt = 0
    while True:
        attempt += 1
        if deadline is None:
            value = await check()
        else:
            remaining = deadline - clock()
            if remaining <= 0:
                return PollResult(ok=False, value=value, attempts=attempt - 1)
            try:
                value = await asyncio.wait_for(check(), remaining)
            except asyncio.TimeoutError:
                return PollResult(ok=False, value=value, attempts=attempt)
        if accept(value):
            return PollResult(ok=True, value=value, attempts=attempt)

        if single or (attempts is not None and attempt >= max(1, attempts)):
            return PollResult(ok=False, value=value, attempts=attempt)
        pause = interval
        if deadline is not None:
            pause = min(pause, deadline - clock())
            if pause <= 0:
                return PollResult(ok=False, value=value, attempts=attempt)
        if pause > 0:
            await sleep(pause)
