"""
Bounded polling shared by the container (Instagram, Threads) and media
processing (Twitter) flows.

Poll loops are the only timeout mechanism in a publish run: they never raise
on exhaustion, they report it.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple


@dataclass
class PollResult:
    completed: bool
    value: Any = None
    attempts: int = 0


# check() returns (done, value, next_delay). next_delay None -> default interval.
CheckFn = Callable[[], Awaitable[Tuple[bool, Any, Optional[float]]]]


async def poll_until(
    check: CheckFn,
    max_attempts: int,
    interval: float,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    max_delay: Optional[float] = None,
) -> PollResult:
    """
    Sleep then check, up to max_attempts times.

    `check` may raise to abort (e.g. a terminal error state); that propagates.
    The last value seen is returned either way so callers can report it.
    """
    delay = interval
    value = None
    for attempt in range(1, max_attempts + 1):
        await sleep(delay)
        done, value, next_delay = await check()
        if done:
            return PollResult(completed=True, value=value, attempts=attempt)
        delay = interval if next_delay is None else next_delay
        if max_delay is not None:
            delay = min(delay, max_delay)
    return PollResult(completed=False, value=value, attempts=max_attempts)
