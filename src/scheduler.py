"""Cron scheduling of top-up cycles.

Overlapping cycles are not prevented: if a cycle outlives the interval the
next trigger is simply the next cron time after it returns. Run one instance
per set of wallets.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Awaitable, Callable

from croniter import croniter
from loguru import logger


def make_croniter(expression: str, start: datetime) -> croniter:
    """5-field cron, or 6-field with seconds first."""
    fields = expression.split()
    if len(fields) not in (5, 6):
        raise ValueError(f"Cron expression must have 5 or 6 fields, got {len(fields)}")
    return croniter(expression, start, second_at_beginning=len(fields) == 6)


def next_run(expression: str, after: datetime) -> datetime:
    return make_croniter(expression, after).get_next(datetime)


async def _run_guarded(cycle: Callable[[], Awaitable[object]]) -> None:
    # Cycles report their own TopUpErrors; anything else is a bug, keep the service up
    try:
        await cycle()
    except Exception as e:
        logger.error(f"[SCHED] Cycle crashed: {type(e).__name__}: {e}")


async def run_schedule(
    cycle: Callable[[], Awaitable[object]],
    expression: str,
    *,
    run_immediately: bool = True,
    max_cycles: int | None = None,
    clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """Run cycle now, then at every cron time. Returns the number of cycles run.

    max_cycles is for tests; the service runs until cancelled.
    """
    runs = 0
    if run_immediately:
        logger.info("[SCHED] Running initial cycle")
        await _run_guarded(cycle)
        runs += 1

    while max_cycles is None or runs < max_cycles:
        now = clock()
        target = next_run(expression, now)
        delay = max((target - now).total_seconds(), 0.0)
        logger.info(f"[SCHED] Next cycle at {target.isoformat()} (in {delay:.0f}s)")
        await sleep(delay)
        await _run_guarded(cycle)
        runs += 1
    return runs
