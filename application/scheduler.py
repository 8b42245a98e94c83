from __future__ import annotations

import asyncio
import contextlib
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from application.settlement import SettlementReport, run_daily_settlement
from domain.loans import DEFAULT_CUTOFF_HOUR_UTC, ONE_DAY, ensure_utc, next_cutoff
from domain.repositories import LedgerRepository
from infrastructure.logging_setup import get_logger


log = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DailySettlementScheduler:
    """
    Runs the loan settlement sweep once a day at a fixed UTC hour.

    The first run waits until the next cutoff; later runs follow every 24
    hours. The sweep itself runs in a worker thread so blocking SQLite
    calls do not stall the event loop. Clock and sleep are injectable so the
    timing can be tested without waiting.
    """

    def __init__(
        self,
        ledger: LedgerRepository,
        hour: int = DEFAULT_CUTOFF_HOUR_UTC,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ledger = ledger
        self._hour = hour
        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        return next_cutoff(now or self._clock(), self._hour)

    def seconds_until_next_run(self, now: Optional[datetime] = None) -> float:
        now = ensure_utc(now or self._clock())
        return (self.next_run(now) - now).total_seconds()

    def run_once(self, now: Optional[datetime] = None) -> SettlementReport:
        return run_daily_settlement(self._ledger, now or self._clock())

    async def run_forever(self, max_runs: Optional[int] = None) -> None:
        target = self.next_run()
        runs = 0
        while max_runs is None or runs < max_runs:
            delay = max(0.0, (target - ensure_utc(self._clock())).total_seconds())
            log.info(
                "settlement_scheduled",
                next_run=target.isoformat(),
                minutes=round(delay / 60),
            )
            await self._sleep(delay)

            # The loop may wake a hair early; never settle before the cutoff.
            now = max(ensure_utc(self._clock()), target)
            try:
                await asyncio.to_thread(self.run_once, now)
            except Exception:
                log.exception("settlement_sweep_crashed", run_at=now.isoformat())

            runs += 1
            target += ONE_DAY
            while target <= ensure_utc(self._clock()):
                target += ONE_DAY

    def start(self) -> asyncio.Task:
        if not self.running:
            self._task = asyncio.create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
