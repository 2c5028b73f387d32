from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from config.settings import ALLOWED_REFRESH_INTERVALS
from models.schema import ClinicProgress

log = logging.getLogger("queuewatch.scheduler")

FetchFunc = Callable[[str], Awaitable[List[ClinicProgress]]]
SnapshotFunc = Callable[[List[ClinicProgress]], Awaitable[None]]
ErrorFunc = Callable[[Exception], None]
SleepFunc = Callable[[float], Awaitable[None]]


class SchedulerState(str, Enum):
    IDLE = "idle"        # nothing selected
    ARMED = "armed"      # selected, auto-refresh off
    POLLING = "polling"  # selected, auto-refresh on


class PollingScheduler:
    """
    Periodic refresh of one sub-queue plus an advisory one-second countdown.

    Two independent asyncio tasks run while polling: the fetch loop and the countdown
    loop. Any change to the selection, the interval or the auto-refresh flag cancels
    both before new ones are created, so loops never stack.
    """

    def __init__(
        self,
        fetch: FetchFunc,
        on_snapshot: SnapshotFunc,
        on_error: ErrorFunc,
        interval_s: int = 5,
        auto_refresh: bool = True,
        sleep: SleepFunc = asyncio.sleep,
    ):
        if interval_s not in ALLOWED_REFRESH_INTERVALS:
            raise ValueError(f"invalid_interval:{interval_s}")
        self._fetch = fetch
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._sleep = sleep
        self.interval_s = interval_s
        self.auto_refresh = auto_refresh
        self.countdown = interval_s
        self.division_code: Optional[str] = None
        self._tasks: List[asyncio.Task] = []
        # Request sequencing: responses older than the last applied one are dropped.
        self._issued = 0
        self._applied = 0
        self._epoch = 0

    @property
    def state(self) -> SchedulerState:
        if self.division_code is None:
            return SchedulerState.IDLE
        return SchedulerState.POLLING if self.auto_refresh else SchedulerState.ARMED

    async def select(self, division_code: str) -> None:
        self.division_code = division_code
        self._epoch += 1
        self._restart()
        await self.refresh()

    async def set_auto_refresh(self, enabled: bool) -> None:
        self.auto_refresh = enabled
        self._restart()

    async def set_interval(self, interval_s: int) -> None:
        if interval_s not in ALLOWED_REFRESH_INTERVALS:
            raise ValueError(f"invalid_interval:{interval_s}")
        self.interval_s = interval_s
        self._restart()

    async def stop(self) -> None:
        self.division_code = None
        self._epoch += 1
        self._cancel_all()

    async def refresh(self) -> bool:
        """Out-of-band fetch of the selected sub-queue. Returns True if the result was applied."""
        code = self.division_code
        if code is None:
            return False
        self._issued += 1
        seq = self._issued
        epoch = self._epoch
        try:
            rows = await self._fetch(code)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._is_stale(seq, epoch):
                return False
            log.warning(
                "progress_fetch_failed",
                extra={"extra": {"event": "progress_fetch_failed", "division_code": code, "error_type": type(e).__name__, "seq": seq}},
            )
            self._on_error(e)
            return False

        if self._is_stale(seq, epoch):
            log.info("stale_response_dropped", extra={"extra": {"event": "stale_response_dropped", "division_code": code, "seq": seq}})
            return False
        self._applied = seq
        await self._on_snapshot(rows)
        return True

    def _is_stale(self, seq: int, epoch: int) -> bool:
        return seq <= self._applied or epoch != self._epoch

    def _cancel_all(self) -> None:
        for task in self._tasks:
            task.cancel()
        self._tasks = []

    def _restart(self) -> None:
        self._cancel_all()
        self.countdown = self.interval_s
        if self.state is not SchedulerState.POLLING:
            return
        self._tasks = [
            asyncio.create_task(self._fetch_loop(), name="progress-fetch-loop"),
            asyncio.create_task(self._countdown_loop(), name="progress-countdown-loop"),
        ]
        log.info(
            "polling_started",
            extra={"extra": {"event": "polling_started", "division_code": self.division_code, "interval_s": self.interval_s}},
        )

    async def _fetch_loop(self) -> None:
        while True:
            await self._sleep(self.interval_s)
            self.tick_fetch()
            await self.refresh()

    async def _countdown_loop(self) -> None:
        while True:
            await self._sleep(1)
            self.tick_countdown()

    def tick_fetch(self) -> None:
        self.countdown = self.interval_s

    def tick_countdown(self) -> None:
        # 5,4,3,2,1,5,... never shows zero
        self.countdown = self.countdown - 1 if self.countdown > 1 else self.interval_s
