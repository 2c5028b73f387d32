from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set

from alerts.dispatch import AlertDispatcher
from alerts.notifier import Notifier, build_notifier
from config.settings import NOTIFY_BEFORE_CHOICES, settings
from models.schema import ALL_CLINICS, ClinicProgress, SubDivision, WatchState
from upstream.errors import MalformedResponseError, UpstreamError
from upstream.gateway import get_gateway
from watch.engine import ProximityAlert, evaluate
from watch.scheduler import FetchFunc, PollingScheduler, SleepFunc
from watch.selection import prioritize_target
from watch.urgency import classify_distance, ticket_distance

log = logging.getLogger("queuewatch.watch")


def _error_message(exc: Exception) -> str:
    if isinstance(exc, UpstreamError):
        return f"progress_refresh_failed:{exc.status}:{exc.details}" if exc.details else f"progress_refresh_failed:{exc.status}"
    if isinstance(exc, MalformedResponseError):
        return "progress_refresh_failed:malformed_response"
    return f"progress_refresh_failed:{type(exc).__name__}"


class WatchSession:
    """
    The one watch context of this process: selected sub-queue, the user's watch state,
    the latest snapshot and the alert keys already fired for this selection.
    """

    def __init__(
        self,
        fetch_progress: FetchFunc,
        notifier: Notifier,
        interval_s: Optional[int] = None,
        auto_refresh: Optional[bool] = None,
        notify_before: Optional[int] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.notifier = notifier
        self.dispatcher = AlertDispatcher(notifier)
        self.watch = WatchState(
            notify_before=notify_before if notify_before is not None else settings.DEFAULT_NOTIFY_BEFORE
        )
        self.selected: Optional[SubDivision] = None
        self.notified_keys: FrozenSet[str] = frozenset()
        self.last_updated: Optional[datetime] = None
        self.error: Optional[str] = None
        self._rows: List[ClinicProgress] = []
        # In-flight alert batches; owned here, never by the scheduler tasks.
        self._deliveries: Set[asyncio.Task] = set()
        self.scheduler = PollingScheduler(
            fetch_progress,
            on_snapshot=self._apply_snapshot,
            on_error=self._record_error,
            interval_s=interval_s if interval_s is not None else settings.DEFAULT_REFRESH_INTERVAL_S,
            auto_refresh=auto_refresh if auto_refresh is not None else settings.DEFAULT_AUTO_REFRESH,
            sleep=sleep,
        )

    @property
    def progress(self) -> List[ClinicProgress]:
        return prioritize_target(self._rows, self.watch.target_clinic_code)

    async def select(self, sub_division: SubDivision) -> None:
        self.selected = sub_division
        self._rows = []
        self.error = None
        self.watch.target_clinic_code = ALL_CLINICS
        self.notified_keys = frozenset()
        log.info(
            "sub_division_selected",
            extra={"extra": {"event": "sub_division_selected", "division_code": sub_division.code}},
        )
        await self.scheduler.select(sub_division.code)

    async def refresh(self) -> bool:
        return await self.scheduler.refresh()

    async def set_schedule(self, auto_refresh: Optional[bool] = None, interval_s: Optional[int] = None) -> None:
        if interval_s is not None and interval_s != self.scheduler.interval_s:
            await self.scheduler.set_interval(interval_s)
        if auto_refresh is not None and auto_refresh != self.scheduler.auto_refresh:
            await self.scheduler.set_auto_refresh(auto_refresh)

    def set_target(
        self,
        target_clinic_code: Optional[str] = None,
        ticket_number: Optional[str] = None,
        notify_before: Optional[int] = None,
    ) -> None:
        if notify_before is not None:
            if notify_before not in NOTIFY_BEFORE_CHOICES:
                raise ValueError(f"invalid_notify_before:{notify_before}")
            self.watch.notify_before = notify_before
        if target_clinic_code is not None:
            self.watch.target_clinic_code = target_clinic_code or ALL_CLINICS
        if ticket_number is not None:
            self.watch.user_ticket_number = ticket_number.strip()

    async def toggle_notifications(self) -> bool:
        """Flip notifications; enabling first acquires permission (PermissionDeniedError propagates)."""
        newly_granted = False
        if not self.watch.notifications_enabled:
            newly_granted = self.notifier.request_permission()
        self.watch.notifications_enabled = not self.watch.notifications_enabled
        enabled = self.watch.notifications_enabled
        if newly_granted:
            await asyncio.to_thread(self.dispatcher.send_enabled_notice)
        return enabled

    async def watch_clinic(self, clinic_code: str) -> None:
        self.set_target(target_clinic_code=clinic_code)
        if not self.watch.notifications_enabled:
            await self.toggle_notifications()

    async def drain(self) -> None:
        """Wait for alert batches already handed to the notifier."""
        if self._deliveries:
            await asyncio.gather(*list(self._deliveries))

    async def close(self) -> None:
        await self.scheduler.stop()
        await self.drain()
        self.notifier.close()

    async def _apply_snapshot(self, rows: List[ClinicProgress]) -> None:
        self._rows = list(rows)
        self.last_updated = datetime.now(timezone.utc)
        self.error = None

        result = evaluate(self.progress, self.watch, self.notified_keys)
        self.notified_keys = result.notified_keys
        if result.alerts:
            task = asyncio.create_task(self._deliver_batch(result.alerts), name="alert-delivery")
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)

    async def _deliver_batch(self, alerts: Sequence[ProximityAlert]) -> None:
        await asyncio.to_thread(self._deliver_all, alerts)

    def _deliver_all(self, alerts: Sequence[ProximityAlert]) -> None:
        # In order; the dispatcher never raises.
        for alert in alerts:
            self.dispatcher.deliver(alert)

    def _record_error(self, exc: Exception) -> None:
        # Previous rows stay visible; the schedule keeps running.
        self.error = _error_message(exc)

    def view(self) -> Dict[str, Any]:
        rows = []
        for row in self.progress:
            distance = ticket_distance(self.watch.user_ticket_number, row.current_visit_seq)
            rows.append(
                {
                    **row.to_upstream(),
                    "distance": distance,
                    "tier": classify_distance(distance).value,
                    "is_calling": row.is_calling,
                    "is_target": row.clinic_code == self.watch.target_clinic_code,
                }
            )
        return {
            "selected": self.selected.model_dump(by_alias=True) if self.selected else None,
            "scheduler": {
                "state": self.scheduler.state.value,
                "auto_refresh": self.scheduler.auto_refresh,
                "interval_s": self.scheduler.interval_s,
                "countdown": self.scheduler.countdown,
            },
            "watch": self.watch.model_dump(),
            "permission": self.notifier.permission,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "error": self.error,
            "progress": rows,
        }


async def _fetch_via_gateway(division_code: str) -> List[ClinicProgress]:
    return await asyncio.to_thread(get_gateway().fetch_progress, division_code)


@lru_cache
def get_watch_session() -> WatchSession:
    return WatchSession(fetch_progress=_fetch_via_gateway, notifier=build_notifier())
