import asyncio
import threading

import pytest

from alerts.notifier import PERMISSION_DENIED, Notifier, PermissionDeniedError
from models.schema import ClinicProgress, SubDivision
from upstream.errors import UpstreamError
from watch.session import WatchSession


class FakeNotifier(Notifier):
    channel = "fake"

    def __init__(self, grant=True, fail_show=False, fail_tone=False):
        super().__init__()
        self.grant = grant
        self.fail_show = fail_show
        self.fail_tone = fail_tone
        self.acquire_calls = 0
        self.shown = []
        self.tones = 0

    def _acquire(self):
        self.acquire_calls += 1
        return self.grant

    def show(self, title, body):
        if self.fail_show:
            raise RuntimeError("display unavailable")
        self.shown.append((title, body))
        return {"ok": True}

    def play_tone(self):
        if self.fail_tone:
            raise OSError("no audio device")
        self.tones += 1


class FakeUpstream:
    def __init__(self):
        self.rows = {}
        self.fail = False

    async def fetch(self, code):
        if self.fail:
            raise UpstreamError(503, "maintenance")
        return self.rows.get(code, [])


def _row(clinic, seq, shift="1"):
    return ClinicProgress.model_validate(
        {"ClinicCode": clinic, "ShiftCode": shift, "ClinicName": f"診{clinic}", "DoctorName": "林醫師", "CurrentVisitSeq": seq}
    )


def _sub(code):
    return SubDivision.model_validate({"DivisionCode": code, "DivisionName": f"科{code}"})


def _session(notifier=None):
    upstream = FakeUpstream()
    session = WatchSession(
        fetch_progress=upstream.fetch,
        notifier=notifier or FakeNotifier(),
        interval_s=5,
        auto_refresh=False,
        notify_before=5,
    )
    return session, upstream


def test_enabling_notifications_sends_notice_once():
    async def run():
        notifier = FakeNotifier()
        session, _ = _session(notifier)
        assert await session.toggle_notifications() is True
        assert len(notifier.shown) == 1
        assert await session.toggle_notifications() is False
        assert await session.toggle_notifications() is True
        assert len(notifier.shown) == 1
        assert notifier.acquire_calls == 1

    asyncio.run(run())


def test_denied_permission_is_never_requested_again():
    notifier = FakeNotifier(grant=False)
    session, _ = _session(notifier)
    with pytest.raises(PermissionDeniedError):
        asyncio.run(session.toggle_notifications())
    with pytest.raises(PermissionDeniedError):
        asyncio.run(session.toggle_notifications())
    assert notifier.permission == PERMISSION_DENIED
    assert notifier.acquire_calls == 1
    assert session.watch.notifications_enabled is False


def test_alert_fires_once_then_again_after_reselect():
    async def run():
        notifier = FakeNotifier()
        session, upstream = _session(notifier)
        await session.toggle_notifications()
        session.set_target(ticket_number="50")
        upstream.rows = {"S1": [_row("X", "47")], "S2": [_row("X", "47")]}

        await session.select(_sub("S1"))
        await session.refresh()
        await session.refresh()
        await session.drain()
        alerts = notifier.shown[1:]
        assert len(alerts) == 1
        assert "診X" in alerts[0][1] and "林醫師" in alerts[0][1]
        assert "47" in alerts[0][1] and "3" in alerts[0][1]
        assert notifier.tones == 1
        assert session.notified_keys == {"X-1-50"}

        await session.select(_sub("S2"))
        await session.drain()
        assert len(notifier.shown[1:]) == 2

    asyncio.run(run())


def test_select_resets_rows_target_and_keys():
    async def run():
        session, upstream = _session()
        upstream.rows = {"S1": [_row("X", "1"), _row("Y", "2")]}
        await session.select(_sub("S1"))
        session.set_target(target_clinic_code="Y")
        session.notified_keys = frozenset({"Y-1-9"})

        await session.select(_sub("S2"))
        assert session.progress == []
        assert session.watch.target_clinic_code == "all"
        assert session.notified_keys == frozenset()

    asyncio.run(run())


def test_delivery_failures_do_not_undo_bookkeeping():
    async def run():
        notifier = FakeNotifier(fail_show=True, fail_tone=True)
        session, upstream = _session(notifier)
        notifier.permission = "granted"
        session.watch.notifications_enabled = True
        session.set_target(ticket_number="20")
        upstream.rows = {"S1": [_row("X", "19")]}

        await session.select(_sub("S1"))
        await session.drain()
        assert session.notified_keys == {"X-1-20"}
        assert session.error is None

    asyncio.run(run())


def test_permission_rechecked_before_delivery():
    async def run():
        notifier = FakeNotifier()
        session, upstream = _session(notifier)
        session.watch.notifications_enabled = True  # enabled but never granted
        session.set_target(ticket_number="20")
        upstream.rows = {"S1": [_row("X", "19")]}

        await session.select(_sub("S1"))
        await session.drain()
        assert notifier.shown == []
        assert session.notified_keys == {"X-1-20"}

    asyncio.run(run())


def test_fetch_error_keeps_last_snapshot():
    async def run():
        session, upstream = _session()
        upstream.rows = {"S1": [_row("X", "5")]}
        await session.select(_sub("S1"))
        first_update = session.last_updated

        upstream.fail = True
        assert await session.refresh() is False
        assert [r.clinic_code for r in session.progress] == ["X"]
        assert session.last_updated == first_update
        assert session.error == "progress_refresh_failed:503:maintenance"

        upstream.fail = False
        await session.refresh()
        assert session.error is None

    asyncio.run(run())


def test_view_orders_target_first_and_classifies_rows():
    async def run():
        session, upstream = _session()
        upstream.rows = {"S1": [_row("X", "48"), _row("Y", "暫停"), _row("Z", "30")]}
        await session.select(_sub("S1"))
        session.set_target(target_clinic_code="Z", ticket_number="50")

        view = session.view()
        assert [r["ClinicCode"] for r in view["progress"]] == ["Z", "X", "Y"]
        assert [r["tier"] for r in view["progress"]] == ["far", "imminent", "far"]
        assert view["progress"][0]["is_target"] is True
        assert view["progress"][1]["distance"] == 2
        assert view["progress"][2]["distance"] is None
        assert view["scheduler"]["state"] == "armed"
        assert view["selected"]["DivisionCode"] == "S1"

    asyncio.run(run())


def test_set_target_validates_notify_before():
    session, _ = _session()
    with pytest.raises(ValueError):
        session.set_target(notify_before=4)
    session.set_target(notify_before=15)
    assert session.watch.notify_before == 15


def test_watch_clinic_sets_target_and_enables_notifications():
    async def run():
        session, _ = _session()
        await session.watch_clinic("X")
        assert session.watch.target_clinic_code == "X"
        assert session.watch.notifications_enabled is True
        await session.watch_clinic("Y")
        assert session.watch.notifications_enabled is True

    asyncio.run(run())


class SlowNotifier(FakeNotifier):
    def __init__(self):
        super().__init__()
        self.started = threading.Event()
        self.release = threading.Event()

    def show(self, title, body):
        self.started.set()
        self.release.wait(5)
        return super().show(title, body)


def test_schedule_change_does_not_cut_alert_batch_short():
    async def run():
        notifier = SlowNotifier()
        notifier.permission = "granted"
        upstream = FakeUpstream()

        async def tick(_seconds):
            await asyncio.sleep(0)

        session = WatchSession(
            fetch_progress=upstream.fetch,
            notifier=notifier,
            interval_s=5,
            auto_refresh=True,
            notify_before=5,
            sleep=tick,
        )
        session.watch.notifications_enabled = True
        session.set_target(ticket_number="50")
        upstream.rows = {"S1": [_row("X", "10"), _row("Y", "10")]}
        await session.select(_sub("S1"))

        # The polling loop picks these up and starts delivering.
        upstream.rows = {"S1": [_row("X", "48"), _row("Y", "47")]}
        assert await asyncio.to_thread(notifier.started.wait, 5)
        await session.set_schedule(interval_s=10)
        notifier.release.set()

        await session.close()
        assert len(notifier.shown) == 2
        assert "診X" in notifier.shown[0][1] and "診Y" in notifier.shown[1][1]
        assert session.notified_keys == {"X-1-50", "Y-1-50"}

    asyncio.run(run())
