from __future__ import annotations

import logging
from typing import Any, Dict

from alerts.formatter import format_enabled_notice, format_proximity_alert
from alerts.notifier import PERMISSION_GRANTED, Notifier
from ops.metrics import Timer
from watch.engine import ProximityAlert

log = logging.getLogger("queuewatch.alerts")


class AlertDispatcher:
    """
    Best-effort delivery. Dedup bookkeeping has already happened by the time an alert
    gets here; nothing raised by the notifier is allowed to escape.
    """

    def __init__(self, notifier: Notifier):
        self.notifier = notifier

    def deliver(self, alert: ProximityAlert) -> Dict[str, Any]:
        if self.notifier.permission != PERMISSION_GRANTED:
            log.info(
                "alert_skipped_no_permission",
                extra={"extra": {"event": "alert_skipped_no_permission", "key": alert.key, "permission": self.notifier.permission}},
            )
            return {"ok": False, "skipped": "permission_not_granted"}

        title, body = format_proximity_alert(alert)
        log.info(
            "alert_send_attempt",
            extra={
                "extra": {
                    "event": "alert_send_attempt",
                    "key": alert.key,
                    "channel": self.notifier.channel,
                    "clinic_code": alert.clinic_code,
                    "distance": alert.distance,
                }
            },
        )
        resp = self._show(title, body, key=alert.key)
        self._tone(key=alert.key)
        return resp

    def send_enabled_notice(self) -> Dict[str, Any]:
        title, body = format_enabled_notice()
        return self._show(title, body, key="enabled_notice")

    def _show(self, title: str, body: str, key: str) -> Dict[str, Any]:
        t = Timer()
        try:
            resp = self.notifier.show(title, body)
        except Exception as e:
            log.error(
                "alert_send_exception",
                extra={"extra": {"event": "alert_send_exception", "key": key, "error_type": type(e).__name__, "message": str(e)}},
                exc_info=True,
            )
            return {"ok": False, "error_type": type(e).__name__, "message": str(e)}
        log.info(
            "alert_send_result",
            extra={"extra": {"event": "alert_send_result", "key": key, "ok": bool(resp.get("ok")), "latency_ms": t.ms()}},
        )
        return resp

    def _tone(self, key: str) -> None:
        try:
            self.notifier.play_tone()
        except Exception as e:
            log.warning(
                "alert_tone_failed",
                extra={"extra": {"event": "alert_tone_failed", "key": key, "error_type": type(e).__name__}},
            )
