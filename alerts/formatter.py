from __future__ import annotations

from typing import Tuple

from config.settings import settings
from watch.engine import ProximityAlert


def _clinic_label(alert: ProximityAlert) -> str:
    name = (alert.clinic_name or alert.clinic_code).strip()
    doctor = (alert.doctor_name or "").strip()
    return f"{name} ({doctor})" if doctor else name


def format_proximity_alert(alert: ProximityAlert) -> Tuple[str, str]:
    """(title, body) for a proximity alert."""
    body = (
        f"{_clinic_label(alert)} 目前號碼 {alert.current_visit_seq}，"
        f"距離您的號碼 {alert.target_number} 還有 {alert.distance} 號！"
    )
    return settings.ALERT_TITLE, body


def format_enabled_notice() -> Tuple[str, str]:
    return "通知功能已開啟", "當看診進度接近您的號碼時，系統將會發送提醒。"
