from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import settings
from ops.metrics import Timer

log = logging.getLogger("queuewatch.telegram")

API_BASE = "https://api.telegram.org"
SEND_TIMEOUT_S = 20.0


def _chat_hint(chat_id: str) -> str:
    chat_id = (chat_id or "").strip()
    return chat_id if len(chat_id) <= 4 else f"...{chat_id[-4:]}"


def alert_text(title: str, body: str) -> str:
    """Bold title line, then the alert body. Both are HTML-escaped for parse_mode=HTML."""
    return f"<b>{_escape(title)}</b>\n{_escape(body)}"


def _escape(s: str) -> str:
    return (s or "").replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


class TelegramClient:
    """Bot API delivery of proximity alerts to one chat."""

    def __init__(self, token: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.token = token or settings.TELEGRAM_BOT_TOKEN
        if not self.token:
            raise RuntimeError("TELEGRAM_BOT_TOKEN not configured")
        self._owns_client = client is None
        self.client = client or httpx.Client()

    def send_alert(self, chat_id: str, title: str, body: str) -> Dict[str, Any]:
        payload = {
            "chat_id": chat_id,
            "text": alert_text(title, body),
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        t = Timer()
        try:
            r = self.client.post(f"{API_BASE}/bot{self.token}/sendMessage", json=payload, timeout=SEND_TIMEOUT_S)
        except httpx.HTTPError as e:
            log.error(
                "telegram_send_exception",
                extra={"extra": {"event": "telegram_send_exception", "chat": _chat_hint(chat_id), "error_type": type(e).__name__, "latency_ms": t.ms()}},
            )
            return {"ok": False, "error_type": type(e).__name__, "message": str(e)}

        try:
            data = r.json()
        except ValueError:
            data = {"ok": False, "status_code": r.status_code, "description": (r.text or "")[:500]}

        ok = bool(data.get("ok"))
        log.info(
            "telegram_send_result",
            extra={"extra": {"event": "telegram_send_result", "chat": _chat_hint(chat_id), "ok": ok, "status_code": r.status_code, "latency_ms": t.ms()}},
        )
        if not ok:
            log.warning(
                "telegram_send_failed",
                extra={"extra": {"event": "telegram_send_failed", "status_code": r.status_code, "description": data.get("description")}},
            )
        return data

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
