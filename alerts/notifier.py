from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Optional, TextIO

from config.settings import settings
from messaging.telegram import TelegramClient

log = logging.getLogger("queuewatch.notifier")

PERMISSION_DEFAULT = "default"
PERMISSION_GRANTED = "granted"
PERMISSION_DENIED = "denied"


class PermissionDeniedError(Exception):
    def __init__(self, channel: str, instruction: str = ""):
        super().__init__("notification_permission_denied")
        self.channel = channel
        self.instruction = instruction or "Notification permission was denied; enable it in the channel settings and try again."


class Notifier:
    """
    Alert delivery capability: permission state plus a visual message and a short tone.

    Permission moves default -> granted | denied exactly once; a denied notifier is never
    asked again, the user has to fix the channel settings and restart.
    """

    channel = "base"
    denied_instruction = ""

    def __init__(self) -> None:
        self.permission = PERMISSION_DEFAULT

    def request_permission(self) -> bool:
        """Returns True when permission was granted by this call, False if it already was."""
        if self.permission == PERMISSION_DENIED:
            raise PermissionDeniedError(self.channel, self.denied_instruction)
        if self.permission == PERMISSION_GRANTED:
            return False
        self.permission = PERMISSION_GRANTED if self._acquire() else PERMISSION_DENIED
        log.info(
            "notification_permission_result",
            extra={"extra": {"event": "notification_permission_result", "channel": self.channel, "permission": self.permission}},
        )
        if self.permission == PERMISSION_DENIED:
            raise PermissionDeniedError(self.channel, self.denied_instruction)
        return True

    def _acquire(self) -> bool:
        return True

    def show(self, title: str, body: str) -> Dict[str, Any]:
        raise NotImplementedError

    def play_tone(self) -> None:
        pass

    def close(self) -> None:
        pass


class LogNotifier(Notifier):
    channel = "log"

    def show(self, title: str, body: str) -> Dict[str, Any]:
        log.warning("proximity_alert", extra={"extra": {"event": "proximity_alert", "title": title, "body": body}})
        return {"ok": True}


class ConsoleNotifier(Notifier):
    """Writes alerts to a terminal; the tone is the terminal bell."""

    channel = "console"

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        super().__init__()
        self.stream = stream or sys.stderr

    def show(self, title: str, body: str) -> Dict[str, Any]:
        self.stream.write(f"[{title}] {body}\n")
        self.stream.flush()
        return {"ok": True}

    def play_tone(self) -> None:
        self.stream.write("\a")
        self.stream.flush()


class TelegramNotifier(Notifier):
    channel = "telegram"
    denied_instruction = "Set TELEGRAM_BOT_TOKEN and TELEGRAM_CHAT_ID, then restart the service."

    def __init__(self, client: Optional[TelegramClient] = None, chat_id: Optional[str] = None) -> None:
        super().__init__()
        self._client = client
        self.chat_id = chat_id if chat_id is not None else settings.TELEGRAM_CHAT_ID

    def _acquire(self) -> bool:
        if not self.chat_id:
            return False
        if self._client is None:
            if not settings.TELEGRAM_BOT_TOKEN:
                return False
            self._client = TelegramClient()
        return True

    def show(self, title: str, body: str) -> Dict[str, Any]:
        if self._client is None:
            return {"ok": False, "error_type": "not_configured"}
        return self._client.send_alert(self.chat_id, title, body)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()

    # Telegram plays the recipient's own notification sound; nothing to do here.


def build_notifier(channel: Optional[str] = None) -> Notifier:
    channel = (channel or settings.NOTIFIER_CHANNEL or "console").strip().lower()
    if channel == "telegram":
        return TelegramNotifier()
    if channel == "log":
        return LogNotifier()
    if channel == "console":
        return ConsoleNotifier()
    raise ValueError(f"unknown_notifier_channel:{channel}")
