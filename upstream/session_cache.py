from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from config.settings import settings
from ops.metrics import Timer
from upstream.errors import SessionUnavailableError

log = logging.getLogger("queuewatch.session")


def _cookie_pairs(set_cookie_headers: List[str]) -> List[str]:
    # "name=value; Path=/; HttpOnly" -> "name=value"
    out = []
    for raw in set_cookie_headers:
        pair = (raw or "").split(";", 1)[0].strip()
        if pair and "=" in pair:
            out.append(pair)
    return out


class SessionCache:
    """
    Process-wide upstream session cookies.

    - Populated lazily by fetching the public landing page and keeping its Set-Cookie values.
    - Population is single-writer: concurrent callers that find the cache empty harvest once.
    - Harvest failure yields "" so the downstream call proceeds (and fails predictably upstream).
    """

    def __init__(self, client: Optional[httpx.Client] = None, landing_url: Optional[str] = None):
        self._owns_client = client is None
        self.client = client or httpx.Client(follow_redirects=True)
        self.landing_url = landing_url or settings.UPSTREAM_LANDING_URL
        self._lock = threading.Lock()
        self._cookies: List[str] = []
        self._harvested_at: Optional[str] = None

    def _header(self) -> str:
        return "; ".join(self._cookies)

    def get_session_header(self) -> str:
        cookies = self._cookies
        if cookies:
            return "; ".join(cookies)
        with self._lock:
            if self._cookies:
                return self._header()
            try:
                self._cookies = self._harvest()
                self._harvested_at = datetime.now(timezone.utc).isoformat()
            except SessionUnavailableError as e:
                log.warning(
                    "session_harvest_failed",
                    extra={"extra": {"event": "session_harvest_failed", "message": str(e)}},
                )
                return ""
            return self._header()

    def _harvest(self) -> List[str]:
        t = Timer()
        try:
            r = self.client.get(
                self.landing_url,
                headers={"User-Agent": settings.UPSTREAM_USER_AGENT},
                timeout=settings.UPSTREAM_TIMEOUT_S,
            )
        except httpx.HTTPError as e:
            raise SessionUnavailableError(f"{type(e).__name__}: {e}") from e

        cookies = _cookie_pairs(r.headers.get_list("set-cookie"))
        # The header value is the only copy; the client's own jar must not replay stale cookies.
        self.client.cookies.clear()
        log.info(
            "session_harvest_result",
            extra={
                "extra": {
                    "event": "session_harvest_result",
                    "status_code": r.status_code,
                    "cookie_count": len(cookies),
                    "latency_ms": t.ms(),
                }
            },
        )
        if not cookies:
            raise SessionUnavailableError(f"no_cookies_from_landing_page:{r.status_code}")
        return cookies

    def invalidate(self, rejected: Optional[str] = None) -> bool:
        """
        Drop the cached session so the next call re-harvests.

        When `rejected` is given, only clear if it is still the current header; a late
        rejection of an older session must not discard a newer one.
        """
        with self._lock:
            if rejected is not None and rejected != self._header():
                return False
            had = bool(self._cookies)
            self._cookies = []
            self._harvested_at = None
        log.info("session_invalidated", extra={"extra": {"event": "session_invalidated", "had_session": had}})
        return True

    def close(self) -> None:
        if self._owns_client:
            self.client.close()

    def status(self) -> Dict[str, Any]:
        cookies = list(self._cookies)
        return {
            "has_session": bool(cookies),
            "cookie_count": len(cookies),
            "harvested_at": self._harvested_at,
        }
