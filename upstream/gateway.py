from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from config.settings import settings
from models.schema import ClinicProgress, Division
from ops.metrics import Timer
from upstream.errors import MalformedResponseError, UpstreamError
from upstream.session_cache import SessionCache
from utils.request_context import new_correlation_id

log = logging.getLogger("queuewatch.upstream")

# Status codes the hospital API uses for a stale or missing session.
SESSION_REJECTED_STATUSES = (400, 401)

MAX_DETAILS_CHARS = 500


def _x_date() -> str:
    # Same shape as JS Date.toISOString(): millisecond precision, "Z" suffix.
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def _error_details(r: httpx.Response) -> str:
    """Bounded, printable error text; the body may be JSON, HTML or empty."""
    try:
        data = r.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        msg = data.get("message") or data.get("Message") or data.get("error") or data.get("title")
        if msg:
            return str(msg)[:MAX_DETAILS_CHARS]
    return (r.text or "").strip()[:MAX_DETAILS_CHARS]


class UpstreamGateway:
    """The only component that talks to the hospital API."""

    def __init__(
        self,
        session: Optional[SessionCache] = None,
        client: Optional[httpx.Client] = None,
        base_url: Optional[str] = None,
        timeout_s: Optional[float] = None,
    ):
        self._owns_client = client is None
        self._owns_session = session is None
        self.client = client or httpx.Client()
        self.session = session or SessionCache()
        self.base_url = (base_url or settings.UPSTREAM_BASE_URL).rstrip("/")
        self.timeout_s = timeout_s if timeout_s is not None else settings.UPSTREAM_TIMEOUT_S

    def build_headers(self, cookie: str) -> Dict[str, str]:
        return {
            "User-Agent": settings.UPSTREAM_USER_AGENT,
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": settings.UPSTREAM_ACCEPT_LANGUAGE,
            "Content-Type": "application/json",
            "X-Request-ID": new_correlation_id(),
            "X-Date": _x_date(),
            "X-Requested-With": "XMLHttpRequest",
            "Referer": settings.UPSTREAM_REFERER,
            "Origin": settings.UPSTREAM_ORIGIN,
            "Cookie": cookie,
        }

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        cookie = self.session.get_session_header()
        headers = self.build_headers(cookie)
        url = f"{self.base_url}/{path}"
        t = Timer()
        try:
            r = self.client.get(url, params=params, headers=headers, timeout=self.timeout_s)
        except httpx.TimeoutException as e:
            log.warning(
                "upstream_timeout",
                extra={"extra": {"event": "upstream_timeout", "path": path, "latency_ms": t.ms()}},
            )
            raise UpstreamError(504, "upstream_timeout") from e
        except httpx.HTTPError as e:
            log.warning(
                "upstream_unreachable",
                extra={"extra": {"event": "upstream_unreachable", "path": path, "error_type": type(e).__name__}},
            )
            raise UpstreamError(502, "upstream_unreachable") from e

        log.info(
            "upstream_request_result",
            extra={
                "extra": {
                    "event": "upstream_request_result",
                    "path": path,
                    "status_code": r.status_code,
                    "upstream_request_id": headers["X-Request-ID"],
                    "latency_ms": t.ms(),
                }
            },
        )

        if not r.is_success:
            details = _error_details(r)
            log.error(
                "upstream_error",
                extra={"extra": {"event": "upstream_error", "path": path, "status_code": r.status_code, "details": details}},
            )
            if r.status_code in SESSION_REJECTED_STATUSES:
                self.session.invalidate(rejected=cookie)
            raise UpstreamError(r.status_code, details)

        try:
            return r.json()
        except ValueError as e:
            raise MalformedResponseError(f"{path}: body is not JSON") from e

    def fetch_divisions(self) -> List[Division]:
        data = self._get("RegistrationDivision")
        if not isinstance(data, list):
            raise MalformedResponseError(f"RegistrationDivision: expected array, got {type(data).__name__}")
        try:
            return [Division.model_validate(d) for d in data]
        except ValidationError as e:
            raise MalformedResponseError(f"RegistrationDivision: {e.error_count()} invalid field(s)") from e

    def fetch_progress(self, division_code: str) -> List[ClinicProgress]:
        data = self._get("AppointmentProgress", params={"DivisionCode": division_code})
        if not isinstance(data, list):
            raise MalformedResponseError(f"AppointmentProgress: expected array, got {type(data).__name__}")
        try:
            return [ClinicProgress.model_validate(row) for row in data]
        except ValidationError as e:
            raise MalformedResponseError(f"AppointmentProgress: {e.error_count()} invalid field(s)") from e

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
        if self._owns_session:
            self.session.close()


@lru_cache
def get_gateway() -> UpstreamGateway:
    return UpstreamGateway()
