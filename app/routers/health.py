from __future__ import annotations

import time
from typing import Any, Dict

from fastapi import APIRouter, Depends

from config.settings import settings
from upstream.gateway import UpstreamGateway, get_gateway

router = APIRouter()


@router.get("/health")
def health(gateway: UpstreamGateway = Depends(get_gateway)):
    # No network: reports cached session state only, never the cookie values.
    payload: Dict[str, Any] = {
        "ok": True,
        "service": "queuewatch",
        "environment": settings.ENVIRONMENT,
        "notifier_channel": settings.NOTIFIER_CHANNEL,
        "upstream_session": gateway.session.status(),
        "time_unix": time.time(),
    }
    return payload
