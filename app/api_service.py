from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from alerts.notifier import PermissionDeniedError
from config.settings import settings
from ops.structured_logger import setup_logging
from upstream.errors import MalformedResponseError, UpstreamError
from upstream.gateway import get_gateway
from utils.request_context import clear_request_id, set_request_id
from watch.session import get_watch_session

from app.routers.health import router as health_router
from app.routers.proxy import router as proxy_router
from app.routers.watch import router as watch_router

setup_logging(settings.LOG_LEVEL)

log = logging.getLogger("queuewatch.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Only tear down what was actually created.
    if get_watch_session.cache_info().currsize:
        await get_watch_session().close()
    if get_gateway.cache_info().currsize:
        get_gateway().close()


app = FastAPI(title="Queuewatch", version="1.0.0", lifespan=lifespan)


def _get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id") or ""


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    set_request_id(rid)
    try:
        response = await call_next(request)
    finally:
        clear_request_id()
    response.headers["X-Request-Id"] = rid
    return response


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    rid = _get_request_id(request)
    log.warning(
        "upstream_error_response",
        extra={
            "extra": {
                "event": "upstream_error_response",
                "status_code": exc.status,
                "path": request.url.path,
                "request_id": rid,
            }
        },
    )
    return JSONResponse(
        status_code=exc.status,
        content={"error": "Hospital API returned error", "details": exc.details, "request_id": rid},
    )


@app.exception_handler(MalformedResponseError)
async def malformed_response_handler(request: Request, exc: MalformedResponseError):
    rid = _get_request_id(request)
    log.error(
        "malformed_upstream_response",
        extra={"extra": {"event": "malformed_upstream_response", "details": exc.details, "path": request.url.path, "request_id": rid}},
    )
    return JSONResponse(
        status_code=502,
        content={"error": "Hospital API returned an unexpected payload", "details": exc.details, "request_id": rid},
    )


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return JSONResponse(
        status_code=403,
        content={"detail": "notification_permission_denied", "channel": exc.channel, "instruction": exc.instruction},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    rid = _get_request_id(request)
    log.warning(
        "http_exception",
        extra={
            "extra": {
                "event": "http_exception",
                "status_code": exc.status_code,
                "detail": exc.detail,
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": rid},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    rid = _get_request_id(request)
    log.warning(
        "validation_error",
        extra={
            "extra": {
                "event": "validation_error",
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "request_id": rid},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = _get_request_id(request)
    log.error(
        "internal_unhandled_exception",
        extra={
            "extra": {
                "event": "internal_unhandled_exception",
                "error_type": type(exc).__name__,
                "message": str(exc),
                "path": request.url.path,
                "method": request.method,
                "request_id": rid,
            }
        },
        exc_info=True,
    )
    return JSONResponse(
        status_code=500,
        content={"error": "internal_unhandled_exception", "request_id": rid},
    )


# The browser dashboard may be served from another origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
)

app.include_router(health_router, tags=["health"])
app.include_router(proxy_router, prefix="/api", tags=["proxy"])
app.include_router(watch_router, prefix="/watch", tags=["watch"])
