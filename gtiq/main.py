import asyncio
from contextlib import suppress
from datetime import datetime, timezone
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gtiq.db import engine
from gtiq.errors import ApiError, error_response
from gtiq.logging_utils import setup_json_logging
from gtiq.routers import absences, admin, auth, clock, compliance, correction_requests, incidents, people, sessions
from gtiq.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from gtiq.services.session_monitor import run_session_monitor
from gtiq.settings import get_cors_origins, get_settings

setup_json_logging(service="gtiq-api")
logger = logging.getLogger("gtiq.request")
monitor_logger = logging.getLogger("gtiq.session_monitor")
settings = get_settings()

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "company_id": getattr(request.state, "company_id", None),
                "session_id": getattr(request.state, "session_id", None),
                "event_type": getattr(request.state, "event_type", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        429: "TOO_MANY_ATTEMPTS",
    }
    return error_response(
        request,
        status_code=exc.status_code,
        code=code_map.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=400,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(auth.router)
app.include_router(clock.router)
app.include_router(sessions.router)
app.include_router(compliance.router)
app.include_router(people.router)
app.include_router(incidents.router)
app.include_router(absences.router)
app.include_router(correction_requests.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def _monitor_interval_seconds() -> int:
    return max(30, int(settings.session_monitor_interval_seconds))


async def _session_monitor_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = _monitor_interval_seconds()
    while not stop_event.is_set():
        try:
            report = await asyncio.to_thread(run_session_monitor)
        except Exception:
            monitor_logger.exception("session_monitor_tick_failed")
        else:
            if report.auto_closed or report.exceeded_shift or report.exceeded_period:
                monitor_logger.info("session_monitor_tick", extra=report.to_dict())

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


@app.on_event("startup")
async def run_schema_guard() -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app.state.schema_guard_result = result
    if result.ok:
        monitor_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    monitor_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        raise RuntimeError(f"Runtime schema guard failed: {'; '.join(result.issues)}")


@app.on_event("startup")
async def start_session_monitor() -> None:
    if not settings.session_monitor_enabled:
        return
    if getattr(app.state, "session_monitor_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.session_monitor_stop_event = stop_event
    app.state.session_monitor_task = asyncio.create_task(_session_monitor_loop(stop_event))
    monitor_logger.info(
        "session_monitor_started",
        extra={"interval_seconds": _monitor_interval_seconds()},
    )


@app.on_event("shutdown")
async def stop_session_monitor() -> None:
    stop_event: asyncio.Event | None = getattr(app.state, "session_monitor_stop_event", None)
    task: asyncio.Task[None] | None = getattr(app.state, "session_monitor_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.session_monitor_stop_event = None
    app.state.session_monitor_task = None


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "version": app.version,
        "schema_guard": schema_guard_result.to_dict(),
        "session_monitor_enabled": settings.session_monitor_enabled,
    }
