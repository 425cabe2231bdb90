import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from common.commands import CommandInterpreter
from common.config import settings
from common.dispatcher import dispatch_events
from common.line import SIGNATURE_HEADER, line_client, verify_signature
from common.repository import DIAGNOSTIC_TABLES, build_repository
from common.retry import NOT_FOUND, VALIDATION_ERROR, DatabaseError
from api.schemas import (
    WebhookPayload, WebhookResponse, EnvCheck, HealthResponse,
    DbDiagnosticsResponse, TableDiagnostics, MemberProfile, OperationResponse,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


# Store + interpreter setup
repository = build_repository(settings)


async def send_reply(reply_token: str, message: Dict[str, Any]) -> Any:
    return await line_client.reply_message(reply_token, message)


interpreter = CommandInterpreter(
    repository=repository,
    send_reply=send_reply,
    today_only=settings.list_today_only,
    default_display_name=settings.DEFAULT_DISPLAY_NAME,
    overwhelmed_threshold=settings.MOOD_OVERWHELMED_THRESHOLD,
)

_started_at = time.monotonic()


@asynccontextmanager
async def lifespan(_: FastAPI):
    repository.spawn_background("warmup_connection", repository.warmup_connection())
    yield
    await repository.drain_background()
    await repository.store.close()


app = FastAPI(title="Xiaowang Jiji LINE Bot", lifespan=lifespan)

# --- Middleware ---

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

# --- Health ---

def _env_check() -> EnvCheck:
    return EnvCheck(
        channel_secret=bool(settings.LINE_CHANNEL_SECRET),
        channel_token=bool(settings.LINE_CHANNEL_ACCESS_TOKEN),
        store_url=bool(settings.DATABASE_URL),
    )


@app.get("/health", response_model=HealthResponse)
async def health():
    env_check = _env_check()
    line_configured = env_check.channel_secret and env_check.channel_token
    report = HealthResponse(
        status="healthy",
        timestamp=utc_now().isoformat(),
        version=settings.APP_VERSION,
        uptime_seconds=round(time.monotonic() - _started_at, 3),
        services={
            "app": "running",
            "database": "checking",
            "line": "configured" if line_configured else "not_configured",
        },
        env_check=env_check,
    )

    connection = await repository.test_connection()
    if not connection.success:
        report.status = "unhealthy"
        report.services["database"] = "disconnected"
        report.error = connection.error_message
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=report.model_dump(mode="json"))

    report.services["database"] = "connected"
    stats = await repository.get_system_stats()
    if stats.success:
        report.statistics = stats.data
    if not (stats.success and line_configured):
        report.status = "degraded"
    return report


@app.get("/health/db", response_model=DbDiagnosticsResponse)
async def health_db():
    started = time.perf_counter()
    connection = await repository.test_connection()
    diagnostics = DbDiagnosticsResponse(
        timestamp=utc_now().isoformat(),
        connection={
            "status": "connected" if connection.success else "failed",
            "backend": repository.store.name,
            "latency_ms": _elapsed_ms(started),
            "message": connection.message or connection.error_message,
        },
    )
    if not connection.success:
        return diagnostics

    for table in DIAGNOSTIC_TABLES:
        table_started = time.perf_counter()
        counted = await repository.count_rows(table)
        diagnostics.tables[table] = TableDiagnostics(
            accessible=counted.success,
            count=counted.data if counted.success else None,
            response_time_ms=_elapsed_ms(table_started),
            error=counted.error_message,
        )

    perf_started = time.perf_counter()
    await repository.get_user_tasks("performance_test_user", limit=1)
    diagnostics.performance["simple_query_ms"] = _elapsed_ms(perf_started)
    return diagnostics


@app.get("/status")
async def service_status():
    connection = await repository.test_connection()
    return {
        "status": "operational" if connection.success else "partial",
        "services": {
            "web": "up",
            "database": "up" if connection.success else "down",
            "line_api": "configured" if settings.LINE_CHANNEL_ACCESS_TOKEN else "not configured",
        },
        "timestamp": utc_now().isoformat(),
    }

# --- LINE Integration ---

@app.post("/webhook", response_model=WebhookResponse)
async def line_webhook(request: Request):
    # 1. Validate signature over the raw bytes
    signature = request.headers.get(SIGNATURE_HEADER)
    if not signature:
        logger.error("Missing %s header", SIGNATURE_HEADER)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not settings.LINE_CHANNEL_SECRET:
        logger.error("LINE_CHANNEL_SECRET not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")

    raw_body = await request.body()
    if not verify_signature(raw_body, signature, settings.LINE_CHANNEL_SECRET):
        logger.error("Signature validation failed")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Signature validation failed")

    # 2. Parse batch
    try:
        payload = WebhookPayload.model_validate(json.loads(raw_body))
    except (ValueError, ValidationError) as e:
        logger.error(f"Webhook payload could not be parsed: {e}")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    if not payload.events:
        logger.warning("Received an empty event batch")
        return WebhookResponse(message="No events to process")

    # 3. Dispatch; individual failures never change the acknowledgement
    summary = await dispatch_events(payload.events, interpreter.handle_event)
    return WebhookResponse(
        message="Events processed successfully",
        processed=summary.received,
        failed=summary.failed,
    )

# --- Tasks & Members API ---

@app.get("/api/tasks/{user_id}", response_model=OperationResponse)
async def list_user_tasks(user_id: str, date: Optional[str] = None):
    try:
        result = await repository.get_user_tasks(user_id, date=date)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="date must be YYYY-MM-DD")
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.error_message)
    return OperationResponse(success=True, data=result.data)


@app.post("/api/members", response_model=OperationResponse)
async def register_member(request: Request, profile: MemberProfile):
    login_info = {
        "login_method": profile.login_method,
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("User-Agent"),
    }
    try:
        result = await repository.register_member(profile.model_dump(exclude={"login_method"}), login_info)
    except DatabaseError as e:
        if e.code == VALIDATION_ERROR:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
        raise
    if not result.success:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.error_message)
    return OperationResponse(success=True, data=result.data, message=result.message)


@app.delete("/api/members/{member_id}", response_model=OperationResponse)
async def deactivate_member(member_id: str):
    result = await repository.deactivate_member(member_id)
    if not result.success:
        if result.error_code == NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Member not found")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result.error_message)
    return OperationResponse(success=True, data=result.data, message="deactivated")
