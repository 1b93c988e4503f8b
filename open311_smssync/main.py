import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, Response, status
from pydantic import ValidationError

from open311_smssync import handlers
from open311_smssync.config import get_settings
from open311_smssync.context import SmsSyncContext
from open311_smssync.errors import SmsSyncError
from open311_smssync.logging_utils import RequestLoggingMiddleware, log_task_data, setup_logging
from open311_smssync.metrics import get_metrics, get_metrics_content_type, record_task_outcome
from open311_smssync.schemas import (
    DeliveredPayload,
    DeliveredRequest,
    DeliveredResponse,
    ErrorResponse,
    HealthResponse,
    InboundSms,
    MessageUuidsResponse,
    SentRequest,
    TaskPayload,
    TaskResponse,
)
from open311_smssync.transport import SmsSync
from open311_smssync.utils import compute_sms_hash, verify_secret


# Setup structured JSON logging
setup_logging(get_settings().LOG_LEVEL)
logger = logging.getLogger(__name__)

router = APIRouter()


def get_context(request: Request) -> SmsSyncContext:
    """Dependency returning the transport context of the running app."""
    return request.app.state.transport.init()


# =============================================================================
# Helpers
# =============================================================================

async def _read_body(request: Request, task: str) -> dict:
    """Parse a JSON or form encoded body into a dict."""
    content_type = request.headers.get("content-type", "")
    try:
        if "application/json" in content_type:
            body = await request.json()
        else:
            body = dict(await request.form())
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON for task {task}: {e}")
        _reject(request, task, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, f"Invalid JSON: {e}")

    if not isinstance(body, dict):
        _reject(request, task, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, "Body must be an object")
    return body


def _reject(request: Request, task: str, result: str, status_code: int, detail: str):
    record_task_outcome(task, result)
    log_task_data(request, task=task, result=result)
    raise HTTPException(status_code=status_code, detail=detail)


def _check_secret(request: Request, task: str, ctx: SmsSyncContext, body: Optional[dict] = None) -> None:
    provided = request.query_params.get("secret") or (body or {}).get("secret")
    if not verify_secret(provided, ctx.settings.SECRET):
        logger.error(f"Invalid secret for task {task}")
        _reject(request, task, "invalid_secret", status.HTTP_401_UNAUTHORIZED, "invalid secret")


def _validate(request: Request, task: str, model, body: dict):
    try:
        return model.model_validate(body)
    except ValidationError as e:
        logger.error(f"Validation error for task {task}: {e}")
        _reject(request, task, "validation_error", status.HTTP_422_UNPROCESSABLE_ENTITY, str(e))


def _failed(request: Request, task: str, error: SmsSyncError):
    logger.error(f"Task {task} failed: {error}")
    _reject(request, task, "error", status.HTTP_500_INTERNAL_SERVER_ERROR, str(error))


def _done(request: Request, task: str, count: int) -> None:
    logger.info(f"Task {task} completed: {count} items")
    record_task_outcome(task, "ok")
    log_task_data(request, task=task, result="ok", count=count)


# =============================================================================
# Lifespan & App
# =============================================================================

def create_app(transport: Optional[SmsSync] = None) -> FastAPI:
    """
    Build the HTTP app serving the SMSSync device.

    - Startup: initialize the transport, create tables, start the worker
    - Shutdown: gracefully stop the job queue
    """
    transport = transport or SmsSync()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = transport.init()
        ctx.store.init_db()
        if ctx.settings.WORKER_ENABLED:
            # uvicorn handles SIGTERM and runs the shutdown below
            transport.start(install_signal_handlers=False)
        yield
        transport.stop()

    app = FastAPI(
        title="open311 SMSSync",
        description="SMSSync transport for open311 messages",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.transport = transport

    # Add request logging middleware
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(router)
    return app


# =============================================================================
# Health Check Routes
# =============================================================================

@router.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """
    Liveness probe - always returns 200 once the app is running.
    """
    return HealthResponse(status="ok")


@router.get("/health/ready", response_model=HealthResponse)
async def health_ready(
    response: Response,
    ctx: SmsSyncContext = Depends(get_context)
) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET is set (non-empty)
    2. DB is reachable and schema is applied

    Otherwise returns 503 (Service Unavailable).
    """
    if not ctx.settings.SECRET:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SECRET not configured")

    if not ctx.store.check_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# SMSSync Routes
# =============================================================================

@router.get(
    "/smssync",
    responses={
        400: {"model": ErrorResponse, "description": "Unknown task"},
        401: {"model": ErrorResponse, "description": "Invalid secret"},
    }
)
async def smssync_poll(
    request: Request,
    task: Annotated[Optional[str], Query(description="send or result")] = None,
    ctx: SmsSyncContext = Depends(get_context)
) -> dict:
    """
    Device polls.

    - task=send: messages the device should send
    - task=result: uuids of messages waiting for a delivery report
    """
    if task == "send":
        _check_secret(request, "send", ctx)
        try:
            envelopes = handlers.on_send(ctx)
        except SmsSyncError as e:
            _failed(request, "send", e)
        _done(request, "send", len(envelopes))
        return TaskResponse(
            payload=TaskPayload(task="send", secret=ctx.settings.SECRET, messages=envelopes)
        ).model_dump(mode="json")

    if task == "result":
        _check_secret(request, "queued", ctx)
        try:
            uuids = handlers.on_queued(ctx)
        except SmsSyncError as e:
            _failed(request, "queued", e)
        _done(request, "queued", len(uuids))
        return MessageUuidsResponse(message_uuids=uuids).model_dump(mode="json")

    logger.warning(f"Unknown poll task: {task}")
    _reject(request, str(task), "unknown_task", status.HTTP_400_BAD_REQUEST, "unknown task")


@router.post(
    "/smssync",
    responses={
        400: {"model": ErrorResponse, "description": "Unknown task"},
        401: {"model": ErrorResponse, "description": "Invalid secret"},
        422: {"description": "Validation error"},
    }
)
async def smssync_post(
    request: Request,
    task: Annotated[Optional[str], Query(description="none, sent or result")] = None,
    ctx: SmsSyncContext = Depends(get_context)
) -> dict:
    """
    Device posts.

    - no task: an inbound sms, answered with the auto reply
    - task=sent: uuids the device queued for delivery
    - task=result: delivery reports
    """
    if task is None:
        return await _receive(request, ctx)

    if task == "sent":
        body = await _read_body(request, "sent")
        _check_secret(request, "sent", ctx, body)
        sent = _validate(request, "sent", SentRequest, body)
        try:
            uuids = handlers.on_sent(ctx, sent.queued_messages)
        except SmsSyncError as e:
            _failed(request, "sent", e)
        _done(request, "sent", len(uuids))
        return MessageUuidsResponse(message_uuids=uuids).model_dump(mode="json")

    if task == "result":
        body = await _read_body(request, "delivered")
        _check_secret(request, "delivered", ctx, body)
        reports = _validate(request, "delivered", DeliveredRequest, body)
        try:
            messages = handlers.on_delivered(ctx, reports.message_result)
        except SmsSyncError as e:
            _failed(request, "delivered", e)
        _done(request, "delivered", len(messages))
        return DeliveredResponse(
            payload=DeliveredPayload(success=True, error=None, messages=messages)
        ).model_dump(mode="json", by_alias=True)

    logger.warning(f"Unknown post task: {task}")
    _reject(request, task, "unknown_task", status.HTTP_400_BAD_REQUEST, "unknown task")


async def _receive(request: Request, ctx: SmsSyncContext) -> dict:
    logger.info("Inbound sms received")

    body = await _read_body(request, "receive")
    _check_secret(request, "receive", ctx, body)
    sms = _validate(request, "receive", InboundSms, body)

    if not sms.hash:
        sms.hash = compute_sms_hash(sms.from_msisdn, sms.message, sms.message_id, sms.sent_timestamp)

    try:
        reply, message = handlers.on_receive(ctx, sms.to_payload())
    except SmsSyncError as e:
        _failed(request, "receive", e)

    _done(request, "receive", 1)
    messages = [reply] if reply.message else []
    return TaskResponse(
        payload=TaskPayload(
            success=True,
            error=None,
            task="send",
            secret=ctx.settings.SECRET,
            messages=messages,
        )
    ).model_dump(mode="json")


# =============================================================================
# Metrics Route
# =============================================================================

@router.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


app = create_app()
