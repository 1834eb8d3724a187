"""Worker routes for pushing outbound messages to the carrier.

`dispatch-message` is triggered per message (e.g. by the local agent after it
writes a reply); `dispatch-pending` is a periodic sweep for messages whose
trigger was lost.
"""

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from backbone_relay.api.task_auth import verify_task_auth
from backbone_relay.api.wiring import get_dispatcher
from backbone_relay.domain.outbound import DEFAULT_SWEEP_LIMIT, DispatchResult
from backbone_relay.observability.correlation import get_correlation_id, set_correlation_id
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context

router = APIRouter(prefix="/tasks/relay", tags=["tasks"])

logger = get_logger(__name__)


class DispatchMessageRequest(BaseModel):
    """Request model for dispatch-message task. Carries ids only, no PII."""

    message_id: str = Field(min_length=1)
    correlation_id: str | None = None


class DispatchPendingRequest(BaseModel):
    limit: int = Field(default=DEFAULT_SWEEP_LIMIT, ge=1, le=500)


def _result_dict(result: DispatchResult) -> dict:
    return {
        "message_id": result.message_id,
        "status": result.status,
        "carrier_message_id": result.carrier_message_id,
    }


def _require_task_auth(request: Request, correlation_id: str) -> None:
    if not verify_task_auth(request):
        logger.warning(
            "task auth failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/dispatch-message")
async def dispatch_message(request: Request, req: DispatchMessageRequest) -> dict:
    """Send one outbound message if it is still pending.

    Returns:
        {"ok": true, "result": {...}}; `result.status` is one of sent, error,
        skipped, already_claimed, not_found. Delivery failures are recorded on
        the message and do not produce a non-2xx (no task retry).
    """
    correlation_id = req.correlation_id or get_correlation_id()
    _require_task_auth(request, correlation_id)

    # Dispatcher logs pick up the id of the task that triggered them
    if req.correlation_id:
        set_correlation_id(req.correlation_id)

    dispatcher = get_dispatcher(request)
    result = await run_in_threadpool(dispatcher.dispatch, req.message_id)
    logger.info(
        "dispatch-message task finished",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                message_id=result.message_id,
                status=result.status,
            )
        },
    )
    return {"ok": True, "result": _result_dict(result)}


@router.post("/dispatch-pending")
async def dispatch_pending(request: Request, req: DispatchPendingRequest) -> dict:
    """Sweep undispatched outbound messages."""
    _require_task_auth(request, get_correlation_id())

    dispatcher = get_dispatcher(request)
    results = await run_in_threadpool(dispatcher.dispatch_pending, req.limit)
    return {
        "ok": True,
        "processed": len(results),
        "results": [_result_dict(r) for r in results],
    }
