"""Twilio WhatsApp webhook route.

Contract with the carrier: every POST is answered with HTTP 200 and a TwiML
envelope, whatever happens inside. Twilio retries non-2xx responses and shows
raw error bodies to nobody, so errors are logged and acknowledged instead.

Security:
- Sender, body and profile name exist only in memory during processing
- Logs contain NO PII (hashes and lengths only)
"""

import json
from typing import Any

from fastapi import APIRouter, Request, Response
from starlette.concurrency import run_in_threadpool

from backbone_relay.api.wiring import get_relay, get_settings
from backbone_relay.errors import InvalidPayloadError
from backbone_relay.infra.settings import RelaySettings
from backbone_relay.observability.correlation import get_correlation_id
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context
from backbone_relay.whatsapp.twilio_adapter import decode_form_body
from backbone_relay.whatsapp.twiml import (
    EMPTY_ENVELOPE,
    TWIML_CONTENT_TYPE,
    glitch_text,
    render_envelope,
)

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)


def _twiml(envelope: str) -> Response:
    return Response(status_code=200, content=envelope, media_type=TWIML_CONTENT_TYPE)


def _assistant_name(request: Request) -> str:
    try:
        return get_settings(request).assistant_name
    except ValueError:
        return RelaySettings.assistant_name


async def _read_fields(request: Request) -> dict[str, Any]:
    """Read the webhook body as JSON or form fields ({} when unreadable)."""
    raw = await request.body()
    content_type = request.headers.get("content-type", "").lower()

    if "application/json" in content_type:
        try:
            payload = json.loads(raw or b"{}")
        except ValueError:
            raise InvalidPayloadError("invalid json body") from None
        if not isinstance(payload, dict):
            raise InvalidPayloadError("json body must be an object")
        return payload

    return decode_form_body(raw)


@router.post("/twilio")
async def twilio_webhook(request: Request) -> Response:
    """Receive a Twilio WhatsApp message and acknowledge it with TwiML.

    Returns:
        200 with `<Response></Response>` (empty ack / deferred to the local
        agent) or `<Response><Message>...</Message></Response>` (help text,
        fallback reply or glitch notice).
    """
    correlation_id = get_correlation_id()

    try:
        fields = await _read_fields(request)
    except InvalidPayloadError:
        logger.warning(
            "invalid twilio webhook body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _twiml(EMPTY_ENVELOPE)

    try:
        relay = get_relay(request)
        outcome = await run_in_threadpool(relay.handle, fields)
    except Exception:
        logger.exception(
            "twilio webhook processing failed",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return _twiml(render_envelope(glitch_text(_assistant_name(request))))

    logger.info(
        "twilio webhook acknowledged",
        extra={
            "extra_fields": safe_log_context(
                correlationId=correlation_id,
                route=outcome.route,
                user_id=outcome.user_id,
                failure_count=len(outcome.failures),
            )
        },
    )
    return _twiml(outcome.envelope)
