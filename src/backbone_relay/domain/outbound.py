"""Outbound dispatcher - push agent-authored replies to the carrier.

A message is eligible when it is outbound, flagged `deliver_to_channel` and
still `pending`. The dispatcher claims it first (compare-and-set on
`dispatch_claimed_at`), so a trigger firing twice sends at most once.

Delivery is at most once: a failed send is recorded as `status=error` with the
carrier's error text and is never retried here.

Security: never log recipient identity or message content.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from backbone_relay.errors import CarrierError
from backbone_relay.infra.hashing import hash_identifier
from backbone_relay.observability.correlation import get_correlation_id
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import describe_error, safe_log_context

from .models import Message
from .ports import CarrierClient, ConfigProvider, MessageStore, UserRepository

logger = get_logger(__name__)

DispatchStatus = Literal["sent", "error", "skipped", "already_claimed", "not_found"]

DEFAULT_SWEEP_LIMIT = 50


@dataclass(frozen=True)
class DispatchResult:
    message_id: str
    status: DispatchStatus
    carrier_message_id: str | None = None
    error: str | None = None


def is_dispatchable(message: Message) -> bool:
    return (
        message.direction == "outbound"
        and message.deliver_to_channel
        and message.status == "pending"
    )


def carrier_error_text(exc: Exception) -> str:
    """Error text stored on the message: carrier message when present."""
    if isinstance(exc, CarrierError) and exc.carrier_message:
        return exc.carrier_message
    return describe_error(exc)


class OutboundDispatcher:
    def __init__(
        self,
        *,
        messages: MessageStore,
        users: UserRepository,
        carrier: CarrierClient,
        config: ConfigProvider,
    ) -> None:
        self._messages = messages
        self._users = users
        self._carrier = carrier
        self._config = config

    def dispatch(self, message_id: str) -> DispatchResult:
        """Send one outbound message if it is still waiting for delivery."""
        log_ctx = safe_log_context(correlationId=get_correlation_id(), message_id=message_id)

        message = self._messages.get(message_id)
        if message is None:
            logger.warning("dispatch target not found", extra={"extra_fields": log_ctx})
            return DispatchResult(message_id=message_id, status="not_found")

        if not is_dispatchable(message):
            logger.info(
                "dispatch skipped, message not eligible",
                extra={
                    "extra_fields": {
                        **log_ctx,
                        "direction": message.direction,
                        "status": message.status,
                        "deliver_to_channel": str(message.deliver_to_channel),
                    }
                },
            )
            return DispatchResult(message_id=message_id, status="skipped")

        if not self._messages.claim_for_dispatch(message_id):
            logger.info("dispatch skipped, already claimed", extra={"extra_fields": log_ctx})
            return DispatchResult(message_id=message_id, status="already_claimed")

        # Claimed rows are skipped by the sweep: every path from here ends in sent or error
        try:
            user = self._users.get(message.user_id)
            if user is None:
                return self._record_error(message_id, "recipient user not found", log_ctx)

            credentials = self._config.carrier_credentials()
            if credentials is None:
                return self._record_error(message_id, "carrier credentials not configured", log_ctx)

            log_ctx["to_hash"] = hash_identifier(user.channel_identity)
            sid = self._carrier.send_text(credentials, user.channel_identity, message.content)
        except Exception as exc:
            return self._record_error(message_id, carrier_error_text(exc), log_ctx)

        try:
            self._messages.mark_sent(message_id, sid or None)
        except Exception as exc:
            logger.error(
                "sent status write failed",
                extra={"extra_fields": {**log_ctx, "error": describe_error(exc)}},
            )

        logger.info("outbound message dispatched", extra={"extra_fields": log_ctx})
        return DispatchResult(message_id=message_id, status="sent", carrier_message_id=sid or None)

    def dispatch_pending(self, limit: int = DEFAULT_SWEEP_LIMIT) -> list[DispatchResult]:
        """Sweep outbound messages that no dispatcher has claimed yet."""
        message_ids = self._messages.list_undispatched(limit)
        results = [self.dispatch(message_id) for message_id in message_ids]
        logger.info(
            "outbound sweep finished",
            extra={
                "extra_fields": safe_log_context(
                    correlationId=get_correlation_id(),
                    candidates=len(message_ids),
                    sent=sum(1 for r in results if r.status == "sent"),
                    errors=sum(1 for r in results if r.status == "error"),
                )
            },
        )
        return results

    def _record_error(
        self, message_id: str, error: str, log_ctx: dict[str, str]
    ) -> DispatchResult:
        try:
            self._messages.mark_error(message_id, error)
        except Exception as exc:
            logger.error(
                "error status write failed",
                extra={"extra_fields": {**log_ctx, "error": describe_error(exc)}},
            )
        logger.warning(
            "outbound dispatch failed",
            extra={"extra_fields": {**log_ctx, "error_len": str(len(error))}},
        )
        return DispatchResult(message_id=message_id, status="error", error=error)
