"""Relay orchestrator - one inbound carrier message, end to end.

    PARSE -> DEDUPE -> IDENTIFY -> FILTER_PRIVATE -> (HELP) -> INGEST_MEDIA
      -> SNAPSHOT_CONTEXT -> PERSIST -> TYPING -> CHECK_PRESENCE
      -> {DEFER | RESPOND_OFFLINE} -> ACK

Degradable stages (dedupe, media, history, typing, presence, fallback, task
queue) record a StageFailure and continue with their degraded default. The
identity lookup and the inbound write are not degradable: if they raise, the
exception leaves `handle` and the webhook route answers with the glitch
envelope.

Security: never log sender, body or profile name. Only hashes and lengths.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping, Sequence

from backbone_relay.errors import InvalidPayloadError
from backbone_relay.infra.hashing import hash_identifier
from backbone_relay.infra.settings import RelaySettings
from backbone_relay.media.ingest import IngestResult, MediaIngestor
from backbone_relay.observability.correlation import get_correlation_id
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context
from backbone_relay.whatsapp.models import InboundWebhook
from backbone_relay.whatsapp.twilio_adapter import parse_webhook
from backbone_relay.whatsapp.twiml import EMPTY_ENVELOPE, help_text, render_envelope

from .conversation import compress_history
from .failures import FailureReporter, LoggingFailureReporter, StageFailure
from .fallback import FallbackRequest, FallbackResponder, first_name
from .followups import FollowUpQueue
from .identity import IdentityResolver
from .models import CarrierCredentials, HistoryTurn, IngestedMedia, NewMessage, Visibility
from .ports import CarrierClient, ConfigProvider, MessageStore
from .presence import PresenceTracker

logger = get_logger(__name__)

RECEIPT_SOURCE_TWILIO = "twilio"

# Stored for media-only messages so the turn is never blank in history
MEDIA_ONLY_CONTENT = "[Attachment sent]"

Route = Literal["empty", "duplicate", "help", "defer", "reply"]


def split_private_prefix(body: str, prefixes: Sequence[str]) -> tuple[str, bool]:
    """Strip a leading privacy prefix (case-insensitive).

    Returns (remaining text, trimmed; whether a prefix matched).
    """
    text = body.lstrip()
    lowered = text.lower()
    for prefix in prefixes:
        if prefix and lowered.startswith(prefix.lower()):
            return text[len(prefix):].strip(), True
    return body.strip(), False


@dataclass(frozen=True)
class RelayOutcome:
    """What one webhook invocation did.

    `envelope` is the TwiML body to return; the other fields exist for logging
    and tests.
    """

    envelope: str
    route: Route
    user_id: str | None = None
    message_id: str | None = None
    reply_text: str | None = None
    failures: tuple[StageFailure, ...] = field(default=())


class _Turn:
    """Mutable per-invocation state (failures and lazily fetched credentials)."""

    def __init__(self, config: ConfigProvider) -> None:
        self._config = config
        self._credentials: CarrierCredentials | None = None
        self._credentials_loaded = False
        self.failures: list[StageFailure] = []

    def fail(self, failure: StageFailure | None) -> None:
        if failure is not None:
            self.failures.append(failure)

    def credentials(self) -> CarrierCredentials | None:
        if not self._credentials_loaded:
            self._credentials_loaded = True
            try:
                self._credentials = self._config.carrier_credentials()
            except Exception as exc:
                self.fail(StageFailure.from_exception("load_carrier_config", exc, "no_credentials"))
        return self._credentials


class RelayOrchestrator:
    """Routes inbound messages to the local agent or the fallback responder."""

    def __init__(
        self,
        *,
        identities: IdentityResolver,
        messages: MessageStore,
        presence: PresenceTracker,
        media: MediaIngestor,
        responder: FallbackResponder,
        followups: FollowUpQueue,
        carrier: CarrierClient,
        config: ConfigProvider,
        settings: RelaySettings,
        reporter: FailureReporter | None = None,
    ) -> None:
        self._identities = identities
        self._messages = messages
        self._presence = presence
        self._media = media
        self._responder = responder
        self._followups = followups
        self._carrier = carrier
        self._config = config
        self._settings = settings
        self._reporter = reporter or LoggingFailureReporter()

    def handle(self, fields: Mapping[str, Any]) -> RelayOutcome:
        """Process one webhook payload and return the acknowledgement."""
        turn = _Turn(self._config)

        try:
            webhook = parse_webhook(fields)
        except InvalidPayloadError as exc:
            turn.fail(StageFailure.from_exception("parse", exc, "empty_ack"))
            return self._finish(turn, RelayOutcome(envelope=EMPTY_ENVELOPE, route="empty"))

        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            sender_hash=hash_identifier(webhook.sender),
            body_len=len(webhook.body),
            media_count=len(webhook.media),
        )

        if self._is_duplicate(webhook, turn):
            logger.info(
                "duplicate carrier message ignored",
                extra={"extra_fields": log_ctx},
            )
            return self._finish(turn, RelayOutcome(envelope=EMPTY_ENVELOPE, route="duplicate"))

        user = self._identities.resolve(webhook.sender)
        log_ctx["user_id"] = user.id

        text, forced_private = split_private_prefix(webhook.body, self._settings.private_prefixes)
        visibility: Visibility = (
            "private" if forced_private or user.private_mode_default else "visible"
        )

        if not text and not webhook.has_media:
            credentials = turn.credentials()
            reply = help_text(
                self._settings.assistant_name,
                credentials.sandbox_join_words if credentials else None,
            )
            return self._finish(
                turn,
                RelayOutcome(envelope=render_envelope(reply), route="help", user_id=user.id),
            )

        ingested = self._ingest_media(user.id, webhook, turn)
        history = self._load_history(user.id, turn)
        snapshot = compress_history(history, window=self._settings.compressed_window)

        message_id = self._messages.append(
            NewMessage(
                user_id=user.id,
                direction="inbound",
                content=text or MEDIA_ONLY_CONTENT,
                source="carrier",
                status="pending",
                visibility=visibility,
                needs_response=True,
                carrier_message_id=webhook.message_sid,
                context_snapshot=snapshot,
                media=ingested.attachments,
            )
        )
        log_ctx["message_id"] = message_id
        log_ctx["visibility"] = visibility

        self._send_typing(webhook, turn)

        if self._agent_is_live(user.id, turn):
            logger.info("inbound deferred to local agent", extra={"extra_fields": log_ctx})
            return self._finish(
                turn,
                RelayOutcome(
                    envelope=EMPTY_ENVELOPE,
                    route="defer",
                    user_id=user.id,
                    message_id=message_id,
                ),
            )

        name = first_name(user.display_name, webhook.profile_name)
        reply = self._responder.respond(
            FallbackRequest(
                user_id=user.id,
                body=text,
                history=history,
                first_name=name,
                inline_images=ingested.inline_images,
                has_media=webhook.has_media,
            )
        )
        for failure in reply.failures:
            turn.fail(failure)

        try:
            self._messages.append(
                NewMessage(
                    user_id=user.id,
                    direction="outbound",
                    content=reply.text,
                    source="fallback",
                    status="sent",
                    visibility=visibility,
                    deliver_to_channel=False,
                )
            )
        except Exception as exc:
            turn.fail(StageFailure.from_exception("persist_fallback_reply", exc, "reply_not_stored"))

        turn.fail(
            self._followups.enqueue(
                user_id=user.id,
                original_message=text,
                provisional_response=reply.text,
                context_snapshot=snapshot,
                has_media=webhook.has_media,
                user_name=name,
            )
        )

        logger.info(
            "inbound answered by fallback responder",
            extra={
                "extra_fields": {
                    **log_ctx,
                    "from_model": str(reply.from_model),
                    "reply_len": str(len(reply.text)),
                }
            },
        )
        return self._finish(
            turn,
            RelayOutcome(
                envelope=render_envelope(reply.text),
                route="reply",
                user_id=user.id,
                message_id=message_id,
                reply_text=reply.text,
            ),
        )

    def _is_duplicate(self, webhook: InboundWebhook, turn: _Turn) -> bool:
        if not self._settings.dedupe_carrier_ids or not webhook.message_sid:
            return False
        try:
            recorded = self._messages.record_receipt(RECEIPT_SOURCE_TWILIO, webhook.message_sid)
        except Exception as exc:
            turn.fail(StageFailure.from_exception("dedupe", exc, "process_anyway"))
            return False
        return not recorded

    def _ingest_media(self, user_id: str, webhook: InboundWebhook, turn: _Turn) -> IngestedMedia:
        if not webhook.has_media:
            return IngestedMedia()
        try:
            result = self._media.ingest(user_id, webhook.media, turn.credentials())
        except Exception as exc:
            turn.fail(StageFailure.from_exception("ingest_media", exc, "text_only"))
            return IngestedMedia(failed_count=len(webhook.media))
        return self._collect(result, turn)

    @staticmethod
    def _collect(result: IngestResult, turn: _Turn) -> IngestedMedia:
        for failure in result.failures:
            turn.fail(failure)
        return result.media

    def _load_history(self, user_id: str, turn: _Turn) -> list[HistoryTurn]:
        try:
            return list(self._messages.recent_history(user_id, self._settings.history_window))
        except Exception as exc:
            turn.fail(StageFailure.from_exception("load_history", exc, "no_history"))
            return []

    def _send_typing(self, webhook: InboundWebhook, turn: _Turn) -> None:
        if not webhook.message_sid:
            return
        credentials = turn.credentials()
        if credentials is None:
            return
        try:
            self._carrier.send_typing_indicator(credentials, webhook.message_sid)
        except Exception as exc:
            turn.fail(StageFailure.from_exception("typing_indicator", exc, "no_indicator"))

    def _agent_is_live(self, user_id: str, turn: _Turn) -> bool:
        try:
            return self._presence.is_live(user_id)
        except Exception as exc:
            turn.fail(StageFailure.from_exception("check_presence", exc, "offline"))
            return False

    def _finish(self, turn: _Turn, outcome: RelayOutcome) -> RelayOutcome:
        for failure in turn.failures:
            try:
                self._reporter.report(failure)
            except Exception:  # noqa: BLE001 - reporting must not alter the envelope
                logger.error(
                    "failure reporter raised",
                    extra={"extra_fields": safe_log_context(stage=failure.stage)},
                )
        if not turn.failures:
            return outcome
        return RelayOutcome(
            envelope=outcome.envelope,
            route=outcome.route,
            user_id=outcome.user_id,
            message_id=outcome.message_id,
            reply_text=outcome.reply_text,
            failures=tuple(turn.failures),
        )
