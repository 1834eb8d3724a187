"""Twilio REST client: outbound sends, typing indicator and media download.

Security: NEVER log phone numbers, message text or media URLs. Only log
hashes and lengths.
"""

import time
from typing import Any

import requests

from backbone_relay.domain.models import CarrierCredentials
from backbone_relay.errors import CarrierError, MediaIngestError
from backbone_relay.infra.hashing import hash_identifier
from backbone_relay.observability.correlation import get_correlation_id
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context

logger = get_logger(__name__)

API_BASE_URL = "https://api.twilio.com/2010-04-01"
TYPING_INDICATOR_URL = "https://messaging.twilio.com/v2/Indicators/Typing.json"

# Timeout for HTTP requests (seconds)
HTTP_TIMEOUT = 10
MEDIA_TIMEOUT = 30

# Media larger than this is not ingested
MAX_MEDIA_BYTES = 16 * 1024 * 1024

# Retry config
MAX_RETRIES = 1
RETRY_DELAY = 0.2


def whatsapp_address(number: str) -> str:
    """Format a number as a Twilio WhatsApp address ("whatsapp:+<digits>")."""
    digits = number.strip()
    if digits.lower().startswith("whatsapp:"):
        return digits
    if not digits.startswith("+"):
        digits = "+" + digits
    return f"whatsapp:{digits}"


def _error_from_response(response: requests.Response) -> CarrierError:
    carrier_message = None
    try:
        body = response.json()
        if isinstance(body, dict):
            carrier_message = body.get("message") or None
    except ValueError:
        carrier_message = None
    return CarrierError(
        f"twilio returned HTTP {response.status_code}",
        status_code=response.status_code,
        carrier_message=carrier_message,
    )


class TwilioClient:
    """CarrierClient implementation over the Twilio REST API."""

    def __init__(self, session: requests.Session | None = None) -> None:
        self._session = session or requests.Session()

    def _post(self, url: str, data: dict[str, str], credentials: CarrierCredentials) -> dict[str, Any]:
        """POST form data. Raises CarrierError on network or HTTP errors."""
        try:
            response = self._session.post(
                url,
                data=data,
                auth=(credentials.account_sid, credentials.auth_token),
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise CarrierError(f"twilio request failed: {type(exc).__name__}") from exc
        if not response.ok:
            raise _error_from_response(response)
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    def send_text(self, credentials: CarrierCredentials, to_identity: str, text: str) -> str:
        """Send a WhatsApp text message. Returns the Twilio message sid.

        Args:
            credentials: Relay Twilio account.
            to_identity: Recipient normalized phone (digits). NEVER logged.
            text: Message text. NEVER logged.

        Raises:
            CarrierError: On network/HTTP errors after retry.
        """
        url = f"{API_BASE_URL}/Accounts/{credentials.account_sid}/Messages.json"
        data = {
            "From": whatsapp_address(credentials.whatsapp_number),
            "To": whatsapp_address(to_identity),
            "Body": text,
        }

        # Safe logging context - NEVER include to_identity or text
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            to_hash=hash_identifier(to_identity),
            text_len=len(text),
            provider="twilio",
        )

        logger.info("sending outbound message via twilio", extra={"extra_fields": log_ctx})

        for attempt in range(MAX_RETRIES + 1):
            try:
                result = self._post(url, data, credentials)
            except CarrierError as e:
                if attempt < MAX_RETRIES and e.is_transient:
                    logger.warning(
                        "outbound send via twilio failed, retrying",
                        extra={
                            "extra_fields": {
                                **log_ctx,
                                "attempt": str(attempt),
                                "status_code": str(e.status_code),
                            }
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "outbound send via twilio failed",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "attempt": str(attempt),
                            "status_code": str(e.status_code),
                        }
                    },
                )
                raise

            sid = str(result.get("sid") or "")
            logger.info(
                "outbound message sent via twilio",
                extra={"extra_fields": {**log_ctx, "attempt": str(attempt)}},
            )
            return sid

        raise CarrierError("twilio send exhausted retries")

    def send_typing_indicator(self, credentials: CarrierCredentials, carrier_message_id: str) -> None:
        """Show "typing..." on the user's device for the given inbound message.

        Raises:
            CarrierError: On network/HTTP errors (no retry, best-effort only).
        """
        self._post(
            TYPING_INDICATOR_URL,
            {"messageId": carrier_message_id, "channel": "whatsapp"},
            credentials,
        )

    def download_media(self, credentials: CarrierCredentials, url: str) -> bytes:
        """Download a carrier-hosted attachment using the relay's credentials.

        Twilio answers with a redirect to a short-lived CDN URL; redirects are
        followed.

        Raises:
            CarrierError: On network/HTTP errors or oversized media.
        """
        try:
            response = self._session.get(
                url,
                auth=(credentials.account_sid, credentials.auth_token),
                timeout=MEDIA_TIMEOUT,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise CarrierError(f"media download failed: {type(exc).__name__}") from exc
        if not response.ok:
            raise CarrierError(
                f"media download returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        content = response.content
        if len(content) > MAX_MEDIA_BYTES:
            raise MediaIngestError(f"media too large ({len(content)} bytes)")
        return content
