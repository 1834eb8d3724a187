"""Twilio WhatsApp adapter - validate and normalize webhook payloads.

Twilio posts form-encoded fields; some proxies and test tools forward the same
fields as JSON. Both arrive here as a flat mapping and leave as a typed
InboundWebhook, so nothing downstream touches raw key-value data.
"""

from typing import Any, Mapping
from urllib.parse import parse_qsl

from backbone_relay.domain.identity import normalize_phone
from backbone_relay.errors import InvalidPayloadError, MissingSenderError

from .models import DEFAULT_MEDIA_CONTENT_TYPE, InboundWebhook, MediaRef

# Twilio delivers at most 10 attachments per message
MAX_MEDIA_ITEMS = 10


def decode_form_body(raw: bytes) -> dict[str, str]:
    """Decode an application/x-www-form-urlencoded body (last value wins)."""
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidPayloadError("form body is not valid utf-8") from exc
    return dict(parse_qsl(text, keep_blank_values=True))


def _field(fields: Mapping[str, Any], name: str) -> str:
    value = fields.get(name)
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return str(value)


def _media_count(fields: Mapping[str, Any]) -> int:
    raw = _field(fields, "NumMedia").strip()
    if not raw:
        return 0
    try:
        count = int(raw)
    except ValueError:
        return 0
    return max(0, min(count, MAX_MEDIA_ITEMS))


def _extract_media(fields: Mapping[str, Any]) -> tuple[MediaRef, ...]:
    refs = []
    for index in range(_media_count(fields)):
        url = _field(fields, f"MediaUrl{index}").strip()
        if not url:
            continue
        content_type = _field(fields, f"MediaContentType{index}").strip()
        refs.append(MediaRef(url=url, content_type=content_type or DEFAULT_MEDIA_CONTENT_TYPE))
    return tuple(refs)


def parse_webhook(fields: Mapping[str, Any]) -> InboundWebhook:
    """Validate Twilio webhook fields and build an InboundWebhook.

    Args:
        fields: Flat mapping of Twilio field names (From, Body, MessageSid, ...).

    Returns:
        InboundWebhook with a normalized sender.

    Raises:
        InvalidPayloadError: If the payload is not a mapping.
        MissingSenderError: If From is missing or has no digits.
    """
    if not isinstance(fields, Mapping):
        raise InvalidPayloadError("webhook body must be an object")

    sender = normalize_phone(_field(fields, "From"))
    if not sender:
        raise MissingSenderError("missing sender")

    message_sid = _field(fields, "MessageSid").strip() or None

    return InboundWebhook(
        sender=sender,
        body=_field(fields, "Body"),
        message_sid=message_sid,
        profile_name=_field(fields, "ProfileName").strip(),
        media=_extract_media(fields),
    )
