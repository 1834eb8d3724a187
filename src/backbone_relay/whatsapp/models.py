"""WhatsApp carrier message models."""

from dataclasses import dataclass, field

DEFAULT_MEDIA_CONTENT_TYPE = "image/jpeg"


@dataclass(frozen=True)
class MediaRef:
    """Carrier-hosted attachment reference (requires carrier auth to fetch)."""

    url: str
    content_type: str = DEFAULT_MEDIA_CONTENT_TYPE

    @property
    def is_image(self) -> bool:
        return self.content_type.lower().startswith("image/")


@dataclass(frozen=True)
class InboundWebhook:
    """Validated Twilio WhatsApp webhook payload.

    ATTENTION PII:
    - `sender`, `body` and `profile_name` are PII
    - Never log them; log `hash_identifier(sender)` and `len(body)` instead
    """

    sender: str
    body: str
    message_sid: str | None = None
    profile_name: str = ""
    media: tuple[MediaRef, ...] = field(default=())

    @property
    def has_media(self) -> bool:
        return bool(self.media)
