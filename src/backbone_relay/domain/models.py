"""Relay domain records.

Messages are append-only: once written, `content` and `context_snapshot`
never change. Only delivery bookkeeping (status, carrier id, error, claim)
is updated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

Direction = Literal["inbound", "outbound"]
MessageStatus = Literal["pending", "sent", "error"]
Visibility = Literal["private", "visible"]
MessageSource = Literal["carrier", "fallback", "agent"]
PresenceState = Literal["online", "busy", "offline"]
PendingTaskStatus = Literal["pending", "resolved"]

CHANNEL_WHATSAPP = "whatsapp_carrier"
USER_SOURCE_WHATSAPP = "twilio_whatsapp"
PENDING_TASK_KIND_FOLLOWUP = "channel_followup"


@dataclass(frozen=True)
class User:
    """Durable identity for one channel address."""

    id: str
    channel_identity: str
    private_mode_default: bool = False
    display_name: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class MediaAttachment:
    """A republished attachment: stable signed URL plus declared content type."""

    url: str
    content_type: str

    def to_dict(self) -> dict[str, str]:
        return {"url": self.url, "content_type": self.content_type}

    @classmethod
    def from_dict(cls, data: dict) -> "MediaAttachment":
        return cls(url=str(data.get("url", "")), content_type=str(data.get("content_type", "")))


@dataclass(frozen=True)
class NewMessage:
    """A message about to be appended to the conversation store."""

    user_id: str
    direction: Direction
    content: str
    source: MessageSource
    status: MessageStatus
    visibility: Visibility
    channel: str = CHANNEL_WHATSAPP
    needs_response: bool = False
    carrier_message_id: str | None = None
    context_snapshot: str | None = None
    media: tuple[MediaAttachment, ...] = ()
    deliver_to_channel: bool = False


@dataclass(frozen=True)
class Message:
    """A stored conversation message."""

    id: str
    user_id: str
    direction: Direction
    content: str
    source: MessageSource
    status: MessageStatus
    visibility: Visibility
    channel: str = CHANNEL_WHATSAPP
    needs_response: bool = False
    carrier_message_id: str | None = None
    context_snapshot: str | None = None
    media: tuple[MediaAttachment, ...] = ()
    deliver_to_channel: bool = False
    dispatch_claimed_at: datetime | None = None
    delivery_error: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class HistoryTurn:
    """One message reduced to what prompting needs."""

    direction: Direction
    content: str

    @property
    def role(self) -> Literal["user", "assistant"]:
        return "user" if self.direction == "inbound" else "assistant"


@dataclass(frozen=True)
class PresenceRecord:
    """Heartbeat state written by the user's local agent."""

    state: str
    last_heartbeat_at: datetime | None


@dataclass(frozen=True)
class PendingTask:
    """Marker telling the local agent to follow up on a provisional answer."""

    user_id: str
    original_message: str
    provisional_response: str
    context_snapshot: str | None
    has_media: bool
    user_name: str | None = None
    kind: str = PENDING_TASK_KIND_FOLLOWUP
    status: PendingTaskStatus = "pending"
    id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class CarrierCredentials:
    """Twilio account used for media download, typing indicator and sends."""

    account_sid: str
    auth_token: str
    whatsapp_number: str
    sandbox_join_words: str | None = None


@dataclass(frozen=True)
class IngestedMedia:
    """Result of media ingestion for one inbound message.

    `inline_images` keeps (content_type, bytes) for successfully ingested
    images so the fallback prompt can include them without re-downloading.
    """

    attachments: tuple[MediaAttachment, ...] = ()
    inline_images: tuple[tuple[str, bytes], ...] = field(default=(), repr=False)
    failed_count: int = 0
