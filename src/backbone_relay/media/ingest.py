"""Media ingestion: carrier-hosted attachments -> durable signed URLs.

Carrier media URLs need carrier credentials and expire, so every attachment
is downloaded once, republished to our own bucket and referenced by a signed
URL from then on. A failed attachment is skipped; it never blocks the text.

Security: media URLs embed account ids and are never logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from backbone_relay.domain.failures import StageFailure
from backbone_relay.domain.models import CarrierCredentials, IngestedMedia, MediaAttachment
from backbone_relay.domain.ports import CarrierClient, MediaStore
from backbone_relay.infra.time import epoch_millis, utc_now
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context
from backbone_relay.whatsapp.models import MediaRef

logger = get_logger(__name__)

MEDIA_PREFIX = "whatsapp-media"
DEFAULT_EXTENSION = "jpg"

_EXTENSIONS = (
    ("png", "png"),
    ("gif", "gif"),
    ("webp", "webp"),
    ("pdf", "pdf"),
    ("ogg", "ogg"),
    ("mp4", "mp4"),
)


def extension_for(content_type: str) -> str:
    """File extension for a declared content type (jpg when unknown)."""
    lowered = (content_type or "").lower()
    for needle, ext in _EXTENSIONS:
        if needle in lowered:
            return ext
    return DEFAULT_EXTENSION


def media_path(user_id: str, index: int, moment: datetime) -> str:
    return f"{MEDIA_PREFIX}/{user_id}/whatsapp-{epoch_millis(moment)}-{index}"


@dataclass(frozen=True)
class IngestResult:
    media: IngestedMedia
    failures: tuple[StageFailure, ...] = ()


class MediaIngestor:
    def __init__(
        self,
        carrier: CarrierClient,
        store: MediaStore,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._carrier = carrier
        self._store = store
        self._clock = clock

    def ingest(
        self,
        user_id: str,
        refs: Sequence[MediaRef],
        credentials: CarrierCredentials | None,
    ) -> IngestResult:
        """Download and republish each attachment, skipping failures."""
        if not refs:
            return IngestResult(media=IngestedMedia())

        if credentials is None:
            failure = StageFailure(
                stage="ingest_media",
                error="carrier credentials unavailable",
                degraded_to="text_only",
                context={"media_count": len(refs)},
            )
            return IngestResult(media=IngestedMedia(failed_count=len(refs)), failures=(failure,))

        attachments: list[MediaAttachment] = []
        inline_images: list[tuple[str, bytes]] = []
        failures: list[StageFailure] = []
        moment = self._clock()

        for index, ref in enumerate(refs):
            try:
                data = self._carrier.download_media(credentials, ref.url)
                path = f"{media_path(user_id, index, moment)}.{extension_for(ref.content_type)}"
                url = self._store.save(
                    path,
                    data,
                    ref.content_type,
                    {"user_id": user_id, "source": "whatsapp"},
                )
            except Exception as exc:
                failures.append(
                    StageFailure.from_exception(
                        "ingest_media", exc, "skip_attachment", media_index=index
                    )
                )
                continue

            attachments.append(MediaAttachment(url=url, content_type=ref.content_type))
            if ref.is_image:
                inline_images.append((ref.content_type, data))

        logger.info(
            "media ingested",
            extra={
                "extra_fields": safe_log_context(
                    user_id=user_id,
                    media_count=len(refs),
                    stored_count=len(attachments),
                    failed_count=len(failures),
                )
            },
        )

        return IngestResult(
            media=IngestedMedia(
                attachments=tuple(attachments),
                inline_images=tuple(inline_images),
                failed_count=len(failures),
            ),
            failures=tuple(failures),
        )
