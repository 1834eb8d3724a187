"""Collaborator interfaces used by the relay domain.

The orchestrator and dispatcher receive concrete implementations through
their constructors: Postgres repositories and Twilio/OpenAI/GCS clients in
production (see api.wiring), in-memory fakes in tests.
"""

from typing import Any, Protocol, Sequence

from .models import (
    CarrierCredentials,
    HistoryTurn,
    Message,
    NewMessage,
    PendingTask,
    PresenceRecord,
    User,
)


class UserRepository(Protocol):
    def find_by_channel_identity(self, channel_identity: str) -> list[User]:
        """All users registered for the identity, oldest first."""
        ...

    def create(self, channel_identity: str) -> User:
        """Insert-or-get a user for the identity."""
        ...

    def get(self, user_id: str) -> User | None: ...


class MessageStore(Protocol):
    def append(self, message: NewMessage) -> str:
        """Append a message and return its id."""
        ...

    def get(self, message_id: str) -> Message | None: ...

    def recent_history(self, user_id: str, limit: int) -> list[HistoryTurn]:
        """Most recent `limit` turns, chronological, empty content skipped."""
        ...

    def record_receipt(self, source: str, external_id: str) -> bool:
        """Record an inbound carrier id. False if it was already recorded."""
        ...

    def claim_for_dispatch(self, message_id: str) -> bool:
        """Mark an outbound message as claimed. False if already claimed."""
        ...

    def mark_sent(self, message_id: str, carrier_message_id: str | None) -> None: ...

    def mark_error(self, message_id: str, error: str) -> None: ...

    def list_undispatched(self, limit: int) -> list[str]:
        """Ids of outbound channel messages still waiting for dispatch."""
        ...


class PresenceReader(Protocol):
    def read(self, user_id: str) -> PresenceRecord | None: ...


class PendingTaskWriter(Protocol):
    def insert(self, task: PendingTask) -> str: ...


class UserContextReader(Protocol):
    def read(self, user_id: str) -> dict[str, Any] | None:
        """Synced user-context document, or None when nothing was synced."""
        ...


class ConfigProvider(Protocol):
    def carrier_credentials(self) -> CarrierCredentials | None: ...

    def model_api_key(self) -> str | None: ...


class FallbackClient(Protocol):
    def complete(self, messages: Sequence[dict[str, Any]], *, max_tokens: int) -> str | None:
        """Run a chat completion and return the raw text (None when empty)."""
        ...


class CarrierClient(Protocol):
    def download_media(self, credentials: CarrierCredentials, url: str) -> bytes: ...

    def send_typing_indicator(
        self, credentials: CarrierCredentials, carrier_message_id: str
    ) -> None: ...

    def send_text(self, credentials: CarrierCredentials, to_identity: str, text: str) -> str:
        """Send a text message and return the carrier message id."""
        ...


class MediaStore(Protocol):
    def save(self, path: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
        """Persist bytes under `path` and return a signed retrieval URL."""
        ...
