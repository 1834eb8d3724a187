"""Shared test helpers: in-memory collaborators and builders.

These are NOT fixtures - they are regular classes/functions imported by
conftest.py and individual test files.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from backbone_relay.domain.fallback import FallbackResponder
from backbone_relay.domain.followups import FollowUpQueue
from backbone_relay.domain.identity import IdentityResolver
from backbone_relay.domain.models import (
    CarrierCredentials,
    HistoryTurn,
    Message,
    NewMessage,
    PendingTask,
    PresenceRecord,
    User,
)
from backbone_relay.domain.outbound import OutboundDispatcher
from backbone_relay.domain.presence import PresenceTracker
from backbone_relay.domain.relay import RelayOrchestrator
from backbone_relay.errors import CarrierError
from backbone_relay.infra.settings import RelaySettings
from backbone_relay.media.ingest import MediaIngestor

NOW = datetime(2026, 3, 2, 15, 30, tzinfo=timezone.utc)

TEST_CREDENTIALS = CarrierCredentials(
    account_sid="AC_test",
    auth_token="token_test",
    whatsapp_number="+14155238886",
)


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self):
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs):
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs):
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs):
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs):
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs):
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs):
        self._record("debug", *args, **kwargs)

    def messages(self) -> list[str]:
        return [args[0] for _, args, _ in self.calls if args]

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)


class FakeUserRepository:
    def __init__(self, users: list[User] | None = None):
        self.users: list[User] = list(users or [])
        self.create_calls = 0
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def find_by_channel_identity(self, channel_identity: str) -> list[User]:
        return [u for u in self.users if u.channel_identity == channel_identity]

    def create(self, channel_identity: str) -> User:
        with self._lock:
            self.create_calls += 1
            existing = self.find_by_channel_identity(channel_identity)
            if existing:
                return existing[0]
            user = User(id=f"user-{next(self._ids)}", channel_identity=channel_identity)
            self.users.append(user)
            return user

    def get(self, user_id: str) -> User | None:
        return next((u for u in self.users if u.id == user_id), None)


class FakeMessageStore:
    def __init__(self):
        self.messages: dict[str, Message] = {}
        self.receipts: set[tuple[str, str]] = set()
        self.fail_append_for: set[str] = set()
        self.fail_history = False
        self.fail_receipts = False
        self.fail_status_writes = False
        self._ids = itertools.count(1)

    def append(self, message: NewMessage) -> str:
        if message.direction in self.fail_append_for:
            raise RuntimeError("insert failed")
        message_id = f"msg-{next(self._ids)}"
        self.messages[message_id] = Message(id=message_id, **message.__dict__)
        return message_id

    def add(self, **fields: Any) -> str:
        """Seed a message directly (tests for the dispatcher)."""
        return self.append(NewMessage(**fields))

    def get(self, message_id: str) -> Message | None:
        return self.messages.get(message_id)

    def by_direction(self, direction: str) -> list[Message]:
        return [m for m in self.messages.values() if m.direction == direction]

    def recent_history(self, user_id: str, limit: int) -> list[HistoryTurn]:
        if self.fail_history:
            raise RuntimeError("history unavailable")
        turns = [
            HistoryTurn(direction=m.direction, content=m.content)
            for m in self.messages.values()
            if m.user_id == user_id and m.content
        ]
        return turns[-limit:]

    def record_receipt(self, source: str, external_id: str) -> bool:
        if self.fail_receipts:
            raise RuntimeError("receipts unavailable")
        key = (source, external_id)
        if key in self.receipts:
            return False
        self.receipts.add(key)
        return True

    def claim_for_dispatch(self, message_id: str) -> bool:
        message = self.messages[message_id]
        if message.dispatch_claimed_at is not None or message.status != "pending":
            return False
        self.messages[message_id] = replace(message, dispatch_claimed_at=NOW)
        return True

    def mark_sent(self, message_id: str, carrier_message_id: str | None) -> None:
        if self.fail_status_writes:
            raise RuntimeError("status write failed")
        self.messages[message_id] = replace(
            self.messages[message_id], status="sent", carrier_message_id=carrier_message_id
        )

    def mark_error(self, message_id: str, error: str) -> None:
        if self.fail_status_writes:
            raise RuntimeError("status write failed")
        self.messages[message_id] = replace(
            self.messages[message_id], status="error", delivery_error=error
        )

    def list_undispatched(self, limit: int) -> list[str]:
        return [
            m.id
            for m in self.messages.values()
            if m.direction == "outbound"
            and m.deliver_to_channel
            and m.status == "pending"
            and m.dispatch_claimed_at is None
        ][:limit]


class FakePresenceReader:
    def __init__(self, records: dict[str, PresenceRecord] | None = None, error: Exception | None = None):
        self.records = dict(records or {})
        self.error = error

    def read(self, user_id: str) -> PresenceRecord | None:
        if self.error is not None:
            raise self.error
        return self.records.get(user_id)


class FakePendingTaskWriter:
    def __init__(self, error: Exception | None = None):
        self.tasks: list[PendingTask] = []
        self.error = error

    def insert(self, task: PendingTask) -> str:
        if self.error is not None:
            raise self.error
        self.tasks.append(task)
        return f"task-{len(self.tasks)}"


class FakeUserContextReader:
    def __init__(self, documents: dict[str, dict] | None = None, error: Exception | None = None):
        self.documents = dict(documents or {})
        self.error = error

    def read(self, user_id: str) -> dict | None:
        if self.error is not None:
            raise self.error
        return self.documents.get(user_id)


class FakeConfigProvider:
    def __init__(self, credentials: CarrierCredentials | None = TEST_CREDENTIALS, api_key: str | None = "sk-test"):
        self.credentials = credentials
        self.api_key = api_key

    def carrier_credentials(self) -> CarrierCredentials | None:
        return self.credentials

    def model_api_key(self) -> str | None:
        return self.api_key


class FakeFallbackClient:
    def __init__(self, reply: str | None = "Here is your answer.", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[dict] = []

    def complete(self, messages, *, max_tokens: int) -> str | None:
        self.calls.append({"messages": list(messages), "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.reply


class FakeCarrierClient:
    def __init__(self):
        self.media: dict[str, bytes] = {}
        self.typing_calls: list[str] = []
        self.sent: list[tuple[str, str]] = []
        self.typing_error: Exception | None = None
        self.send_error: Exception | None = None
        self.next_sid = "SM_out_1"

    def download_media(self, credentials: CarrierCredentials, url: str) -> bytes:
        if url not in self.media:
            raise CarrierError("media download returned HTTP 404", status_code=404)
        return self.media[url]

    def send_typing_indicator(self, credentials: CarrierCredentials, carrier_message_id: str) -> None:
        self.typing_calls.append(carrier_message_id)
        if self.typing_error is not None:
            raise self.typing_error

    def send_text(self, credentials: CarrierCredentials, to_identity: str, text: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((to_identity, text))
        return self.next_sid


class FakeMediaStore:
    def __init__(self):
        self.saved: dict[str, tuple[bytes, str, dict]] = {}

    def save(self, path: str, data: bytes, content_type: str, metadata: dict[str, str]) -> str:
        self.saved[path] = (data, content_type, metadata)
        return f"https://storage.example/{path}?X-Goog-Signature=abc"


class RecordingReporter:
    def __init__(self):
        self.failures = []

    def report(self, failure) -> None:
        self.failures.append(failure)

    def stages(self) -> list[str]:
        return [f.stage for f in self.failures]


def live_presence(user_id: str, age: timedelta = timedelta(minutes=1), state: str = "online"):
    return {user_id: PresenceRecord(state=state, last_heartbeat_at=NOW - age)}


class RelayHarness:
    """An orchestrator wired to in-memory fakes, with every fake exposed."""

    def __init__(
        self,
        *,
        users: list[User] | None = None,
        presence: dict[str, PresenceRecord] | None = None,
        presence_error: Exception | None = None,
        fallback_reply: str | None = "Here is your answer.",
        fallback_error: Exception | None = None,
        task_error: Exception | None = None,
        contexts: dict[str, dict] | None = None,
        credentials: CarrierCredentials | None = TEST_CREDENTIALS,
        settings: RelaySettings | None = None,
    ):
        self.settings = settings or RelaySettings()
        self.users = FakeUserRepository(users)
        self.messages = FakeMessageStore()
        self.presence = FakePresenceReader(presence, presence_error)
        self.tasks = FakePendingTaskWriter(task_error)
        self.contexts = FakeUserContextReader(contexts)
        self.config = FakeConfigProvider(credentials)
        self.model = FakeFallbackClient(fallback_reply, fallback_error)
        self.carrier = FakeCarrierClient()
        self.media_store = FakeMediaStore()
        self.reporter = RecordingReporter()
        self.relay = RelayOrchestrator(
            identities=IdentityResolver(self.users),
            messages=self.messages,
            presence=PresenceTracker(
                self.presence, window=self.settings.liveness_window, clock=lambda: NOW
            ),
            media=MediaIngestor(self.carrier, self.media_store, clock=lambda: NOW),
            responder=FallbackResponder(self.model, self.contexts, self.settings),
            followups=FollowUpQueue(self.tasks),
            carrier=self.carrier,
            config=self.config,
            settings=self.settings,
            reporter=self.reporter,
        )

    def handle(self, **fields: Any):
        return self.relay.handle(fields)


def make_dispatcher(
    messages: FakeMessageStore,
    users: FakeUserRepository,
    carrier: FakeCarrierClient | None = None,
    config: FakeConfigProvider | None = None,
) -> OutboundDispatcher:
    return OutboundDispatcher(
        messages=messages,
        users=users,
        carrier=carrier or FakeCarrierClient(),
        config=config or FakeConfigProvider(),
    )
