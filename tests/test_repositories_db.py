"""Repository tests against a real Postgres (requires DATABASE_URL).

Assumes migrations have been applied (`alembic upgrade head`).
"""

import os
import threading
import uuid
from datetime import datetime, timezone

import psycopg2
import pytest

from backbone_relay.domain.identity import IdentityResolver
from backbone_relay.domain.models import NewMessage, PendingTask
from backbone_relay.infra.db import get_conn, txn
from backbone_relay.infra.relay_config import load_config_document
from backbone_relay.infra.repositories.messages_repository import PgMessageStore
from backbone_relay.infra.repositories.pending_tasks_repository import PgPendingTaskWriter
from backbone_relay.infra.repositories.presence_repository import PgPresenceReader
from backbone_relay.infra.repositories.user_context_repository import PgUserContextReader
from backbone_relay.infra.repositories.users_repository import PgUserRepository

# Skip all tests if DATABASE_URL is not set
pytestmark = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping repository tests",
)


def _cleanup(identity: str) -> None:
    conn = get_conn()
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT id FROM users WHERE channel_identity = %s", (identity,))
            user_ids = [row[0] for row in cur.fetchall()]
            for table in ("pending_tasks", "messages", "presence", "user_context"):
                cur.execute(f"DELETE FROM {table} WHERE user_id = ANY(%s::uuid[])", (user_ids,))
            cur.execute("DELETE FROM users WHERE channel_identity = %s", (identity,))
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def identity():
    """A channel identity unique to the test, removed afterwards."""
    value = f"test-{uuid.uuid4().hex[:12]}"
    yield value
    _cleanup(value)


@pytest.fixture
def user(identity):
    return PgUserRepository().create(identity)


def _message(user_id: str, content: str, **overrides) -> NewMessage:
    fields = dict(
        user_id=user_id,
        direction="inbound",
        content=content,
        source="carrier",
        status="pending",
        visibility="visible",
    )
    fields.update(overrides)
    return NewMessage(**fields)


class TestUsers:
    def test_create_is_insert_or_get(self, identity):
        repo = PgUserRepository()

        first = repo.create(identity)
        second = repo.create(identity)

        assert first.id == second.id
        assert [u.id for u in repo.find_by_channel_identity(identity)] == [first.id]
        assert repo.get(first.id).channel_identity == identity

    def test_concurrent_first_messages_create_one_user(self, identity):
        """Two webhook calls racing on a new number end up on the same user."""
        resolver = IdentityResolver(PgUserRepository())
        num_threads = 2
        barrier = threading.Barrier(num_threads)
        results: list[str] = []
        errors: list[Exception] = []

        def worker():
            try:
                barrier.wait()
                results.append(resolver.resolve(identity).id)
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(num_threads)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(set(results)) == 1
        assert len(PgUserRepository().find_by_channel_identity(identity)) == 1


class TestMessages:
    def test_history_oldest_first_skips_empty(self, user):
        store = PgMessageStore()
        store.append(_message(user.id, "first"))
        store.append(_message(user.id, ""))
        store.append(_message(user.id, "reply", direction="outbound", source="fallback", status="sent"))

        history = store.recent_history(user.id, 30)

        assert [(t.direction, t.content) for t in history] == [
            ("inbound", "first"),
            ("outbound", "reply"),
        ]

    def test_history_limit_keeps_most_recent(self, user):
        store = PgMessageStore()
        for i in range(5):
            store.append(_message(user.id, f"m{i}"))

        assert [t.content for t in store.recent_history(user.id, 2)] == ["m3", "m4"]

    def test_receipt_dedupe(self):
        store = PgMessageStore()
        external_id = f"SM{uuid.uuid4().hex}"

        assert store.record_receipt("twilio", external_id) is True
        assert store.record_receipt("twilio", external_id) is False

    def test_content_is_immutable(self, user):
        message_id = PgMessageStore().append(_message(user.id, "original"))

        with pytest.raises(psycopg2.Error):
            with txn() as cur:
                cur.execute("UPDATE messages SET content = 'edited' WHERE id = %s", (message_id,))

        assert PgMessageStore().get(message_id).content == "original"

    def test_claim_is_compare_and_set(self, user):
        store = PgMessageStore()
        message_id = store.append(
            _message(
                user.id,
                "queued by agent",
                direction="outbound",
                source="agent",
                deliver_to_channel=True,
            )
        )

        assert message_id in store.list_undispatched(500)
        assert store.claim_for_dispatch(message_id) is True
        assert store.claim_for_dispatch(message_id) is False
        assert message_id not in store.list_undispatched(500)

        store.mark_sent(message_id, "SM_out")
        sent = store.get(message_id)
        assert sent.status == "sent"
        assert sent.carrier_message_id == "SM_out"

    def test_mark_error_truncates(self, user):
        store = PgMessageStore()
        message_id = store.append(_message(user.id, "x", direction="outbound", source="agent"))

        store.mark_error(message_id, "e" * 2000)

        stored = store.get(message_id)
        assert stored.status == "error"
        assert len(stored.delivery_error) == 500


class TestAgentOwnedTables:
    def test_presence_read(self, user):
        seen = datetime(2026, 3, 2, 15, 29, tzinfo=timezone.utc)
        with txn() as cur:
            cur.execute(
                "INSERT INTO presence (user_id, status, last_seen) VALUES (%s, 'online', %s)",
                (user.id, seen),
            )

        record = PgPresenceReader().read(user.id)

        assert record.state == "online"
        assert record.last_heartbeat_at == seen

    def test_presence_missing(self, user):
        assert PgPresenceReader().read(user.id) is None

    def test_user_context_read(self, user):
        with txn() as cur:
            cur.execute(
                "INSERT INTO user_context (user_id, context) VALUES (%s, %s::jsonb)",
                (user.id, '{"thesis": "ship it"}'),
            )

        assert PgUserContextReader().read(user.id)["thesis"] == "ship it"

    def test_pending_task_insert(self, user):
        task_id = PgPendingTaskWriter().insert(
            PendingTask(
                user_id=user.id,
                original_message="hi",
                provisional_response="hello",
                context_snapshot=None,
                has_media=False,
            )
        )

        with txn() as cur:
            cur.execute("SELECT kind, status FROM pending_tasks WHERE id = %s", (task_id,))
            assert cur.fetchone() == ("channel_followup", "pending")


def test_missing_config_document_is_empty():
    assert load_config_document(f"missing-{uuid.uuid4().hex}") == {}
