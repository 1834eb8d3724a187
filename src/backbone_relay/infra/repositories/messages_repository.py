"""Messages repository - the append-only conversation store.

Uses raw SQL with psycopg2 (no ORM).

Rows are never updated in content: a trigger (see migrations/sql) rejects
changes to `content` and `context_snapshot`. Delivery bookkeeping columns
(status, carrier_message_id, delivery_error, dispatch_claimed_at) are the only
mutable fields.
"""

import json
import uuid

from psycopg2.extensions import cursor as PgCursor

from backbone_relay.domain.models import HistoryTurn, MediaAttachment, Message, NewMessage

from ..db import fetchall, fetchone, txn

_MESSAGE_COLUMNS = """
    id, user_id, direction, content, source, status, visibility, channel,
    needs_response, carrier_message_id, context_snapshot, media,
    deliver_to_channel, dispatch_claimed_at, delivery_error, created_at
"""

# Max length persisted for carrier error text
_MAX_ERROR_LENGTH = 500


def _media_from_json(value) -> tuple[MediaAttachment, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        value = json.loads(value)
    return tuple(MediaAttachment.from_dict(item) for item in value if isinstance(item, dict))


def _row_to_message(row: tuple) -> Message:
    return Message(
        id=str(row[0]),
        user_id=str(row[1]),
        direction=row[2],
        content=row[3] or "",
        source=row[4],
        status=row[5],
        visibility=row[6],
        channel=row[7],
        needs_response=bool(row[8]),
        carrier_message_id=row[9],
        context_snapshot=row[10],
        media=_media_from_json(row[11]),
        deliver_to_channel=bool(row[12]),
        dispatch_claimed_at=row[13],
        delivery_error=row[14],
        created_at=row[15],
    )


def insert_message(cur: PgCursor, message: NewMessage) -> str:
    """Append a message. Returns the generated id."""
    media_json = json.dumps([m.to_dict() for m in message.media]) if message.media else None
    row = fetchone(
        cur,
        """
        INSERT INTO messages (
            user_id, direction, content, source, status, visibility, channel,
            needs_response, carrier_message_id, context_snapshot, media,
            deliver_to_channel
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            message.user_id,
            message.direction,
            message.content,
            message.source,
            message.status,
            message.visibility,
            message.channel,
            message.needs_response,
            message.carrier_message_id,
            message.context_snapshot,
            media_json,
            message.deliver_to_channel,
        ),
    )
    return str(row[0])


def _is_message_id(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def get_message(cur: PgCursor, message_id: str) -> Message | None:
    """Fetch one message. Ids that are not UUIDs match nothing."""
    if not _is_message_id(message_id):
        return None
    row = fetchone(cur, f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id = %s", (message_id,))
    return _row_to_message(row) if row else None


def fetch_recent_history(cur: PgCursor, user_id: str, limit: int) -> list[HistoryTurn]:
    """Most recent `limit` messages with content, returned oldest first."""
    rows = fetchall(
        cur,
        """
        SELECT direction, content FROM messages
        WHERE user_id = %s AND content <> ''
        ORDER BY created_at DESC, id DESC
        LIMIT %s
        """,
        (user_id, limit),
    )
    rows.reverse()
    return [HistoryTurn(direction=row[0], content=row[1]) for row in rows]


def insert_receipt(cur: PgCursor, source: str, external_id: str) -> bool:
    """Insert an inbound receipt. False when the id was already recorded."""
    cur.execute(
        """
        INSERT INTO inbound_receipts (source, external_id)
        VALUES (%s, %s)
        ON CONFLICT (source, external_id) DO NOTHING
        """,
        (source, external_id),
    )
    return cur.rowcount == 1


def claim_message(cur: PgCursor, message_id: str) -> bool:
    """Compare-and-set claim of a pending outbound channel message."""
    cur.execute(
        """
        UPDATE messages
        SET dispatch_claimed_at = now()
        WHERE id = %s
          AND direction = 'outbound'
          AND deliver_to_channel
          AND status = 'pending'
          AND dispatch_claimed_at IS NULL
        """,
        (message_id,),
    )
    return cur.rowcount == 1


def set_sent(cur: PgCursor, message_id: str, carrier_message_id: str | None) -> None:
    cur.execute(
        """
        UPDATE messages
        SET status = 'sent', carrier_message_id = %s, delivery_error = NULL
        WHERE id = %s
        """,
        (carrier_message_id, message_id),
    )


def set_error(cur: PgCursor, message_id: str, error: str) -> None:
    cur.execute(
        "UPDATE messages SET status = 'error', delivery_error = %s WHERE id = %s",
        (error[:_MAX_ERROR_LENGTH], message_id),
    )


def fetch_undispatched_ids(cur: PgCursor, limit: int) -> list[str]:
    rows = fetchall(
        cur,
        """
        SELECT id FROM messages
        WHERE direction = 'outbound'
          AND deliver_to_channel
          AND status = 'pending'
          AND dispatch_claimed_at IS NULL
        ORDER BY created_at
        LIMIT %s
        """,
        (limit,),
    )
    return [str(row[0]) for row in rows]


class PgMessageStore:
    """MessageStore backed by the messages and inbound_receipts tables."""

    def append(self, message: NewMessage) -> str:
        with txn() as cur:
            return insert_message(cur, message)

    def get(self, message_id: str) -> Message | None:
        with txn() as cur:
            return get_message(cur, message_id)

    def recent_history(self, user_id: str, limit: int) -> list[HistoryTurn]:
        with txn() as cur:
            return fetch_recent_history(cur, user_id, limit)

    def record_receipt(self, source: str, external_id: str) -> bool:
        with txn() as cur:
            return insert_receipt(cur, source, external_id)

    def claim_for_dispatch(self, message_id: str) -> bool:
        with txn() as cur:
            return claim_message(cur, message_id)

    def mark_sent(self, message_id: str, carrier_message_id: str | None) -> None:
        with txn() as cur:
            set_sent(cur, message_id, carrier_message_id)

    def mark_error(self, message_id: str, error: str) -> None:
        with txn() as cur:
            set_error(cur, message_id, error)

    def list_undispatched(self, limit: int) -> list[str]:
        with txn() as cur:
            return fetch_undispatched_ids(cur, limit)
