"""Users repository - channel identity lookup and creation.

Uses raw SQL with psycopg2 (no ORM).

Creation is an insert-or-get on the unique channel_identity index: two
webhook calls racing on the first message from a new number both end up with
the same user row, without any explicit lock.
"""

from psycopg2.extensions import cursor as PgCursor

from backbone_relay.domain.models import USER_SOURCE_WHATSAPP, User

from ..db import fetchall, fetchone, txn

_USER_COLUMNS = "id, channel_identity, private_mode_default, display_name, created_at"

# Enough to detect a duplicate registration without reading every row
_ANOMALY_PROBE_LIMIT = 5


def _row_to_user(row: tuple) -> User:
    return User(
        id=str(row[0]),
        channel_identity=row[1],
        private_mode_default=bool(row[2]),
        display_name=row[3],
        created_at=row[4],
    )


def find_users_by_identity(cur: PgCursor, channel_identity: str) -> list[User]:
    """Return users registered for the identity, oldest first."""
    rows = fetchall(
        cur,
        f"""
        SELECT {_USER_COLUMNS} FROM users
        WHERE channel_identity = %s
        ORDER BY created_at, id
        LIMIT %s
        """,
        (channel_identity, _ANOMALY_PROBE_LIMIT),
    )
    return [_row_to_user(row) for row in rows]


def insert_or_get_user(cur: PgCursor, channel_identity: str) -> User:
    """Create a user for the identity, or return the one a racing call created."""
    row = fetchone(
        cur,
        f"""
        INSERT INTO users (channel_identity, private_mode_default, source)
        VALUES (%s, false, %s)
        ON CONFLICT (channel_identity) DO NOTHING
        RETURNING {_USER_COLUMNS}
        """,
        (channel_identity, USER_SOURCE_WHATSAPP),
    )
    if row is not None:
        return _row_to_user(row)

    # Lost the race: another transaction inserted first
    existing = find_users_by_identity(cur, channel_identity)
    if not existing:
        raise RuntimeError("user insert conflicted but no row is visible")
    return existing[0]


def get_user(cur: PgCursor, user_id: str) -> User | None:
    row = fetchone(cur, f"SELECT {_USER_COLUMNS} FROM users WHERE id = %s", (user_id,))
    return _row_to_user(row) if row else None


class PgUserRepository:
    """UserRepository backed by the users table."""

    def find_by_channel_identity(self, channel_identity: str) -> list[User]:
        with txn() as cur:
            return find_users_by_identity(cur, channel_identity)

    def create(self, channel_identity: str) -> User:
        with txn() as cur:
            return insert_or_get_user(cur, channel_identity)

    def get(self, user_id: str) -> User | None:
        with txn() as cur:
            return get_user(cur, user_id)
