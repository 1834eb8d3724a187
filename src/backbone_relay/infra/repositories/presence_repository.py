"""Presence repository - read-only access to local-agent heartbeats.

The local agent owns writes to the presence table; the relay only reads.
"""

from psycopg2.extensions import cursor as PgCursor

from backbone_relay.domain.models import PresenceRecord
from backbone_relay.infra.time import coerce_utc

from ..db import fetchone, txn


def fetch_presence(cur: PgCursor, user_id: str) -> PresenceRecord | None:
    row = fetchone(
        cur,
        "SELECT status, last_seen FROM presence WHERE user_id = %s",
        (user_id,),
    )
    if row is None:
        return None
    return PresenceRecord(state=str(row[0] or "offline"), last_heartbeat_at=coerce_utc(row[1]))


class PgPresenceReader:
    """PresenceReader backed by the presence table."""

    def read(self, user_id: str) -> PresenceRecord | None:
        with txn() as cur:
            return fetch_presence(cur, user_id)
