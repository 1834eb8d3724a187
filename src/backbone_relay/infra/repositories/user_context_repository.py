"""User-context repository - synced profile/portfolio/health document.

The local agent syncs a JSON document per user several times a day. The relay
reads it verbatim; rendering for prompts lives in domain.user_context.
"""

from typing import Any

from psycopg2.extensions import cursor as PgCursor

from ..db import fetchone, txn


def fetch_user_context(cur: PgCursor, user_id: str) -> dict[str, Any] | None:
    row = fetchone(
        cur,
        "SELECT context, synced_at FROM user_context WHERE user_id = %s",
        (user_id,),
    )
    if row is None or not isinstance(row[0], dict):
        return None
    document = dict(row[0])
    if row[1] is not None and "syncedAt" not in document:
        document["syncedAt"] = row[1].isoformat()
    return document


class PgUserContextReader:
    """UserContextReader backed by the user_context table."""

    def read(self, user_id: str) -> dict[str, Any] | None:
        with txn() as cur:
            return fetch_user_context(cur, user_id)
