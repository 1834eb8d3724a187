"""Pending-tasks repository - follow-up markers for the local agent.

Uses raw SQL with psycopg2 (no ORM). The relay only inserts; the local agent
resolves tasks once it has followed up.
"""

from psycopg2.extensions import cursor as PgCursor

from backbone_relay.domain.models import PendingTask

from ..db import fetchone, txn


def insert_pending_task(cur: PgCursor, task: PendingTask) -> str:
    """Insert a pending task. Returns the generated id."""
    row = fetchone(
        cur,
        """
        INSERT INTO pending_tasks (
            user_id, kind, original_message, provisional_response,
            context_snapshot, has_media, user_name, status
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            task.user_id,
            task.kind,
            task.original_message,
            task.provisional_response,
            task.context_snapshot,
            task.has_media,
            task.user_name,
            task.status,
        ),
    )
    return str(row[0])


class PgPendingTaskWriter:
    """PendingTaskWriter backed by the pending_tasks table."""

    def insert(self, task: PendingTask) -> str:
        with txn() as cur:
            return insert_pending_task(cur, task)
