"""Presence tracking for the user's local agent.

The local agent writes a heartbeat roughly every heartbeat interval. The relay
only reads it: a record is live when its state is online/busy and the last
heartbeat is no older than the liveness window. Everything else (no record,
unknown state, stale or unparseable heartbeat) is offline.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from backbone_relay.infra.time import utc_now

from .models import PresenceRecord
from .ports import PresenceReader

LIVE_STATES = frozenset({"online", "busy"})

DEFAULT_LIVENESS_WINDOW = timedelta(minutes=5)
DEFAULT_HEARTBEAT_INTERVAL = timedelta(minutes=2)


def is_record_live(
    record: PresenceRecord | None,
    now: datetime,
    window: timedelta = DEFAULT_LIVENESS_WINDOW,
) -> bool:
    """Apply the liveness rule to a single record at time `now`."""
    if record is None or record.last_heartbeat_at is None:
        return False
    if str(record.state).lower() not in LIVE_STATES:
        return False
    age = now - record.last_heartbeat_at
    return age <= window


class PresenceTracker:
    """Read-only liveness check. Reader errors propagate to the caller."""

    def __init__(
        self,
        reader: PresenceReader,
        *,
        window: timedelta = DEFAULT_LIVENESS_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._reader = reader
        self._window = window
        self._clock = clock

    def is_live(self, user_id: str) -> bool:
        return is_record_live(self._reader.read(user_id), self._clock(), self._window)
