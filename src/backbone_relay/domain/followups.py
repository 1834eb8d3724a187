"""Pending-task queue: "the cloud answered provisionally, follow up later"."""

from __future__ import annotations

from .failures import StageFailure
from .models import PendingTask
from .ports import PendingTaskWriter


class FollowUpQueue:
    """Write-only queue of follow-up tasks for the local agent.

    A lost task only means the agent will not circle back on its own, so
    write failures are returned as a StageFailure instead of raised.
    """

    def __init__(self, writer: PendingTaskWriter) -> None:
        self._writer = writer

    def enqueue(
        self,
        *,
        user_id: str,
        original_message: str,
        provisional_response: str,
        context_snapshot: str | None,
        has_media: bool,
        user_name: str | None = None,
    ) -> StageFailure | None:
        task = PendingTask(
            user_id=user_id,
            original_message=original_message,
            provisional_response=provisional_response,
            context_snapshot=context_snapshot,
            has_media=has_media,
            user_name=user_name or None,
        )
        try:
            self._writer.insert(task)
        except Exception as exc:
            return StageFailure.from_exception("enqueue_pending_task", exc, "no_followup")
        return None
