"""Conversation-context compression.

The snapshot is rendered from history read *before* the inbound message is
persisted, so it always describes the conversation prior to the current turn.
It is stored on the inbound message and never recomputed.
"""

from typing import Sequence

from .models import HistoryTurn

HISTORY_WINDOW = 30
COMPRESSED_WINDOW = 30
MAX_TURN_CHARS = 200


def compress_history(
    turns: Sequence[HistoryTurn],
    *,
    window: int = COMPRESSED_WINDOW,
    max_chars: int = MAX_TURN_CHARS,
) -> str | None:
    """Render the last `window` turns as "User: ..." / "AI: ..." lines.

    Returns None for an empty window.
    """
    if not turns or window <= 0:
        return None
    recent = list(turns)[-window:]
    lines = [
        f"{'User' if turn.direction == 'inbound' else 'AI'}: {turn.content[:max_chars]}"
        for turn in recent
    ]
    return "\n".join(lines)


def to_chat_messages(turns: Sequence[HistoryTurn], limit: int) -> list[dict[str, str]]:
    """Convert the last `limit` turns into chat-completion role/content dicts."""
    if limit <= 0:
        return []
    return [{"role": turn.role, "content": turn.content} for turn in list(turns)[-limit:]]
