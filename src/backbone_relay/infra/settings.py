"""Relay settings loaded from environment variables.

All tunables of the relay live here so they can be changed per deployment
without code changes. Credentials are NOT part of these settings; they are
fetched through the config provider (see relay_config.py).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta

from backbone_relay.domain.presence import DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_LIVENESS_WINDOW

DEFAULT_PRIVATE_PREFIXES = ("private:", "/private ", "\U0001f512", "\U0001f510")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "")
    if not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    """Comma-separated list. Entries are kept verbatim (trailing spaces matter)."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return tuple(item for item in raw.split(",") if item)


@dataclass(frozen=True)
class RelaySettings:
    """Tunables of the relay.

    Attributes:
        liveness_window: Max heartbeat age for the local agent to count as live.
        heartbeat_interval: Cadence at which the local agent writes heartbeats.
            The liveness window must cover at least one interval.
        history_window: Messages read from the store per inbound turn.
        compressed_window: Turns rendered into the context snapshot.
        fallback_history_turns: History turns sent to the fallback model.
        fallback_model: Chat completion model used when the agent is offline.
        fallback_max_tokens: Output token budget for the fallback model.
        reply_char_budget: Character budget stated in the fallback prompt.
        assistant_name: Name the assistant uses for itself.
        media_bucket: GCS bucket for republished attachments.
        media_url_ttl: Lifetime of signed media URLs.
        dedupe_carrier_ids: Drop webhook retries with an already-seen MessageSid.
        private_prefixes: Message prefixes that force private visibility.
    """

    liveness_window: timedelta = DEFAULT_LIVENESS_WINDOW
    heartbeat_interval: timedelta = DEFAULT_HEARTBEAT_INTERVAL
    history_window: int = 30
    compressed_window: int = 30
    fallback_history_turns: int = 15
    fallback_model: str = "gpt-4.1-mini"
    fallback_max_tokens: int = 2400
    reply_char_budget: int = 1200
    assistant_name: str = "BACKBONE"
    media_bucket: str = ""
    media_url_ttl: timedelta = timedelta(days=7)
    dedupe_carrier_ids: bool = True
    private_prefixes: tuple[str, ...] = field(default=DEFAULT_PRIVATE_PREFIXES)

    def __post_init__(self) -> None:
        if self.liveness_window < self.heartbeat_interval:
            raise ValueError(
                "liveness window must be at least one heartbeat interval "
                f"({self.liveness_window} < {self.heartbeat_interval})"
            )
        if self.history_window < 1:
            raise ValueError("history_window must be positive")
        # GCS V4 signed URLs cannot outlive 7 days
        if not timedelta(0) < self.media_url_ttl <= timedelta(days=7):
            raise ValueError("media_url_ttl must be between 0 and 7 days")

    @classmethod
    def from_env(cls) -> "RelaySettings":
        """Build settings from RELAY_* environment variables."""
        return cls(
            liveness_window=timedelta(
                seconds=_env_int(
                    "RELAY_PRESENCE_LIVENESS_SECONDS",
                    int(DEFAULT_LIVENESS_WINDOW.total_seconds()),
                )
            ),
            heartbeat_interval=timedelta(
                seconds=_env_int(
                    "RELAY_HEARTBEAT_INTERVAL_SECONDS",
                    int(DEFAULT_HEARTBEAT_INTERVAL.total_seconds()),
                )
            ),
            history_window=_env_int("RELAY_HISTORY_WINDOW", 30),
            compressed_window=_env_int("RELAY_COMPRESSED_WINDOW", 30),
            fallback_history_turns=_env_int("RELAY_FALLBACK_HISTORY_TURNS", 15),
            fallback_model=os.environ.get("RELAY_FALLBACK_MODEL", "gpt-4.1-mini"),
            fallback_max_tokens=_env_int("RELAY_FALLBACK_MAX_TOKENS", 2400),
            reply_char_budget=_env_int("RELAY_REPLY_CHAR_BUDGET", 1200),
            assistant_name=os.environ.get("RELAY_ASSISTANT_NAME", "BACKBONE"),
            media_bucket=os.environ.get("RELAY_MEDIA_BUCKET", ""),
            media_url_ttl=timedelta(days=_env_int("RELAY_MEDIA_URL_TTL_DAYS", 7)),
            dedupe_carrier_ids=_env_bool("RELAY_DEDUPE_CARRIER_IDS", True),
            private_prefixes=_env_list("RELAY_PRIVATE_PREFIXES", DEFAULT_PRIVATE_PREFIXES),
        )
