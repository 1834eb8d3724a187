"""Render the synced user-context document into a compact prompt block."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from backbone_relay.infra.time import coerce_utc, utc_now


def _clip(value: Any, limit: int) -> str:
    return str(value)[:limit]


def _portfolio_lines(p: dict[str, Any]) -> list[str]:
    day_pl = p.get("dayPL") or 0
    sign = "+" if isinstance(day_pl, (int, float)) and day_pl >= 0 else ""
    lines = [
        f"PORTFOLIO: ${p.get('equity') or '?'} equity, ${sign}{day_pl} today, "
        f"{p.get('positionCount') or 0} positions"
    ]
    if p.get("topPositions"):
        lines.append(f"Positions: {p['topPositions']}")
    if p.get("analysis"):
        lines.append(f"Portfolio analysis: {_clip(p['analysis'], 500)}")
    return lines


def _health_lines(h: dict[str, Any]) -> list[str]:
    lines = []
    labels = (("sleepScore", "Sleep"), ("readiness", "Readiness"), ("activity", "Activity"), ("steps", "Steps"))
    scores = [f"{label}:{h[key]}" for key, label in labels if h.get(key)]
    if scores:
        lines.append(f"HEALTH: {', '.join(scores)}")
    if h.get("analysis"):
        lines.append(f"Health notes: {_clip(h['analysis'], 300)}")
    return lines


def _brokerage_lines(b: dict[str, Any]) -> list[str]:
    lines = []
    parts = []
    if b.get("netWorth"):
        try:
            parts.append(f"Net Worth: ${float(b['netWorth']):,.0f}")
        except (TypeError, ValueError):
            parts.append(f"Net Worth: ${b['netWorth']}")
    if b.get("connectedBrokerages"):
        parts.append(f"Connected: {b['connectedBrokerages']}")
    if b.get("accountCount"):
        parts.append(f"{b['accountCount']} accounts")
    if b.get("holdingCount"):
        parts.append(f"{b['holdingCount']} holdings")
    if parts:
        lines.append(f"BROKERAGE/NET WORTH: {', '.join(parts)}")
    if b.get("accounts"):
        lines.append(f"Accounts: {_clip(b['accounts'], 600)}")
    if b.get("topHoldings"):
        lines.append(f"Top holdings: {_clip(b['topHoldings'], 400)}")
    if b.get("lastSync"):
        lines.append(f"Brokerage last sync: {b['lastSync']}")
    return lines


def render_user_context(doc: dict[str, Any] | None, now: datetime | None = None) -> str | None:
    """Compact text block for the fallback prompt, or None when empty."""
    if not doc:
        return None
    parts: list[str] = []

    if isinstance(doc.get("portfolio"), dict):
        parts.extend(_portfolio_lines(doc["portfolio"]))
    if isinstance(doc.get("health"), dict):
        parts.extend(_health_lines(doc["health"]))
    goals = doc.get("goals")
    if isinstance(goals, dict):
        parts.append(f"ACTIVE GOALS ({goals.get('count') or 0}): {goals.get('active') or 'none'}")
    if doc.get("projects"):
        parts.append(f"PROJECTS: {_clip(doc['projects'], 400)}")
    if doc.get("thesis"):
        parts.append(f"CURRENT FOCUS: {_clip(doc['thesis'], 400)}")
    if doc.get("beliefs"):
        parts.append(f"CORE BELIEFS: {doc['beliefs']}")
    if isinstance(doc.get("brokerage"), dict):
        parts.extend(_brokerage_lines(doc["brokerage"]))
    if doc.get("recentWork"):
        parts.append(f"RECENT WORK: {_clip(doc['recentWork'], 300)}")
    profile = doc.get("profile")
    if isinstance(profile, dict) and profile.get("preferences"):
        parts.append(f"PROFILE: {_clip(profile['preferences'], 200)}")

    # Freshness only makes sense next to actual data
    synced_at = coerce_utc(doc.get("syncedAt"))
    if parts and synced_at is not None:
        age_hours = round(((now or utc_now()) - synced_at).total_seconds() / 3600)
        parts.append(f"(Data freshness: {age_hours}h ago)")

    return "\n".join(parts) if parts else None
