"""Fallback responder - answers when the local agent is offline.

Builds a prompt from the user's synced context and recent history, asks a
general-purpose chat model, and cleans up the completion. If the model fails
or returns nothing, one of three canned acknowledgements is used instead, so
the responder always yields non-empty text and never raises.
"""

from __future__ import annotations

import base64
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from backbone_relay.infra.settings import RelaySettings

from .conversation import to_chat_messages
from .failures import StageFailure
from .models import HistoryTurn
from .ports import FallbackClient, UserContextReader
from .user_context import render_user_context

MESSAGE_DELIMITER = re.compile(r"---MSG---", re.IGNORECASE)
_TRAILING_SIGNATURE = re.compile(r"\n*_[—-]\s*\d{1,2}:\d{2}\s*(AM|PM)_\s*$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")

DEFAULT_IMAGE_PROMPT = "What do you see in this image?"
ATTACHMENT_ONLY_PROMPT = "[The user sent an attachment]"


@dataclass(frozen=True)
class FallbackRequest:
    """Everything the responder needs for one offline turn."""

    user_id: str
    body: str
    history: Sequence[HistoryTurn] = ()
    first_name: str = ""
    inline_images: Sequence[tuple[str, bytes]] = field(default=(), repr=False)
    has_media: bool = False


@dataclass(frozen=True)
class FallbackReply:
    text: str
    from_model: bool
    failures: tuple[StageFailure, ...] = ()


def first_name(*candidates: str | None) -> str:
    """First word of the first non-empty candidate name."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip().split()[0]
    return ""


def truncate_text(value: str, max_chars: int = 120) -> str:
    """Collapse whitespace and cut to `max_chars` with an ellipsis."""
    text = _WHITESPACE.sub(" ", value or "").strip()
    if len(text) <= max_chars:
        return text
    return text[: max(0, max_chars - 3)] + "..."


def canned_acknowledgement(body: str, name: str = "") -> str:
    """Deterministic holding reply, chosen by len(body) % 3."""
    prefix = f"{name}, g" if name else "G"
    current = truncate_text(body, 80) or "that"
    templates = (
        f'{prefix}ot it, working on "{current}" now. '
        "I'll circle back with the full answer in a few.",
        f"{prefix}ive me a moment on that. "
        "I'm pulling up everything I need and I'll get back to you shortly.",
        f"{prefix}ood question. Let me dig into that properly and follow up. "
        "Don't want to give you a half-baked answer.",
    )
    return templates[len(body) % len(templates)]


def clean_completion(raw: str, assistant_name: str) -> str:
    """Strip branding header and timestamp signature, keep the first segment."""
    branding = re.compile(
        rf"^\U0001f9b4\s*\*?{re.escape(assistant_name)}\*?\s*\n*", re.IGNORECASE
    )
    text = branding.sub("", raw.strip())
    text = _TRAILING_SIGNATURE.sub("", text)
    text = MESSAGE_DELIMITER.split(text, maxsplit=1)[0]
    return text.strip()


def build_system_prompt(
    *,
    assistant_name: str,
    name: str,
    user_context: str | None,
    char_budget: int,
) -> str:
    owner = f"{name}'s" if name else "a user's"
    known = f"WHAT YOU KNOW:\n{user_context}\n" if user_context else ""
    return (
        f"You are {assistant_name}, {owner} personal AI assistant. You know them from "
        "their synced data below. Be direct, helpful, and conversational.\n\n"
        f"{known}"
        "RULES:\n"
        "- Address their question FIRST. Be concise. WhatsApp format (*bold*, _italic_, •).\n"
        f"- Under {char_budget} chars. If you have the data, give a real answer with specifics.\n"
        '- If you don\'t have the data for something, say "Let me check on that" or '
        '"I\'ll pull that up" and follow up later.\n'
        '- NEVER say "I don\'t have access" or "I can\'t check." Never mention cloud/local '
        "mode or system internals.\n"
        "- Sound like a sharp friend, not a bot."
    )


def _current_turn(request: FallbackRequest) -> dict[str, Any]:
    if request.inline_images:
        content: list[dict[str, Any]] = [
            {"type": "text", "text": request.body or DEFAULT_IMAGE_PROMPT}
        ]
        for content_type, data in request.inline_images:
            encoded = base64.b64encode(data).decode("ascii")
            content.append(
                {"type": "image_url", "image_url": {"url": f"data:{content_type};base64,{encoded}"}}
            )
        return {"role": "user", "content": content}
    if not request.body and request.has_media:
        return {"role": "user", "content": ATTACHMENT_ONLY_PROMPT}
    return {"role": "user", "content": request.body}


class FallbackResponder:
    """Cloud stand-in for the local agent."""

    def __init__(
        self,
        client: FallbackClient,
        context_reader: UserContextReader,
        settings: RelaySettings,
    ) -> None:
        self._client = client
        self._context_reader = context_reader
        self._settings = settings

    def build_messages(
        self, request: FallbackRequest, user_context: str | None
    ) -> list[dict[str, Any]]:
        system = build_system_prompt(
            assistant_name=self._settings.assistant_name,
            name=request.first_name,
            user_context=user_context,
            char_budget=self._settings.reply_char_budget,
        )
        messages: list[dict[str, Any]] = [{"role": "system", "content": system}]
        messages.extend(to_chat_messages(request.history, self._settings.fallback_history_turns))
        messages.append(_current_turn(request))
        return messages

    def respond(self, request: FallbackRequest) -> FallbackReply:
        failures: list[StageFailure] = []

        user_context = None
        try:
            user_context = render_user_context(self._context_reader.read(request.user_id))
        except Exception as exc:
            failures.append(StageFailure.from_exception("load_user_context", exc, "no_context"))

        text = ""
        try:
            raw = self._client.complete(
                self.build_messages(request, user_context),
                max_tokens=self._settings.fallback_max_tokens,
            )
            if raw:
                text = clean_completion(raw, self._settings.assistant_name)
        except Exception as exc:
            failures.append(StageFailure.from_exception("fallback_model", exc, "canned_reply"))

        if text:
            return FallbackReply(text=text, from_model=True, failures=tuple(failures))

        return FallbackReply(
            text=canned_acknowledgement(request.body, request.first_name),
            from_model=False,
            failures=tuple(failures),
        )
