"""Tests for the fallback responder: prompting, cleanup and canned replies."""

import pytest

from backbone_relay.domain.fallback import (
    ATTACHMENT_ONLY_PROMPT,
    FallbackRequest,
    FallbackResponder,
    canned_acknowledgement,
    clean_completion,
    first_name,
    truncate_text,
)
from backbone_relay.domain.models import HistoryTurn
from backbone_relay.infra.settings import RelaySettings

from helpers import FakeFallbackClient, FakeUserContextReader


def _responder(client=None, contexts=None, context_error=None, **settings):
    return FallbackResponder(
        client or FakeFallbackClient(),
        FakeUserContextReader(contexts, context_error),
        RelaySettings(**settings),
    )


class TestCannedAcknowledgement:
    def test_template_chosen_by_body_length(self):
        assert canned_acknowledgement("abc").startswith('Got it, working on "abc" now.')
        assert canned_acknowledgement("abcd").startswith("Give me a moment on that.")
        assert canned_acknowledgement("abcde").startswith("Good question.")

    def test_personalised_with_name(self):
        assert canned_acknowledgement("abcd", "Ana").startswith("Ana, give me a moment")

    def test_long_body_truncated_in_template(self):
        text = canned_acknowledgement("x" * 300)
        assert '"' + "x" * 77 + '..."' in text
        assert "x" * 100 not in text

    def test_empty_body_is_still_non_empty(self):
        assert canned_acknowledgement("")


class TestCleanCompletion:
    def test_strips_branding_and_signature(self):
        raw = "\U0001f9b4 *BACKBONE*\n\nYour equity is up 2%.\n\n_— 3:45 PM_"
        assert clean_completion(raw, "BACKBONE") == "Your equity is up 2%."

    def test_cuts_at_message_delimiter(self):
        raw = "First part\n---MSG---\nSecond part"
        assert clean_completion(raw, "BACKBONE") == "First part"

    def test_plain_text_untouched(self):
        assert clean_completion("  Just text  ", "BACKBONE") == "Just text"

    def test_branding_only_yields_empty(self):
        assert clean_completion("\U0001f9b4 *BACKBONE*", "BACKBONE") == ""


class TestHelpers:
    def test_first_name_prefers_first_candidate(self):
        assert first_name("Ana Souza", "Someone") == "Ana"
        assert first_name(None, "  ", "Marcus Lee") == "Marcus"
        assert first_name(None, "") == ""

    def test_truncate_collapses_whitespace(self):
        assert truncate_text("a   b\n\nc") == "a b c"
        assert truncate_text("abcdef", 5) == "ab..."


class TestBuildMessages:
    def test_history_limited_and_current_turn_last(self):
        history = [
            HistoryTurn(direction="inbound" if i % 2 == 0 else "outbound", content=f"t{i}")
            for i in range(20)
        ]
        responder = _responder(fallback_history_turns=15)
        messages = responder.build_messages(
            FallbackRequest(user_id="u1", body="now", history=history), None
        )

        assert messages[0]["role"] == "system"
        assert len(messages) == 1 + 15 + 1
        assert messages[1]["content"] == "t5"
        assert messages[-1] == {"role": "user", "content": "now"}

    def test_system_prompt_contents(self):
        responder = _responder(reply_char_budget=900)
        system = responder.build_messages(
            FallbackRequest(user_id="u1", body="hi", first_name="Ana"), "CURRENT FOCUS: x"
        )[0]["content"]

        assert "You are BACKBONE, Ana's personal AI assistant" in system
        assert "WHAT YOU KNOW:\nCURRENT FOCUS: x" in system
        assert "Under 900 chars" in system

    def test_images_inlined_as_data_urls(self):
        responder = _responder()
        current = responder.build_messages(
            FallbackRequest(
                user_id="u1", body="", inline_images=[("image/jpeg", b"\xff\xd8")], has_media=True
            ),
            None,
        )[-1]

        assert current["content"][0] == {"type": "text", "text": "What do you see in this image?"}
        assert current["content"][1] == {
            "type": "image_url",
            "image_url": {"url": "data:image/jpeg;base64,/9g="},
        }

    def test_attachment_without_images(self):
        responder = _responder()
        current = responder.build_messages(
            FallbackRequest(user_id="u1", body="", has_media=True), None
        )[-1]
        assert current == {"role": "user", "content": ATTACHMENT_ONLY_PROMPT}


class TestRespond:
    def test_model_reply_cleaned(self):
        client = FakeFallbackClient("\U0001f9b4 *BACKBONE*\nAll good.")
        reply = _responder(client).respond(FallbackRequest(user_id="u1", body="status?"))

        assert reply.text == "All good."
        assert reply.from_model is True
        assert reply.failures == ()
        assert client.calls[0]["max_tokens"] == 2400

    def test_model_error_canned(self):
        client = FakeFallbackClient(error=TimeoutError("slow"))
        reply = _responder(client).respond(
            FallbackRequest(user_id="u1", body="abcd", first_name="Ana")
        )

        assert reply.from_model is False
        assert reply.text == canned_acknowledgement("abcd", "Ana")
        assert [f.stage for f in reply.failures] == ["fallback_model"]

    def test_none_completion_canned(self):
        reply = _responder(FakeFallbackClient(None)).respond(
            FallbackRequest(user_id="u1", body="abc")
        )
        assert reply.text == canned_acknowledgement("abc")
        assert reply.failures == ()

    def test_context_failure_still_calls_model(self):
        client = FakeFallbackClient("ok")
        reply = _responder(client, context_error=RuntimeError("ctx down")).respond(
            FallbackRequest(user_id="u1", body="hi")
        )

        assert reply.text == "ok"
        assert [f.stage for f in reply.failures] == ["load_user_context"]
        assert "WHAT YOU KNOW" not in client.calls[0]["messages"][0]["content"]

    @pytest.mark.parametrize("body", ["", "x", "a much longer question about goals"])
    def test_always_non_empty(self, body):
        reply = _responder(FakeFallbackClient(error=RuntimeError("x"))).respond(
            FallbackRequest(user_id="u1", body=body)
        )
        assert reply.text.strip()
