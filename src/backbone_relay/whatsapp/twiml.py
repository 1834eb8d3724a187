"""TwiML acknowledgement envelopes returned to the carrier.

Every webhook invocation ends with one of these, always with HTTP 200.
"""

from xml.sax.saxutils import escape

TWIML_CONTENT_TYPE = "text/xml"

EMPTY_ENVELOPE = "<Response></Response>"

GLITCH_TEXT = "Hey, something glitched on my end. Give me a sec and try again."


def help_text(assistant_name: str, sandbox_join_words: str | None = None) -> str:
    """Reply for an empty message (no text, no attachments)."""
    text = (
        f"\U0001f9b4 *{assistant_name}*\n\n"
        "Hey! Just send me a message and I'll get right on it. "
        "Finances, goals, health, research, whatever you need.\n\n"
        'Tip: start a message with "private:" to keep it out of the app.'
    )
    if sandbox_join_words:
        text += f'\nIf this chat stops working, send "{sandbox_join_words}" to reconnect.'
    return text


def glitch_text(assistant_name: str) -> str:
    """Reply for an unhandled error that reached the top-level handler."""
    return f"\U0001f9b4 *{assistant_name}*\n\n{GLITCH_TEXT}"


def render_envelope(text: str | None) -> str:
    """Render a TwiML envelope: empty for None/blank, one <Message> otherwise."""
    if text is None or not text.strip():
        return EMPTY_ENVELOPE
    return f"<Response><Message>{escape(text)}</Message></Response>"
