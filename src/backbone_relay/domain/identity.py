"""Identity resolution: carrier sender string -> durable User.

Security: the raw sender and the normalized number are PII. Logs carry only
`hash_identifier(...)` fingerprints.
"""

from __future__ import annotations

import re

from backbone_relay.infra.hashing import hash_identifier
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context

from .models import User
from .ports import UserRepository

logger = get_logger(__name__)

CARRIER_PREFIX = "whatsapp:"
_NON_DIGITS = re.compile(r"\D")

# National significant number length for NANP numbers sent without country code
_US_NATIONAL_LENGTH = 10


def normalize_phone(raw: str | None) -> str | None:
    """Normalize a carrier sender to digits with a leading country code.

    "whatsapp:+1 (555) 123-4567" -> "15551234567"
    "5551234567"                 -> "15551234567"
    "447700900123"               -> "447700900123"

    Returns None when no digits remain. Idempotent.
    """
    if not raw:
        return None
    value = str(raw).strip()
    if value.lower().startswith(CARRIER_PREFIX):
        value = value[len(CARRIER_PREFIX):]
    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return None
    if len(digits) == _US_NATIONAL_LENGTH:
        return "1" + digits
    return digits


class IdentityResolver:
    """Maps a normalized phone number to a User, creating one on first contact."""

    def __init__(self, users: UserRepository) -> None:
        self._users = users

    def resolve(self, channel_identity: str) -> User:
        """Return the user for an already-normalized identity.

        Duplicate registrations are a data anomaly: the oldest match wins and
        the anomaly is logged, never raised.
        """
        matches = self._users.find_by_channel_identity(channel_identity)
        if len(matches) > 1:
            logger.warning(
                "multiple users share a channel identity, using first match",
                extra={
                    "extra_fields": safe_log_context(
                        identity_hash=hash_identifier(channel_identity),
                        match_count=len(matches),
                        user_id=matches[0].id,
                    )
                },
            )
        if matches:
            return matches[0]

        user = self._users.create(channel_identity)
        logger.info(
            "user created for new channel identity",
            extra={
                "extra_fields": safe_log_context(
                    identity_hash=hash_identifier(channel_identity),
                    user_id=user.id,
                )
            },
        )
        return user
