"""Hashing utilities for PII-free logging.

Phone numbers and user-visible text are never logged. Log statements carry a
short, non-reversible fingerprint instead so that lines belonging to the same
sender can still be correlated.
"""

import hashlib
import hmac
import os

_FINGERPRINT_LENGTH = 12


def _get_log_hash_salt() -> bytes:
    """Salt for identifier fingerprints (optional; unsalted when unset)."""
    return os.environ.get("LOG_HASH_SALT", "").encode()


def hash_identifier(value: str) -> str:
    """Create non-reversible hash for logging. Returns first 12 chars of sha256.

    When LOG_HASH_SALT is configured the digest is an HMAC, so fingerprints
    cannot be brute-forced from the (small) space of phone numbers.
    """
    salt = _get_log_hash_salt()
    if salt:
        digest = hmac.new(salt, value.encode(), hashlib.sha256).hexdigest()
    else:
        digest = hashlib.sha256(value.encode()).hexdigest()
    return digest[:_FINGERPRINT_LENGTH]
