"""Relay credential configuration.

Carrier (Twilio) and model (OpenAI) credentials come from the `relay_config`
table, one JSONB document per key:

    twilio -> {"accountSid", "authToken", "whatsappNumber", "sandboxJoinWords"}
    openai -> {"apiKey"}

Environment variables fill in anything the document lacks. Values are cached
for the lifetime of the provider after the first complete fetch; incomplete
or failed fetches are retried on the next call.

Security: credential values are never logged.
"""

from __future__ import annotations

import os
from typing import Any, Callable

from backbone_relay.domain.models import CarrierCredentials
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import describe_error, safe_log_context

from .db import fetchone, txn

logger = get_logger(__name__)

TWILIO_CONFIG_KEY = "twilio"
OPENAI_CONFIG_KEY = "openai"

# Twilio sandbox sender, used when no number is configured
DEFAULT_WHATSAPP_NUMBER = "+14155238886"

ConfigLoader = Callable[[str], dict[str, Any]]


def load_config_document(key: str) -> dict[str, Any]:
    """Load one relay_config document from the database ({} when absent)."""
    with txn() as cur:
        row = fetchone(cur, "SELECT value FROM relay_config WHERE key = %s", (key,))
    if row and isinstance(row[0], dict):
        return row[0]
    return {}


def _merge_carrier_with_env(doc: dict[str, Any]) -> CarrierCredentials | None:
    account_sid = doc.get("accountSid") or os.environ.get("TWILIO_ACCOUNT_SID", "")
    auth_token = doc.get("authToken") or os.environ.get("TWILIO_AUTH_TOKEN", "")
    if not account_sid or not auth_token:
        return None
    whatsapp_number = (
        doc.get("whatsappNumber")
        or os.environ.get("TWILIO_WHATSAPP_NUMBER")
        or DEFAULT_WHATSAPP_NUMBER
    )
    join_words = doc.get("sandboxJoinWords") or os.environ.get("TWILIO_SANDBOX_JOIN_WORDS")
    return CarrierCredentials(
        account_sid=str(account_sid),
        auth_token=str(auth_token),
        whatsapp_number=str(whatsapp_number),
        sandbox_join_words=str(join_words) if join_words else None,
    )


def _merge_model_key_with_env(doc: dict[str, Any]) -> str | None:
    key = doc.get("apiKey") or os.environ.get("OPENAI_API_KEY", "")
    return str(key) if key else None


class CachedConfigProvider:
    """ConfigProvider backed by relay_config with process-lifetime caching."""

    def __init__(self, loader: ConfigLoader = load_config_document) -> None:
        self._loader = loader
        self._carrier: CarrierCredentials | None = None
        self._model_key: str | None = None

    def _load(self, key: str) -> dict[str, Any]:
        """Read a document; a read failure degrades to env-only config."""
        try:
            return self._loader(key)
        except Exception as exc:
            logger.warning(
                "relay config read failed, falling back to environment",
                extra={
                    "extra_fields": safe_log_context(
                        config_key=key, error=describe_error(exc)
                    )
                },
            )
            return {}

    def carrier_credentials(self) -> CarrierCredentials | None:
        if self._carrier is None:
            self._carrier = _merge_carrier_with_env(self._load(TWILIO_CONFIG_KEY))
            if self._carrier is None:
                logger.error(
                    "twilio credentials not configured",
                    extra={"extra_fields": safe_log_context(config_key=TWILIO_CONFIG_KEY)},
                )
        return self._carrier

    def model_api_key(self) -> str | None:
        if self._model_key is None:
            self._model_key = _merge_model_key_with_env(self._load(OPENAI_CONFIG_KEY))
        return self._model_key
