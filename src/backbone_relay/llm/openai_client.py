"""OpenAI chat-completion client for the fallback responder."""

from __future__ import annotations

import threading
from typing import Any, Sequence

from openai import OpenAI

from backbone_relay.domain.ports import ConfigProvider
from backbone_relay.errors import ConfigurationError
from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import safe_log_context

logger = get_logger(__name__)

DEFAULT_TIMEOUT = 20.0


class OpenAIFallbackClient:
    """FallbackClient backed by the OpenAI SDK.

    The SDK client is built on first use from the configured API key and then
    reused for the life of the process.
    """

    def __init__(
        self,
        config: ConfigProvider,
        *,
        model: str,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._config = config
        self._model = model
        self._timeout = timeout
        self._client: OpenAI | None = None
        self._lock = threading.Lock()

    def _get_client(self) -> OpenAI:
        with self._lock:
            if self._client is None:
                api_key = self._config.model_api_key()
                if not api_key:
                    raise ConfigurationError("model API key not configured")
                self._client = OpenAI(api_key=api_key, timeout=self._timeout, max_retries=0)
            return self._client

    def complete(self, messages: Sequence[dict[str, Any]], *, max_tokens: int) -> str | None:
        response = self._get_client().chat.completions.create(
            model=self._model,
            messages=list(messages),
            max_tokens=max_tokens,
        )
        if not response.choices:
            return None
        text = response.choices[0].message.content
        logger.info(
            "fallback completion received",
            extra={
                "extra_fields": safe_log_context(
                    model=self._model,
                    text_len=len(text or ""),
                    message_count=len(messages),
                )
            },
        )
        return text or None
