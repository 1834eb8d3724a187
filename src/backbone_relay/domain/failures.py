"""Stage failures and the reporting boundary.

Relay stages never raise into the webhook: a failed stage produces a
StageFailure value, the stage falls back to its degraded default, and the
failure is handed to a reporter. Reporters only observe (they log); nothing
they do can change the envelope returned to the carrier.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from backbone_relay.observability.logging import get_logger
from backbone_relay.observability.redaction import describe_error, safe_log_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class StageFailure:
    """A failure observed in one relay stage.

    Attributes:
        stage: Stage name (e.g. "ingest_media", "check_presence").
        error: PII-free description of the exception.
        degraded_to: What the stage fell back to (e.g. "offline", "text_only").
        context: Extra safe metadata for the log line.
    """

    stage: str
    error: str
    degraded_to: str
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls, stage: str, exc: BaseException, degraded_to: str, **context: Any
    ) -> "StageFailure":
        return cls(stage=stage, error=describe_error(exc), degraded_to=degraded_to, context=context)


class FailureReporter(Protocol):
    def report(self, failure: StageFailure) -> None: ...


class LoggingFailureReporter:
    """Default reporter: one warning line per failure, never raises."""

    def report(self, failure: StageFailure) -> None:
        try:
            logger.warning(
                "relay stage failed",
                extra={
                    "extra_fields": safe_log_context(
                        stage=failure.stage,
                        error=failure.error,
                        degraded_to=failure.degraded_to,
                        **failure.context,
                    )
                },
            )
        except Exception:  # noqa: BLE001 - reporting must not alter the response
            logger.error("failure reporter could not format failure")
