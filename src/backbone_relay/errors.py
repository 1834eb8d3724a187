"""Exception hierarchy for the relay.

None of these ever reach the carrier: the webhook always answers 200 with a
valid TwiML envelope. They exist so that stage failures can be classified in
logs and so that tests can assert on them.
"""


class RelayError(Exception):
    """Base class for relay errors."""


class InvalidPayloadError(RelayError):
    """Raised when the carrier webhook body has an invalid shape."""


class MissingSenderError(InvalidPayloadError):
    """Raised when the webhook body carries no usable sender identity."""


class ConfigurationError(RelayError):
    """Raised when required settings or credentials are missing."""


class CarrierError(RelayError):
    """Raised when the carrier REST API rejects or fails a request.

    Attributes:
        status_code: HTTP status returned by the carrier (None on network errors).
        carrier_message: Error text from the carrier response body, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        carrier_message: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.carrier_message = carrier_message

    @property
    def is_transient(self) -> bool:
        """Network errors, 429 and 5xx are worth retrying; other 4xx are not."""
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class MediaIngestError(RelayError):
    """Raised when a single attachment cannot be downloaded or stored."""
