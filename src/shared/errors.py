"""Error types raised by the follow-up core and mapped at the HTTP boundary."""


class ConfigurationError(Exception):
    """Required configuration (settings row, API key, credentials) is missing."""


class NotFoundError(Exception):
    """A referenced patient, call, or message does not exist."""


class ProviderError(Exception):
    """An external voice or messaging provider rejected or failed a request.

    Attributes:
        provider: Provider name ("retell" or "twilio").
        message: Provider error message, verbatim where available.
        status_code: HTTP status from the provider, if any.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: int | None = None,
    ) -> None:
        """Initialize ProviderError.

        Args:
            provider: Provider name.
            message: Human-readable error message.
            status_code: Optional provider HTTP status code.
        """
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code


class AttemptLimitError(Exception):
    """A patient has already used up the attempts allowed on a channel."""
