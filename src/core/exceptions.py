"""
Exception taxonomy for the execution gateway.

Every failure raised by a trader derives from GatewayError so that callers
running a decision cycle can isolate one action's failure without catching
programming errors:

- ConfigurationError: bad configuration or key material (fatal at construction)
- NotFoundError: a required position or symbol does not exist
- PrecisionLookupError: a symbol has no precision rules after a metadata fetch
- SigningError: request signing failed (never retried)
- TransientNetworkError: transport failure that survived every retry attempt
- VenueRejection: the venue answered with an error status (never retried)

Partial failures of best-effort cleanup steps are not exceptions; they are
reported through CleanupResult and CancelReport.
"""

from typing import Optional


class GatewayError(Exception):
    """Base class for all execution gateway errors."""
    pass


class ConfigurationError(GatewayError):
    """
    Raised when configuration or credentials are missing or invalid.

    Raised from config loading and from trader constructors (e.g. a private
    key that cannot be parsed). Must be resolved before trading can start.
    """
    pass


class NotFoundError(GatewayError):
    """Raised when a required position, order or symbol does not exist."""
    pass


class PrecisionLookupError(NotFoundError):
    """Raised when a symbol is absent from the venue's exchange metadata."""
    pass


class SigningError(GatewayError):
    """Raised when a wallet signature cannot be produced."""
    pass


class TransientNetworkError(GatewayError):
    """
    Raised for timeouts, connection resets and truncated responses.

    Inside the retry loop this marks an attempt as retryable. Once the
    attempts are exhausted it is raised to the caller with the number of
    attempts made and the last underlying failure in the message.
    """

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class VenueRejection(GatewayError):
    """
    Raised when the venue returns an error response.

    Attributes:
        status_code: HTTP status (None when the SDK reports no status)
        body: Raw response body or venue error message
        code: Venue-specific error code when available
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: str = "",
        code: Optional[int] = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.code = code
