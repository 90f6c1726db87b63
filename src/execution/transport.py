"""
Bounded-retry HTTP transport.

Outbound calls get up to max_attempts tries. Only transport failures are
retried: timeouts, connection resets and truncated bodies. Any HTTP response
carrying a status and body is a venue decision and fails immediately as
VenueRejection. Signed requests are re-signed on every attempt, so each try
carries a fresh nonce and timestamp.

Backoff is linear: attempt N waits N * backoff_seconds before the next try.
"""

import time
from typing import Any, Callable, Dict, Optional, TypeVar

import requests
from loguru import logger

from src.core.exceptions import (
    ConfigurationError,
    GatewayError,
    TransientNetworkError,
    VenueRejection,
)
from .signing import RequestSigner

T = TypeVar("T")

TRANSIENT_ERRORS = (
    requests.exceptions.Timeout,
    requests.exceptions.ConnectionError,
    requests.exceptions.ChunkedEncodingError,
)

DEFAULT_MAX_ATTEMPTS = 3


class RetryingTransport:
    """
    Executes venue calls with bounded retries.

    call() wraps any zero-argument operation (used for vendor SDK calls);
    request() sends a REST request, signing each attempt when a signer is
    configured.

    Attributes:
        base_url: Venue REST root, e.g. 'https://fapi.asterdex.com'
        max_attempts: Maximum tries per call (default 3)
        backoff_seconds: Linear backoff unit (default 1.0)
        timeout: Per-request timeout in seconds

    Examples:
        >>> transport = RetryingTransport("https://fapi.asterdex.com", signer)
        >>> transport.request("GET", "/fapi/v3/balance")
        [{'asset': 'USDT', 'balance': '100.0', ...}]
    """

    def __init__(
        self,
        base_url: str = "",
        signer: Optional[RequestSigner] = None,
        session: Optional[requests.Session] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: float = 1.0,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep
    ):
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        self.base_url = base_url.rstrip("/")
        self.signer = signer
        self.session = session or requests.Session()
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.timeout = timeout
        self._sleep = sleep

    def _calculate_backoff(self, attempt: int) -> float:
        """
        Delay before the next try after attempt (1-indexed) failed.

        Examples:
            >>> transport._calculate_backoff(1)
            1.0
            >>> transport._calculate_backoff(2)
            2.0
        """
        return attempt * self.backoff_seconds

    def call(self, operation: Callable[[], T], description: str = "venue call") -> T:
        """
        Run operation, retrying on TransientNetworkError.

        Any other exception propagates on the first occurrence.

        Args:
            operation: Zero-argument callable performing one attempt
            description: Label for logs and the exhaustion error

        Returns:
            The operation's result

        Raises:
            TransientNetworkError: After max_attempts transient failures,
                naming the last one
        """
        last_error: Optional[TransientNetworkError] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except TransientNetworkError as e:
                last_error = e
                if attempt >= self.max_attempts:
                    break

                delay = self._calculate_backoff(attempt)
                logger.warning(
                    f"{description} failed: {e}. "
                    f"Retry {attempt}/{self.max_attempts - 1} after {delay}s..."
                )
                self._sleep(delay)

        logger.error(
            f"{description} failed after {self.max_attempts} attempts. "
            f"Last error: {last_error}"
        )
        raise TransientNetworkError(
            f"{description} failed after {self.max_attempts} attempts: {last_error}",
            attempts=self.max_attempts,
        ) from last_error

    def request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        signed: bool = True
    ) -> Any:
        """
        Send a REST request with retries and per-attempt signing.

        POST bodies are form-encoded; GET and DELETE carry a query string.

        Args:
            method: HTTP method
            endpoint: Path below base_url, e.g. '/fapi/v3/order'
            params: Unsigned request parameters
            signed: Whether to sign each attempt with the configured signer

        Returns:
            Decoded JSON response

        Raises:
            VenueRejection: Non-200 response or undecodable body
            TransientNetworkError: Retries exhausted
            SigningError: Signing failed (not retried)
        """
        method = method.upper()
        if signed and self.signer is None:
            raise ConfigurationError(f"Signed request to {endpoint} without a signer")

        def attempt() -> Any:
            payload = dict(params or {})
            if signed:
                payload = self.signer.sign(payload).params
            return self._send(method, endpoint, payload)

        return self.call(attempt, description=f"{method} {endpoint}")

    def _send(self, method: str, endpoint: str, payload: Dict[str, Any]) -> Any:
        url = f"{self.base_url}{endpoint}"
        try:
            if method == "POST":
                response = self.session.request(
                    method,
                    url,
                    data=payload,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self.timeout,
                )
            else:
                response = self.session.request(
                    method, url, params=payload, timeout=self.timeout
                )
        except TRANSIENT_ERRORS as e:
            raise TransientNetworkError(f"{method} {endpoint}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise GatewayError(f"{method} {endpoint} could not be sent: {e}") from e

        if response.status_code != 200:
            raise VenueRejection(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as e:
            raise VenueRejection(
                f"Invalid JSON from {endpoint}: {e}",
                status_code=response.status_code,
                body=response.text,
            ) from e

    def __repr__(self) -> str:
        return (
            f"RetryingTransport(base_url='{self.base_url}', "
            f"max_attempts={self.max_attempts}, signed={self.signer is not None})"
        )
