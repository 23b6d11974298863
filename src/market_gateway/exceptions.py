# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the market-data gateway.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from GatewayError, making it easy to catch
all gateway-related exceptions with a single except clause.
"""


class GatewayError(Exception):
    """Base exception for all gateway errors.

    Example:
        try:
            data = await market.fetch_previous_day_data("AAPL")
        except GatewayError as e:
            logger.error(f"Gateway error: {e}")
    """

    pass


class BackendConnectionError(GatewayError):
    """Raised when connection to the key/value store fails.

    The gateway never lets this reach a fetch caller: reads degrade to a
    cache miss and writes are dropped after logging.
    """

    pass


class BackendOperationError(GatewayError):
    """Raised when a key/value store operation fails.

    Typical causes are type errors (incrementing a non-integer value) or a
    server-side error reply after the connection was established.
    """

    pass


class ConfigurationError(GatewayError):
    """Raised when configuration is invalid.

    Example:
        try:
            config = GatewayConfig(max_requests_per_window=0)
        except ConfigurationError as e:
            logger.error(f"Invalid configuration: {e}")
            raise SystemExit(1)
    """

    pass


class UpstreamError(GatewayError):
    """Raised when the upstream market-data provider rejects a request.

    This is terminal for the queued request: the caller's fetch fails with
    this error and the request is not retried.

    Attributes:
        status_code: HTTP status returned by the upstream, or None when no
            response was received (timeout, network failure).
        endpoint: Endpoint path without query string or API key.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        endpoint: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class UpstreamRateLimitError(UpstreamError):
    """Raised when the upstream answers 429 Too Many Requests.

    The gateway treats this as recoverable and requeues the request with a
    boosted priority. Callers only see it through RequeueLimitExceededError
    when a requeue cap is configured.

    Attributes:
        retry_after: Value of the Retry-After header in seconds, if present.
    """

    def __init__(
        self,
        message: str = "Upstream rate limit exceeded",
        endpoint: str | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message, status_code=429, endpoint=endpoint)
        self.retry_after = retry_after


class UpstreamTimeoutError(UpstreamError):
    """Raised when the upstream call exceeds the configured timeout."""

    def __init__(self, message: str, endpoint: str | None = None):
        super().__init__(message, status_code=None, endpoint=endpoint)


class UpstreamConnectionError(UpstreamError):
    """Raised when the upstream cannot be reached at all."""

    def __init__(self, message: str, endpoint: str | None = None):
        super().__init__(message, status_code=None, endpoint=endpoint)


class RequeueLimitExceededError(GatewayError):
    """Raised when a request was bounced by 429 more times than allowed.

    Only used when GatewayConfig.max_requeues is set. The default
    configuration requeues without a ceiling.

    Attributes:
        request_id: Identifier of the abandoned request.
        attempts: Number of 429 bounces the request received.
    """

    def __init__(self, message: str, request_id: str, attempts: int):
        super().__init__(message)
        self.request_id = request_id
        self.attempts = attempts


class GatewayStoppedError(GatewayError):
    """Raised for callers still waiting on a queued request at shutdown.

    The durable queue record survives in the persisted snapshot; only the
    in-process continuation is abandoned.
    """

    pass
