class InvalidBatchError(ValueError):
    """Raised when a batch request carries no usable symbols."""


class QuoteUnavailableError(RuntimeError):
    """Upstream returned no usable quote for an identifier."""


class UpstreamRateLimitError(RuntimeError):
    """Upstream vendor throttled the request (HTTP 429 or a throttling note)."""


class RateUnavailableError(RuntimeError):
    """Live exchange-rate lookup failed or returned an unusable rate."""
