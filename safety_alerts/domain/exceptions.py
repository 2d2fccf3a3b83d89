"""Custom exception hierarchy for the safety alert pipeline.

Following error taxonomy: retryable (next tick may succeed) and non-retryable.
"""


class SafetyAlertsError(Exception):
    """Base exception for all application errors."""

    pass


class RetryableError(SafetyAlertsError):
    """Errors that a later tick can recover from (network, upstream hiccups)."""

    pass


class NonRetryableError(SafetyAlertsError):
    """Errors that will not go away by retrying (shape, configuration)."""

    pass


class ConfigurationError(NonRetryableError):
    """Invalid or missing configuration."""

    pass


class TelemetryAPIError(RetryableError):
    """Telemetry API communication errors (network, timeout, non-2xx)."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(TelemetryAPIError):
    """Telemetry API rate limit exceeded."""

    def __init__(self, retry_after: int | None = None) -> None:
        """Initialize with optional retry_after seconds."""
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit exceeded. Retry after: {retry_after}s", status_code=429
        )


class MalformedResponseError(NonRetryableError):
    """Upstream payload does not have the expected shape."""

    pass


class TransportError(RetryableError):
    """Message transport rejected or failed a send.

    ``code`` mirrors the HTTP-like status reported by the chat API when one is
    available (400, 401, 403, 429); ``category`` is a coarse machine-readable
    tag that stays set even when ``code`` is ``None`` (timeouts, network).
    """

    def __init__(
        self,
        description: str,
        *,
        code: int | None = None,
        category: str = "unknown",
    ) -> None:
        self.description = description
        self.code = code
        self.category = category
        super().__init__(f"[{code or category}] {description}")


class VideoDownloadError(RetryableError):
    """Downloading a video for re-upload failed or exceeded the size cap."""

    pass


class RepositoryError(RetryableError):
    """Database/storage errors."""

    pass
