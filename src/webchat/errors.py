"""Error types for the chat service client.

Each error carries the HTTP status (0 when the request never produced one)
so callers can tell an expired session from a transient failure.
"""

from typing import Any, Optional


class ChatServiceError(Exception):
    """Base exception for chat service failures."""

    def __init__(self, message: str, status_code: int = 0, payload: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    @property
    def is_retryable(self) -> bool:
        """Check if this error should be retried."""
        # Retry server errors (5xx) but not client errors (4xx)
        return self.status_code >= 500

    @property
    def is_session_expired(self) -> bool:
        return self.status_code == 404


class TransportError(ChatServiceError):
    """Network failure, or a response without a meaningful status."""

    @property
    def is_retryable(self) -> bool:
        return True


class RetryableServiceError(TransportError):
    """Server error (5xx) that may succeed on a later attempt."""
    pass


class ProtocolDriftError(TransportError):
    """Response body is malformed or misses required fields.

    Treated as a transport failure for retry purposes.
    """
    pass


class SessionExpiredError(ChatServiceError):
    """The remote session no longer exists (HTTP 404)."""

    def __init__(self, message: str = "Chat session no longer exists", payload: Optional[Any] = None):
        super().__init__(message, status_code=404, payload=payload)


class InitializationFailedError(ChatServiceError):
    """The init endpoint did not return a usable session id."""
    pass
