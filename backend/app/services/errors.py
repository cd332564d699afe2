from __future__ import annotations


class MessagingError(Exception):
    """Base class for failures surfaced to the caller of a messaging endpoint."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(MessagingError):
    """Malformed input; rejected before any write."""

    status_code = 400


class NotFoundError(MessagingError):
    """Referenced conversation does not exist."""

    status_code = 404


class AuthorizationError(MessagingError):
    """A non-admin caller referenced a conversation they do not own."""

    status_code = 403


class RateLimitError(MessagingError):
    """Sender exceeded the per-window send quota."""

    status_code = 429

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class DeliveryWarning(Exception):
    """Push publish or email enqueue failed. Logged only, never returned to the caller."""
