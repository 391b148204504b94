"""Custom exceptions for the agent WhatsApp session client."""

from typing import Optional


class SessionClientError(Exception):
    """Base exception for all session client errors."""

    pass


class NotReadyError(SessionClientError):
    """Send attempted while the session is not ready."""

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidDestinationError(SessionClientError):
    """Destination cannot be normalized or is not registered."""

    pass


class TransportError(SessionClientError):
    """The underlying transport call failed."""

    def __init__(self, message: str, queued: bool = False) -> None:
        super().__init__(message)
        self.queued = queued


class SendTimeoutError(TransportError):
    """A transport call exceeded the configured timeout."""

    pass


class AuthFailureError(SessionClientError):
    """Transport reported failed authentication."""

    pass
