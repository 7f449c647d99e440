"""
Custom exceptions for amqp-poster.

This module contains all custom exception classes used throughout the package.
Configuration and transport errors are fatal and raised directly to the caller;
the remaining errors are delivered through the future of a single request.
"""

from typing import Any, Optional


class PosterError(Exception):
    """Base class for every error raised by amqp-poster itself."""


class ConfigurationError(PosterError, ValueError):
    """Raised when the instance configuration is invalid. Never reaches the broker."""


class TransportError(PosterError):
    """Raised when the broker connection or channel cannot be opened."""


class NotInitializedError(PosterError):
    """Raised when an operation needs broker topology before `init()` was called."""


class DeliveryError(PosterError):
    """Raised when the broker refuses to accept a published message."""


class CodecError(PosterError):
    """Raised when message content cannot be encoded or decoded."""


class ConnectionClosedError(PosterError):
    """Raised on pending requests when the instance closes or loses its channel."""


class RequestTimeoutError(PosterError, TimeoutError):
    """Raised when no reply arrives within the requested timeout."""

    def __init__(self, correlation_id: str, timeout: float, message: Optional[str] = None):
        self.correlation_id = correlation_id
        self.timeout = timeout
        if message is None:
            message = f"No reply for request {correlation_id} within {timeout}s"
        super().__init__(message)


class RemoteError(PosterError):
    """
    An error raised by a remote request handler, rebuilt from the wire envelope.

    The remote message is available as `message`; every other field the remote
    side attached to the error lives in `details`. Attribute access falls back
    to `details` so `err.code` works for an error sent with a `code` field.
    """

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.name = name
        self.details = dict(details or {})
        super().__init__(message)

    def __getattr__(self, item: str) -> Any:
        # only reached when normal lookup fails
        details = self.__dict__.get("details", {})
        if item in details:
            return details[item]
        raise AttributeError(item)

    def __reduce__(self):
        return (self.__class__, (self.message, self.name, self.details))

    @classmethod
    def from_envelope(cls, error: Any) -> "RemoteError":
        """Rebuild an error from the `error` member of a decoded envelope."""
        if not isinstance(error, dict):
            return cls(str(error), details={"value": error})

        fields = dict(error)
        message = fields.pop("message", "")
        name = fields.pop("name", None)
        return cls(
            "" if message is None else str(message),
            name=name,
            details=fields,
        )
