"""
Request/reply and publish/subscribe messaging over RabbitMQ.

Public API:
    - Poster: messaging endpoint of a service instance
    - PosterConfig, ServerParameters, Subscription: instance configuration
    - setup_logging: console (and optional OTEL) logging for services
    - Errors: PosterError and its subclasses
"""

from .config import PosterConfig, ServerParameters, Subscription
from .exceptions import (
    CodecError,
    ConfigurationError,
    ConnectionClosedError,
    DeliveryError,
    NotInitializedError,
    PosterError,
    RemoteError,
    RequestTimeoutError,
    TransportError,
)
from .logging_config import setup_logging
from .poster import Poster

__all__ = [
    "Poster",
    # Configuration
    "PosterConfig",
    "ServerParameters",
    "Subscription",
    "setup_logging",
    # Errors
    "PosterError",
    "ConfigurationError",
    "TransportError",
    "NotInitializedError",
    "DeliveryError",
    "CodecError",
    "ConnectionClosedError",
    "RequestTimeoutError",
    "RemoteError",
]
