"""
Configuration models for amqp-poster.

An instance is described by a `PosterConfig`, validated once at construction
and never mutated afterwards. Validation happens before any broker I/O so a
bad configuration fails fast.
"""

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from amqp_poster.exceptions import ConfigurationError

# Global service name for logging/observability systems
SERVICE_NAME = "amqp-poster"

DEFAULT_PREFETCH = 1


class ServerParameters(BaseModel):
    """Structured broker connection parameters."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    hostname: str = "localhost"
    port: int = Field(default=5672, gt=0, lt=65536)
    username: str = "guest"
    password: str = "guest"
    virtual_host: str = "/"
    heartbeat: int = Field(default=60, ge=0)
    timeout: int = Field(default=10, gt=0)
    ssl: bool = False
    ssl_hostname: Optional[str] = None

    def connection_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for `amqpstorm.Connection`, without TLS options."""
        return {
            "hostname": self.hostname,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "virtual_host": self.virtual_host,
            "heartbeat": self.heartbeat,
            "timeout": self.timeout,
            "ssl": self.ssl,
        }


class Subscription(BaseModel):
    """
    A broadcast subscription.

    `once_per_service` selects a queue shared by every instance of the service
    (each message reaches one of them) instead of one exclusive queue per
    instance (each instance sees every message).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    exchange: str = Field(min_length=1)
    once_per_service: bool = False


class PosterConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    uid: str = ""
    server: Union[str, ServerParameters]
    prefetch: int = Field(default=DEFAULT_PREFETCH, ge=1)
    subscribe: tuple[Subscription, ...] = ()
    request_timeout: Optional[float] = Field(default=None, gt=0)

    @field_validator("server")
    @classmethod
    def _server_not_empty(cls, value):
        if isinstance(value, str) and not value.strip():
            raise ValueError("server URI must not be empty")
        return value

    @classmethod
    def create(cls, **kwargs) -> "PosterConfig":
        """
        Validate keyword options into a config.

        :raises ConfigurationError: If any option is missing or invalid.
        """
        try:
            return cls(**kwargs)
        except ValidationError as e:
            raise ConfigurationError(
                f"Invalid poster configuration: {e}"
            ) from e
