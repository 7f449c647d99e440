"""
Abstract transport interface for the poster.

A transport owns exactly one broker connection and one channel. Every broker
operation of a poster instance goes through it, which keeps the engine
testable against an in-memory implementation.
"""

import abc
from typing import Any, Callable, Protocol


class InboundMessage(Protocol):
    """What a consume callback receives. `amqpstorm.Message` satisfies this."""

    @property
    def body(self) -> Any: ...

    @property
    def properties(self) -> dict: ...


MessageCallback = Callable[[InboundMessage], None]


class Transport(abc.ABC):
    """
    Broker capability used by the poster.

    Failures of `connect` are fatal to the instance. `publish_*` return whether
    the broker accepted the message; False means it was refused.
    """

    @abc.abstractmethod
    def connect(self) -> None:
        """
        Open the connection and the channel.

        :raises TransportError: If either cannot be opened.
        """
        pass

    @abc.abstractmethod
    def set_prefetch(self, prefetch_count: int) -> None:
        pass

    @abc.abstractmethod
    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        """
        Declare a queue and return the name the broker assigned to it.
        """
        pass

    @abc.abstractmethod
    def declare_exchange(
        self, name: str, exchange_type: str = "fanout", durable: bool = True
    ) -> None:
        pass

    @abc.abstractmethod
    def bind_queue(self, queue: str, exchange: str, routing_key: str = "") -> None:
        pass

    @abc.abstractmethod
    def publish_to_queue(self, queue: str, body: bytes, properties: dict) -> bool:
        pass

    @abc.abstractmethod
    def publish_to_exchange(self, exchange: str, body: bytes, properties: dict) -> bool:
        pass

    @abc.abstractmethod
    def consume(self, queue: str, callback: MessageCallback, no_ack: bool) -> str:
        """
        Register a consumer on `queue` and return its consumer tag.

        Deliveries only flow once `start` has been called.
        """
        pass

    @abc.abstractmethod
    def ack(self, message: InboundMessage) -> None:
        pass

    @abc.abstractmethod
    def start(self) -> None:
        """Begin delivering messages to registered consumers."""
        pass

    @abc.abstractmethod
    def on_failure(self, callback: Callable[[BaseException], None]) -> None:
        """Register a callback invoked once if the channel dies unexpectedly."""
        pass

    @abc.abstractmethod
    def close(self) -> None:
        """
        Stop consuming and release the channel and the connection.
        """
        pass
