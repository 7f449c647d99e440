"""
RabbitMQ transport and topology for the poster.

Public API:
    - Transport: Abstract broker capability used by the poster
    - RabbitTransport: AMQPStorm implementation of Transport
    - Topology: Declares instance queues/exchanges and caches publish exchanges
"""

from .base import InboundMessage, Transport
from .connection import RabbitTransport
from .topology import SubscriptionQueue, Topology, TopologyState

__all__ = [
    # Abstract base classes
    "Transport",
    "InboundMessage",
    # Concrete implementations
    "RabbitTransport",
    "Topology",
    # Data types
    "TopologyState",
    "SubscriptionQueue",
]
