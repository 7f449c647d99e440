import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ExchangeType(Enum):
    # NOTE: subscriptions only ever use fanout, routing keys are ignored
    FANOUT = "fanout"


# fanout exchanges ignore the routing key, bindings always use this
FANOUT_ROUTING_KEY = ""


@dataclass
class QueueConfig:
    name: str

    durable: bool
    exclusive: bool
    auto_delete: bool

    actual_queue_name: Optional[str] = field(default=None, init=False)

    def build_name(self):
        return self.name


@dataclass(frozen=True)
class ExchangeConfig:
    name: str
    exchange_type: ExchangeType = ExchangeType.FANOUT
    durable: bool = True


def unique_suffix() -> str:
    return str(uuid.uuid4())


def request_queue_config(service_name: str) -> QueueConfig:
    """Inbound request queue, survives broker restarts."""
    return QueueConfig(
        name=service_name,
        durable=True,
        exclusive=False,
        auto_delete=False,
    )


def reply_queue_config(service_name: str, uid: str) -> QueueConfig:
    """Ephemeral reply queue, new name on every start."""
    return QueueConfig(
        name=f"{service_name}-resp-{uid}-{unique_suffix()}",
        durable=False,
        exclusive=True,
        auto_delete=False,
    )


def subscription_queue_config(
    service_name: str, uid: str, exchange: str, once_per_service: bool
) -> QueueConfig:
    """
    Queue bound to a broadcast exchange.

    A shared queue has a deterministic name so every instance of the service
    consumes from the same queue; an exclusive queue belongs to this instance.
    """
    if once_per_service:
        return QueueConfig(
            name=f"{service_name}-subscribe-{exchange}",
            durable=False,
            exclusive=False,
            auto_delete=True,
        )
    return QueueConfig(
        name=f"{service_name}-subscribe-{exchange}-{uid}-{unique_suffix()}",
        durable=False,
        exclusive=True,
        auto_delete=False,
    )
