"""
Queue and exchange topology of a poster instance.

`Topology.declare` asserts everything the instance consumes from; exchanges
used only as publish targets are asserted lazily through `ensure_exchange`.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from amqp_poster.config import Subscription
from amqp_poster.rabbitmq.base import Transport
from amqp_poster.rabbitmq.config import (
    ExchangeConfig,
    QueueConfig,
    reply_queue_config,
    request_queue_config,
    subscription_queue_config,
)
from amqp_poster.rabbitmq.util import bind_queue_to_exchange, declare_exchange, declare_queue

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionQueue:
    """A declared broadcast queue and the exchange it is bound to."""

    subscription: Subscription
    queue_config: QueueConfig

    @property
    def exchange(self) -> str:
        return self.subscription.exchange

    @property
    def queue(self) -> str:
        return self.queue_config.actual_queue_name or self.queue_config.name


@dataclass
class TopologyState:
    request_queue: str
    reply_queue: str
    subscription_queues: List[SubscriptionQueue] = field(default_factory=list)


class Topology:
    def __init__(
        self,
        transport: Transport,
        service_name: str,
        uid: str,
        prefetch: int,
        subscriptions: Iterable[Subscription] = (),
    ) -> None:
        self._transport = transport
        self._service_name = service_name
        self._uid = uid
        self._prefetch = prefetch
        self._subscriptions = tuple(subscriptions)

        self._state: Optional[TopologyState] = None

        # exchanges already asserted for outbound publish, never shrinks
        self._asserted_exchanges: set[str] = set()
        self._exchange_lock = threading.Lock()

    @property
    def state(self) -> Optional[TopologyState]:
        return self._state

    def declare(self) -> TopologyState:
        """
        Assert the instance topology in order: prefetch, request queue, reply
        queue, then exchange + queue + binding for each subscription.
        """
        self._transport.set_prefetch(self._prefetch)
        logger.info("Prefetch set to %d", self._prefetch)

        request_queue = declare_queue(
            self._transport, request_queue_config(self._service_name)
        )
        reply_queue = declare_queue(
            self._transport, reply_queue_config(self._service_name, self._uid)
        )

        state = TopologyState(request_queue=request_queue, reply_queue=reply_queue)

        for subscription in self._subscriptions:
            declare_exchange(self._transport, ExchangeConfig(subscription.exchange))

            queue_config = subscription_queue_config(
                self._service_name,
                self._uid,
                subscription.exchange,
                subscription.once_per_service,
            )
            queue_name = declare_queue(self._transport, queue_config)
            bind_queue_to_exchange(self._transport, queue_name, subscription.exchange)

            state.subscription_queues.append(
                SubscriptionQueue(subscription=subscription, queue_config=queue_config)
            )

        self._state = state
        logger.info(
            "Topology declared for %s: request=%s reply=%s subscriptions=%d",
            self._service_name,
            state.request_queue,
            state.reply_queue,
            len(state.subscription_queues),
        )
        return state

    def ensure_exchange(self, exchange: str) -> None:
        """
        Assert a publish target exchange the first time it is used.

        Keyed purely by name: a later call never re-declares, even if the
        exchange was meanwhile deleted or declared elsewhere with other flags.
        """
        with self._exchange_lock:
            if exchange in self._asserted_exchanges:
                return
            declare_exchange(self._transport, ExchangeConfig(exchange))
            self._asserted_exchanges.add(exchange)

    def is_exchange_asserted(self, exchange: str) -> bool:
        with self._exchange_lock:
            return exchange in self._asserted_exchanges
