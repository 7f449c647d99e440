"""
The poster: request/reply and broadcast messaging for one service instance.

A poster owns one transport (connection + channel), the topology declared on
it and the table of requests waiting for replies. Application code sends
requests, publishes broadcasts and registers handlers through it.
"""

import concurrent.futures
import logging
import threading
from typing import Any, Optional

from amqp_poster.codec import encode, message_properties
from amqp_poster.config import PosterConfig
from amqp_poster.correlation import (
    CorrelationTable,
    broadcast_correlation_id,
    new_correlation_id,
)
from amqp_poster.dispatch import (
    BroadcastDispatcher,
    BroadcastHandler,
    RequestDispatcher,
    RequestHandler,
)
from amqp_poster.exceptions import (
    CodecError,
    ConnectionClosedError,
    DeliveryError,
    NotInitializedError,
    PosterError,
    RequestTimeoutError,
)
from amqp_poster.rabbitmq.base import Transport
from amqp_poster.rabbitmq.connection import RabbitTransport
from amqp_poster.rabbitmq.topology import Topology, TopologyState
from amqp_poster.util import NamedThreadPool

logger = logging.getLogger(__name__)


class Poster:
    """
    Messaging endpoint of a service instance.

    Usage::

        poster = Poster.from_options(name="Requester", server="amqp://localhost")
        poster.init()
        reply = poster.request("Responder", {"from": 10, "to": 20})
        poster.close()
    """

    def __init__(self, config: PosterConfig, transport: Optional[Transport] = None) -> None:
        self.config = config
        self.name = config.name
        self.uid = config.uid

        self._transport = transport if transport is not None else RabbitTransport(config.server)
        self._topology = Topology(
            self._transport,
            service_name=config.name,
            uid=config.uid,
            prefetch=config.prefetch,
            subscriptions=config.subscribe,
        )
        self._pending = CorrelationTable()

        # threads are only spawned on first submit
        self._request_workers = NamedThreadPool(
            max_workers=config.prefetch, thread_name_prefix=f"{config.name}-request"
        )
        self._broadcast_workers = NamedThreadPool(
            max_workers=1, thread_name_prefix=f"{config.name}-broadcast"
        )

        self._request_dispatcher: Optional[RequestDispatcher] = None
        self._broadcast_dispatchers: list[BroadcastDispatcher] = []

        self._lock = threading.RLock()
        self._initialized = False
        self._closed = False

    @classmethod
    def from_options(cls, transport: Optional[Transport] = None, **options) -> "Poster":
        """
        Build a poster from keyword options (see `PosterConfig`).

        :raises ConfigurationError: If the options are invalid.
        """
        return cls(PosterConfig.create(**options), transport=transport)

    @property
    def reply_queue(self) -> str:
        return self._require_state().reply_queue

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def init(self) -> None:
        """
        Connect, declare the topology and start consuming replies.

        :raises TransportError: If the broker can not be reached or the
            topology can not be declared.
        """
        with self._lock:
            if self._closed:
                raise ConnectionClosedError(f"Poster {self.name} is closed")
            if self._initialized:
                return

            self._transport.connect()
            try:
                state = self._topology.declare()
                self._transport.consume(state.reply_queue, self._pending.resolve, no_ack=True)
                self._transport.on_failure(self._on_transport_failure)
                self._transport.start()
            except PosterError:
                logger.exception("Initialization of %s failed", self.name)
                self._transport.close()
                raise

            self._initialized = True
            logger.info("Poster %s (uid=%r) initialized", self.name, self.uid)

    def _require_state(self) -> TopologyState:
        if self._closed:
            raise ConnectionClosedError(f"Poster {self.name} is closed")
        state = self._topology.state
        if not self._initialized or state is None:
            raise NotInitializedError(f"Poster {self.name} is not initialized, call init() first")
        return state

    def _send(self, to: str, payload: Any) -> tuple[str, concurrent.futures.Future]:
        state = self._require_state()
        correlation_id = new_correlation_id()

        # registered before publishing: the reply may arrive before publish returns
        future = self._pending.register(correlation_id)
        try:
            body = encode(payload)
            accepted = self._transport.publish_to_queue(
                to,
                body,
                message_properties(correlation_id, reply_to=state.reply_queue),
            )
        except (CodecError, DeliveryError) as e:
            self._pending.fail(correlation_id, e)
            return correlation_id, future

        if not accepted:
            self._pending.fail(correlation_id, DeliveryError("Can not send now"))
        else:
            logger.debug("Request %s sent to %s", correlation_id, to)
        return correlation_id, future

    def send(self, to: str, payload: Any) -> concurrent.futures.Future:
        """
        Send a request to the queue of service `to`.

        The returned future resolves with the reply payload, or fails with a
        `DeliveryError`, `CodecError`, `RemoteError` or `ConnectionClosedError`.
        Cancelling the future forgets the request.
        """
        _, future = self._send(to, payload)
        return future

    def request(self, to: str, payload: Any, timeout: Optional[float] = None) -> Any:
        """
        Send a request and block until its reply arrives.

        :param timeout: Seconds to wait, defaults to the configured
            `request_timeout`; None waits forever.
        :raises RequestTimeoutError: If no reply arrived in time.
        """
        if timeout is None:
            timeout = self.config.request_timeout

        correlation_id, future = self._send(to, payload)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError:
            if not future.cancel() and future.done():
                # reply won the race against the timeout
                return future.result()
            raise RequestTimeoutError(correlation_id, timeout) from None

    def publish(self, exchange: str, payload: Any) -> None:
        """
        Broadcast a payload to every queue bound to `exchange`.

        :raises DeliveryError: If the broker refused the message.
        :raises CodecError: If the payload is not JSON serializable.
        """
        self._require_state()
        self._topology.ensure_exchange(exchange)

        correlation_id = broadcast_correlation_id()
        accepted = self._transport.publish_to_exchange(
            exchange, encode(payload), message_properties(correlation_id)
        )
        if not accepted:
            raise DeliveryError(f"Can not publish to {exchange} now")
        logger.debug("Broadcast %s published to %s", correlation_id, exchange)

    def set_message_handler(self, handler: RequestHandler) -> None:
        """
        Serve requests from this service's queue with `handler`.

        The handler receives the request payload; its return value is the
        reply and an exception it raises is sent back as an error.
        """
        with self._lock:
            state = self._require_state()
            if self._request_dispatcher is not None:
                raise PosterError(f"Message handler of {self.name} is already set")

            dispatcher = RequestDispatcher(self._transport, handler, self._request_workers)
            self._transport.consume(state.request_queue, dispatcher.on_message, no_ack=False)
            self._request_dispatcher = dispatcher

    def set_broadcast_handler(self, handler: BroadcastHandler) -> None:
        """Deliver broadcasts of every configured subscription to `handler`."""
        with self._lock:
            state = self._require_state()
            if self._broadcast_dispatchers:
                raise PosterError(f"Broadcast handler of {self.name} is already set")
            if not state.subscription_queues:
                logger.warning("Poster %s has no subscriptions, broadcast handler unused", self.name)

            for subscription_queue in state.subscription_queues:
                dispatcher = BroadcastDispatcher(
                    subscription_queue.exchange, handler, self._broadcast_workers
                )
                self._transport.consume(subscription_queue.queue, dispatcher.on_message, no_ack=True)
                self._broadcast_dispatchers.append(dispatcher)

    def _on_transport_failure(self, error: BaseException) -> None:
        self._pending.reject_all(ConnectionClosedError(f"Connection lost: {error}"))

    def close(self) -> None:
        """
        Close channel and connection. Requests still waiting for a reply fail
        with `ConnectionClosedError`. Safe to call more than once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        logger.info("Closing poster %s", self.name)
        try:
            self._transport.close()
        finally:
            self._pending.reject_all(ConnectionClosedError("Connection closed"))
            self._request_workers.shutdown(wait=False, cancel_futures=True)
            self._broadcast_workers.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> "Poster":
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
