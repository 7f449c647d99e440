"""
Inbound message dispatch.

Consumer callbacks run on the transport's consumer thread and only hand the
delivery to a worker pool, so a slow handler never delays reply delivery.
"""

import logging
from typing import Any, Callable

from amqp_poster.codec import decode, encode, encode_error, message_properties
from amqp_poster.exceptions import CodecError, DeliveryError, RemoteError
from amqp_poster.rabbitmq.base import InboundMessage, Transport
from amqp_poster.util import NamedThreadPool

logger = logging.getLogger(__name__)

RequestHandler = Callable[[Any], Any]
BroadcastHandler = Callable[[Any], None]


class RequestDispatcher:
    """
    Serves the inbound request queue.

    Every request is answered, including undecodable ones, and acknowledged
    only after its reply was handed to the broker. The broker's prefetch limit
    bounds how many requests are in flight at once.
    """

    def __init__(
        self,
        transport: Transport,
        handler: RequestHandler,
        workers: NamedThreadPool,
    ) -> None:
        self._transport = transport
        self._handler = handler
        self._workers = workers

    def on_message(self, message: InboundMessage) -> None:
        correlation_id = (message.properties or {}).get("correlation_id")
        try:
            self._workers.submit(self.process, f"request[{correlation_id}]", message)
        except RuntimeError as e:
            # pool already shut down, the broker redelivers the unacked message
            logger.warning("Dropping request %s during shutdown: %s", correlation_id, e)

    def process(self, message: InboundMessage) -> None:
        try:
            body = self._reply_body(message)
            self._send_reply(message, body)
        except Exception as e:
            # nobody reads the pool future, log here or the error is lost
            logger.exception("Can not answer request: %s", e)
        finally:
            try:
                self._transport.ack(message)
            except Exception as e:
                logger.exception("Can not acknowledge request: %s", e)

    def _reply_body(self, message: InboundMessage) -> bytes:
        try:
            payload = decode(message)
        except (CodecError, RemoteError) as e:
            logger.warning("Can not decode request: %s", e)
            return encode_error(e)

        try:
            answer = self._handler(payload)
        except Exception as e:
            logger.info("Request handler raised %s: %s", type(e).__name__, e)
            return encode_error(e)

        try:
            return encode("" if answer is None else answer)
        except CodecError as e:
            logger.error("Can not encode handler result: %s", e)
            return encode_error(e)

    def _send_reply(self, message: InboundMessage, body: bytes) -> None:
        properties = message.properties or {}
        reply_to = properties.get("reply_to")
        correlation_id = properties.get("correlation_id")
        if not reply_to:
            logger.warning("Request %s has no reply_to, reply dropped", correlation_id)
            return

        try:
            accepted = self._transport.publish_to_queue(
                reply_to, body, message_properties(correlation_id)
            )
        except DeliveryError as e:
            logger.error("Can not send reply %s to %s: %s", correlation_id, reply_to, e)
            return

        if not accepted:
            logger.error("Broker refused reply %s to %s", correlation_id, reply_to)


class BroadcastDispatcher:
    """
    Serves one subscription queue.

    Broadcasts are not acknowledged. A failing handler is logged and the next
    broadcast is still delivered.
    """

    def __init__(
        self,
        exchange: str,
        handler: BroadcastHandler,
        workers: NamedThreadPool,
    ) -> None:
        self._exchange = exchange
        self._handler = handler
        self._workers = workers

    def on_message(self, message: InboundMessage) -> None:
        try:
            self._workers.submit(self.process, f"broadcast[{self._exchange}]", message)
        except RuntimeError as e:
            logger.warning("Dropping broadcast from %s during shutdown: %s", self._exchange, e)

    def process(self, message: InboundMessage) -> None:
        try:
            self._handler(decode(message))
        except Exception as e:
            logger.exception("Broadcast handler for %s failed: %s", self._exchange, e)
