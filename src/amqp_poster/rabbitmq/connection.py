"""
RabbitMQ transport backed by AMQPStorm.

One connection, one channel. The channel runs in publisher-confirm mode so a
publish reports whether the broker accepted the message, and a daemon thread
drives consumption for every consumer registered on the channel.
"""

import logging
import threading
import urllib.parse
from typing import Callable, List, Optional, Union

from amqpstorm import AMQPError, Channel, Connection, UriConnection

from amqp_poster.config import ServerParameters
from amqp_poster.exceptions import DeliveryError, TransportError
from amqp_poster.rabbitmq.base import InboundMessage, MessageCallback, Transport
from amqp_poster.rabbitmq.util import get_rabbitmq_ssl_options

logger = logging.getLogger(__name__)


def redact_uri(uri: str) -> str:
    """Hide the password of an AMQP URI for logging."""
    parts = urllib.parse.urlsplit(uri)
    if not parts.password:
        return uri
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urllib.parse.urlunsplit(parts._replace(netloc=netloc))


class RabbitTransport(Transport):
    """
    Transport over a single AMQPStorm connection and channel.

    Connection loss is not recovered: the registered failure callbacks are
    told once and the owner is expected to shut down.
    """

    def __init__(self, server: Union[str, ServerParameters]) -> None:
        self._server = server

        self._connection: Optional[Connection] = None
        self._channel: Optional[Channel] = None
        self._consumer_thread: Optional[threading.Thread] = None

        # Thread safety
        self._lock = threading.RLock()
        self._is_shutting_down = False
        self._failure_callbacks: List[Callable[[BaseException], None]] = []

    def _open_connection(self) -> Connection:
        if isinstance(self._server, str):
            logger.info("Establishing RabbitMQ connection to %s", redact_uri(self._server))
            return UriConnection(self._server)

        connection_params = self._server.connection_kwargs()
        if self._server.ssl:
            connection_params["ssl_options"] = get_rabbitmq_ssl_options(
                self._server.ssl_hostname
            )
        logger.info(
            "Establishing RabbitMQ connection to %s:%s with heartbeat=%s SSL=%s",
            self._server.hostname,
            self._server.port,
            self._server.heartbeat,
            self._server.ssl,
        )
        return Connection(**connection_params)

    def connect(self) -> None:
        with self._lock:
            if self._channel is not None and self._channel.is_open:
                return
            try:
                self._connection = self._open_connection()
                self._channel = self._connection.channel()
                self._channel.confirm_deliveries()
            except AMQPError as e:
                logger.exception("Error establishing RabbitMQ connection: %s", e)
                self._release()
                raise TransportError(f"Can not connect to RabbitMQ: {e}") from e
            self._is_shutting_down = False
            logger.info("RabbitMQ connection and channel %s established", self._channel)

    def _require_channel(self) -> Channel:
        channel = self._channel
        if channel is None:
            raise TransportError("RabbitMQ channel is not open")
        return channel

    def set_prefetch(self, prefetch_count: int) -> None:
        try:
            self._require_channel().basic.qos(prefetch_count=prefetch_count)
        except AMQPError as e:
            raise TransportError(f"Can not set prefetch: {e}") from e

    def declare_queue(
        self,
        name: str,
        durable: bool = False,
        exclusive: bool = False,
        auto_delete: bool = False,
    ) -> str:
        try:
            result = self._require_channel().queue.declare(
                queue=name,
                durable=durable,
                exclusive=exclusive,
                auto_delete=auto_delete,
            )
        except AMQPError as e:
            raise TransportError(f"Can not declare queue {name}: {e}") from e
        return result.get("queue", name)

    def declare_exchange(
        self, name: str, exchange_type: str = "fanout", durable: bool = True
    ) -> None:
        try:
            self._require_channel().exchange.declare(
                exchange=name,
                exchange_type=exchange_type,
                durable=durable,
                auto_delete=False,
            )
        except AMQPError as e:
            raise TransportError(f"Can not declare exchange {name}: {e}") from e

    def bind_queue(self, queue: str, exchange: str, routing_key: str = "") -> None:
        try:
            self._require_channel().queue.bind(
                queue=queue,
                exchange=exchange,
                routing_key=routing_key,
            )
        except AMQPError as e:
            raise TransportError(f"Can not bind {queue} to {exchange}: {e}") from e

    def _publish(self, exchange: str, routing_key: str, body: bytes, properties: dict) -> bool:
        try:
            result = self._require_channel().basic.publish(
                body=body,
                routing_key=routing_key,
                exchange=exchange,
                properties=properties,
            )
        except (AMQPError, TransportError) as e:
            raise DeliveryError(
                f"Can not publish to {exchange or routing_key}: {e}"
            ) from e
        # publish only returns a bool while confirms are enabled
        return result is None or bool(result)

    def publish_to_queue(self, queue: str, body: bytes, properties: dict) -> bool:
        return self._publish("", queue, body, properties)

    def publish_to_exchange(self, exchange: str, body: bytes, properties: dict) -> bool:
        return self._publish(exchange, "", body, properties)

    def consume(self, queue: str, callback: MessageCallback, no_ack: bool) -> str:
        try:
            consumer_tag = self._require_channel().basic.consume(
                callback=callback,
                queue=queue,
                no_ack=no_ack,
            )
        except AMQPError as e:
            raise TransportError(f"Can not consume from {queue}: {e}") from e
        logger.info("Consuming from %s (no_ack=%s) as %s", queue, no_ack, consumer_tag)
        return consumer_tag

    def ack(self, message: InboundMessage) -> None:
        message.ack()

    def start(self) -> None:
        with self._lock:
            if self._consumer_thread and self._consumer_thread.is_alive():
                return
            channel = self._require_channel()
            self._consumer_thread = threading.Thread(
                target=self._consuming_loop,
                args=(channel,),
                name="rmq-poster-consumer",
                daemon=True,
            )
            self._consumer_thread.start()

    def _consuming_loop(self, channel: Channel) -> None:
        # start_consuming returns once the channel closes or has no consumers left
        try:
            channel.start_consuming()
        except AMQPError as e:
            if not self._is_shutting_down:
                logger.exception("Consuming stopped with an error: %s", e)
                self._notify_failure(e)
            return
        except Exception as e:
            logger.exception("Consumer thread crashed: %s", e)
            if not self._is_shutting_down:
                self._notify_failure(e)
            return

        if not self._is_shutting_down:
            logger.warning("Consuming stopped unexpectedly")
            self._notify_failure(TransportError("Consuming stopped unexpectedly"))

    def on_failure(self, callback: Callable[[BaseException], None]) -> None:
        with self._lock:
            if callback not in self._failure_callbacks:
                self._failure_callbacks.append(callback)

    def _notify_failure(self, error: BaseException) -> None:
        with self._lock:
            callbacks = self._failure_callbacks.copy()

        for callback in callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.exception("Error in transport failure callback: %s", e)

    def _release(self) -> None:
        channel, connection = self._channel, self._connection
        self._channel = None
        self._connection = None

        if channel is not None and channel.is_open:
            try:
                channel.stop_consuming()
            except AMQPError as e:
                logger.debug("Error stopping consuming: %s", e)
            try:
                channel.close()
                logger.debug("Channel closed")
            except AMQPError as e:
                logger.debug("Error closing channel: %s", e)

        if connection is not None and connection.is_open:
            try:
                connection.close()
                logger.debug("Connection closed")
            except AMQPError as e:
                logger.exception("Error closing connection: %s", e)

    def close(self) -> None:
        logger.info("Closing RabbitMQ transport")

        with self._lock:
            self._is_shutting_down = True
            self._release()
            consumer_thread = self._consumer_thread
            self._consumer_thread = None

        if (
            consumer_thread
            and consumer_thread.is_alive()
            and consumer_thread is not threading.current_thread()
        ):
            consumer_thread.join(timeout=5.0)

        logger.info("RabbitMQ transport closed")
