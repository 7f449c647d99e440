import logging
import ssl

from amqp_poster.exceptions import TransportError
from amqp_poster.rabbitmq.base import Transport
from amqp_poster.rabbitmq.config import FANOUT_ROUTING_KEY, ExchangeConfig, QueueConfig

logger = logging.getLogger(__name__)


def declare_exchange(transport: Transport, exchange_config: ExchangeConfig) -> None:
    """
    Declare an exchange described by `exchange_config`.

    :param transport: The transport to use for declaration.
    :param exchange_config: Name, type and durability of the exchange.
    """
    transport.declare_exchange(
        exchange_config.name,
        exchange_type=exchange_config.exchange_type.value,
        durable=exchange_config.durable,
    )
    logger.info(
        "Exchange declared: %s (%s)",
        exchange_config.name,
        exchange_config.exchange_type.value,
    )


def declare_queue(transport: Transport, queue_config: QueueConfig) -> str:
    """
    Declare a queue and record the name the broker returned on the config.

    :param transport: The transport to use for declaration.
    :param queue_config: Queue name and flags.
    :return: The name of the declared queue.
    """
    declared_queue_name = transport.declare_queue(
        queue_config.build_name(),
        durable=queue_config.durable,
        exclusive=queue_config.exclusive,
        auto_delete=queue_config.auto_delete,
    )
    if not declared_queue_name:
        logger.error("Unable to declare queue with name %s", queue_config.name)
        raise TransportError(f"Failed to declare queue {queue_config.name}")

    # mutate config to store actual name
    queue_config.actual_queue_name = declared_queue_name
    logger.info("Queue declared: %s", declared_queue_name)
    return declared_queue_name


def bind_queue_to_exchange(transport: Transport, queue_name: str, exchange_name: str) -> None:
    """
    Bind a queue to a fanout exchange.

    :param transport: The transport to use for binding.
    :param queue_name: Name of the queue to bind.
    :param exchange_name: Exchange the queue receives copies from.
    """
    transport.bind_queue(queue_name, exchange_name, FANOUT_ROUTING_KEY)
    logger.info("Queue %s bound to exchange %s", queue_name, exchange_name)


def get_rabbitmq_ssl_options(hostname: str) -> dict:
    """Create SSL options with a hardened TLS client context."""
    if hostname is None or len(hostname) == 0:
        raise TransportError(
            "SSL is enabled but no hostname provided. "
            "Please set ssl_hostname in the server parameters"
        )

    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.load_default_certs(purpose=ssl.Purpose.SERVER_AUTH)

    context.minimum_version = ssl.TLSVersion.TLSv1_2
    context.check_hostname = True
    context.verify_mode = ssl.CERT_REQUIRED
    context.set_ciphers(
        "ECDHE+AESGCM:ECDHE+CHACHA20:DHE+AESGCM:DHE+CHACHA20:!aNULL:!MD5:!DSS"
    )

    logger.debug("Created SSL context for hostname: %s", hostname)
    return {
        "context": context,
        "server_hostname": hostname,
    }
