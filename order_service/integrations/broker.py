"""
RabbitMQ adapters built on aio-pika.

``RabbitMQPublisher`` is the outbox relay's publisher: it returns only once
the broker has confirmed the message. ``RabbitMQConsumer`` feeds deliveries
into the event pipeline and settles each one according to its outcome:

- APPLIED / STALE: ack
- MALFORMED: reject without requeue (routed to the dead-letter exchange)
- any exception: nack with requeue, so the broker redelivers
"""
from typing import List, Optional

import aio_pika
import structlog
from aio_pika.abc import (
    AbstractChannel,
    AbstractExchange,
    AbstractIncomingMessage,
    AbstractRobustConnection,
)

from order_service.config import get_settings
from order_service.consumers.pipeline import ConsumeOutcome, EventPipeline

logger = structlog.get_logger(__name__)


class RabbitMQPublisher:
    """Publishes outbox events to the topic exchange with publisher confirms."""

    def __init__(self, url: Optional[str] = None, exchange_name: Optional[str] = None):
        """
        Initialize publisher.

        Args:
            url: Broker URL (defaults to settings)
            exchange_name: Topic exchange to publish to (defaults to settings)
        """
        settings = get_settings()
        self.url = url or settings.rabbitmq_url
        self.exchange_name = exchange_name or settings.rabbitmq_exchange
        self._connection: Optional[AbstractRobustConnection] = None
        self._channel: Optional[AbstractChannel] = None
        self._exchange: Optional[AbstractExchange] = None

    async def connect(self) -> None:
        """Open the connection and declare the exchange."""
        self._connection = await aio_pika.connect_robust(self.url)
        self._channel = await self._connection.channel(publisher_confirms=True)
        self._exchange = await self._channel.declare_exchange(
            self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
        )
        logger.info("rabbitmq_publisher_connected", exchange=self.exchange_name)

    async def close(self) -> None:
        """Close the connection."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._channel = None
            self._exchange = None
            logger.info("rabbitmq_publisher_closed")

    async def __call__(self, routing_key: str, body: bytes) -> None:
        """
        Publish ``body`` under ``routing_key``.

        Raises:
            aio_pika.exceptions.DeliveryError: If the broker nacks the message
            aio_pika.exceptions.AMQPError: On connection or channel failures
        """
        if self._exchange is None:
            await self.connect()

        message = aio_pika.Message(
            body=body,
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(message, routing_key=routing_key)


class RabbitMQConsumer:
    """
    Consumes the routing keys registered on an ``EventPipeline``.

    Each routing key gets its own durable queue bound to the topic exchange,
    with rejected messages dead-lettered. aio-pika runs every delivery as
    its own task, bounded by the channel prefetch.
    """

    def __init__(
        self,
        pipeline: EventPipeline,
        url: Optional[str] = None,
        prefetch_count: Optional[int] = None,
    ):
        """
        Initialize consumer.

        Args:
            pipeline: Pipeline holding the handlers to run
            url: Broker URL (defaults to settings)
            prefetch_count: Unacknowledged deliveries per channel (defaults to settings)
        """
        self.settings = get_settings()
        self.pipeline = pipeline
        self.url = url or self.settings.rabbitmq_url
        self.prefetch_count = prefetch_count or self.settings.consumer_prefetch_count
        self._connection: Optional[AbstractRobustConnection] = None
        self._consumer_tags: List[str] = []

    async def on_message(
        self, routing_key: str, message: AbstractIncomingMessage
    ) -> Optional[ConsumeOutcome]:
        """
        Run one delivery through the pipeline and settle it.

        Returns:
            Optional[ConsumeOutcome]: The outcome, or None if handling raised
        """
        try:
            outcome = await self.pipeline.handle(routing_key, message.body)
        except Exception as e:
            logger.error(
                "message_requeued",
                routing_key=routing_key,
                delivery_tag=message.delivery_tag,
                error=str(e),
            )
            await message.nack(requeue=True)
            return None

        if outcome is ConsumeOutcome.MALFORMED:
            logger.warning(
                "message_dead_lettered",
                routing_key=routing_key,
                delivery_tag=message.delivery_tag,
            )
            await message.reject(requeue=False)
        else:
            await message.ack()
        return outcome

    async def start(self) -> None:
        """Connect, declare the topology and start consuming every registered key."""
        settings = self.settings
        self._connection = await aio_pika.connect_robust(self.url)
        channel = await self._connection.channel()
        await channel.set_qos(prefetch_count=self.prefetch_count)

        exchange = await channel.declare_exchange(
            settings.rabbitmq_exchange, aio_pika.ExchangeType.TOPIC, durable=True
        )
        dead_letter_exchange = await channel.declare_exchange(
            settings.rabbitmq_dead_letter_exchange, aio_pika.ExchangeType.TOPIC, durable=True
        )
        dead_letter_queue = await channel.declare_queue(
            settings.queue_name("dead-letter"), durable=True
        )
        await dead_letter_queue.bind(dead_letter_exchange, routing_key="#")

        for routing_key in self.pipeline.routing_keys:
            queue = await channel.declare_queue(
                settings.queue_name(routing_key),
                durable=True,
                arguments={"x-dead-letter-exchange": settings.rabbitmq_dead_letter_exchange},
            )
            await queue.bind(exchange, routing_key=routing_key)

            async def callback(message: AbstractIncomingMessage, key: str = routing_key) -> None:
                await self.on_message(key, message)

            self._consumer_tags.append(await queue.consume(callback))
            logger.info("consumer_started", routing_key=routing_key, queue=queue.name)

    async def stop(self) -> None:
        """Close the connection; unacked deliveries return to their queues."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            self._consumer_tags.clear()
            logger.info("consumer_stopped")
