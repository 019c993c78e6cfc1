"""
Tests for the RabbitMQ adapters' message settlement and publishing.
"""
from unittest.mock import AsyncMock, MagicMock

import aio_pika
import pytest

from order_service.consumers import ConsumeOutcome
from order_service.integrations.broker import RabbitMQConsumer, RabbitMQPublisher


def make_message(body: bytes = b'{"order_id": 1}') -> AsyncMock:
    message = AsyncMock()
    message.body = body
    message.delivery_tag = 1
    return message


def make_consumer(outcome=None, error=None) -> RabbitMQConsumer:
    pipeline = MagicMock()
    pipeline.handle = AsyncMock(return_value=outcome, side_effect=error)
    return RabbitMQConsumer(pipeline, url="amqp://test", prefetch_count=1)


class TestConsumerSettlement:
    """Outcome to ack / reject / nack mapping."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", [ConsumeOutcome.APPLIED, ConsumeOutcome.STALE])
    async def test_applied_and_stale_are_acked(self, outcome: ConsumeOutcome) -> None:
        """Handled messages, duplicates included, are acknowledged."""
        consumer = make_consumer(outcome=outcome)
        message = make_message()

        result = await consumer.on_message("orders.order_reserved", message)

        assert result is outcome
        consumer.pipeline.handle.assert_awaited_once_with("orders.order_reserved", message.body)
        message.ack.assert_awaited_once()
        message.reject.assert_not_awaited()
        message.nack.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_is_dead_lettered(self) -> None:
        """Undecodable messages are rejected without requeue."""
        consumer = make_consumer(outcome=ConsumeOutcome.MALFORMED)
        message = make_message(b"garbage")

        await consumer.on_message("orders.order_reserved", message)

        message.reject.assert_awaited_once_with(requeue=False)
        message.ack.assert_not_awaited()
        message.nack.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_is_requeued(self) -> None:
        """Infrastructure failures hand the message back for redelivery."""
        consumer = make_consumer(error=ConnectionError("database unavailable"))
        message = make_message()

        result = await consumer.on_message("orders.order_reserved", message)

        assert result is None
        message.nack.assert_awaited_once_with(requeue=True)
        message.ack.assert_not_awaited()
        message.reject.assert_not_awaited()


class TestPublisher:
    """Publishing outbox payloads."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publishes_persistent_message(self) -> None:
        """Messages go to the exchange under their routing key and survive broker restarts."""
        publisher = RabbitMQPublisher(url="amqp://test", exchange_name="events")
        publisher._exchange = AsyncMock()

        await publisher("inventory.reserve_order", b'{"order_id": 1}')

        publisher._exchange.publish.assert_awaited_once()
        call = publisher._exchange.publish.await_args
        message = call.args[0]
        assert call.kwargs["routing_key"] == "inventory.reserve_order"
        assert message.body == b'{"order_id": 1}'
        assert message.delivery_mode == aio_pika.DeliveryMode.PERSISTENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_publish_failure_propagates(self) -> None:
        """A nacked or failed publish raises so the outbox row stays pending."""
        publisher = RabbitMQPublisher(url="amqp://test", exchange_name="events")
        publisher._exchange = AsyncMock()
        publisher._exchange.publish.side_effect = ConnectionError("channel closed")

        with pytest.raises(ConnectionError):
            await publisher("inventory.reserve_order", b"{}")
