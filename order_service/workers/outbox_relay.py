"""
Outbox relay worker.

Drains the outbox table to RabbitMQ. Run as a separate process:

    python -m order_service.workers.outbox_relay
"""
import asyncio
import signal

import structlog

from order_service.config import get_settings
from order_service.core.outbox import OutboxRelay
from order_service.database.connection import close_db
from order_service.integrations.broker import RabbitMQPublisher
from order_service.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def start_outbox_relay() -> None:
    """
    Start the outbox relay worker.

    Runs until SIGINT or SIGTERM; the current batch finishes first.
    """
    setup_logging()
    settings = get_settings()

    logger.info("outbox_relay_worker_starting")

    publisher = RabbitMQPublisher()
    await publisher.connect()

    relay = OutboxRelay(
        publisher=publisher,
        batch_size=settings.outbox_batch_size,
        poll_interval_seconds=settings.outbox_poll_interval_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, relay.stop)

    try:
        await relay.start()
    except Exception as e:
        logger.error("outbox_relay_worker_error", error=str(e))
        raise
    finally:
        await publisher.close()
        await close_db()
        logger.info("outbox_relay_worker_stopped")


def main() -> None:
    """Console entry point."""
    asyncio.run(start_outbox_relay())


if __name__ == "__main__":
    main()
