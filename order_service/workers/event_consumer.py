"""
Event consumer worker.

Applies inventory and delivery events to orders. Run as a separate process:

    python -m order_service.workers.event_consumer
"""
import asyncio
import signal

import structlog

from order_service.consumers import build_pipeline
from order_service.database.connection import close_db
from order_service.integrations.broker import RabbitMQConsumer
from order_service.monitoring.logging import setup_logging

logger = structlog.get_logger(__name__)


async def start_event_consumer() -> None:
    """
    Start the event consumer worker.

    Consumes until SIGINT or SIGTERM.
    """
    setup_logging()

    logger.info("event_consumer_worker_starting")

    consumer = RabbitMQConsumer(build_pipeline())
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await consumer.start()
        await stop_event.wait()
        logger.info("event_consumer_worker_shutdown_signal_received")
    except Exception as e:
        logger.error("event_consumer_worker_error", error=str(e))
        raise
    finally:
        await consumer.stop()
        await close_db()
        logger.info("event_consumer_worker_stopped")


def main() -> None:
    """Console entry point."""
    asyncio.run(start_event_consumer())


if __name__ == "__main__":
    main()
