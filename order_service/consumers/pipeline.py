"""
Inbound event pipeline.

Every consumed message goes through the same steps: decode the raw body
into its event model, open a session, apply one guarded update, commit.
Handlers are registered per routing key and report a ``ConsumeOutcome``
instead of raising for expected cases; the broker adapter turns outcomes
into ack, reject or nack.
"""
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Type

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_service.database.connection import get_session_factory
from order_service.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class ConsumeOutcome(str, Enum):
    """How a consumed message ended."""

    APPLIED = "applied"
    # The guard matched zero rows: duplicate, redelivered or out of order.
    STALE = "stale"
    MALFORMED = "malformed"


ApplyFn = Callable[[AsyncSession, BaseModel], Awaitable[bool]]
MessageHandler = Callable[[bytes], Awaitable[ConsumeOutcome]]


class UnknownRoutingKeyError(KeyError):
    """Raised when no handler is registered for a routing key."""

    pass


class EventPipeline:
    """
    Routes raw message bodies to registered apply functions.

    An apply function receives the open session and the decoded event and
    returns True if its guarded update matched a row. It must not commit.
    """

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initialize event pipeline.

        Args:
            session_factory: Session factory (defaults to the application's)
        """
        self.session_factory = session_factory or get_session_factory()
        self._routes: Dict[str, tuple[Type[BaseModel], ApplyFn]] = {}

    @property
    def routing_keys(self) -> list[str]:
        """Routing keys with a registered handler."""
        return list(self._routes)

    def register(self, routing_key: str, event_model: Type[BaseModel], apply: ApplyFn) -> None:
        """
        Register the apply function for a routing key.

        Args:
            routing_key: Broker routing key
            event_model: Pydantic model the body must decode into
            apply: Coroutine applying the decoded event

        Example:
            async def apply_reserved(db, event):
                return await transition_order(db, event.order_id, RESERVE) is not None

            pipeline.register("orders.order_reserved", OrderReservedEvent, apply_reserved)
        """
        self._routes[routing_key] = (event_model, apply)
        logger.info("event_handler_registered", routing_key=routing_key)

    def handler(self, routing_key: str) -> MessageHandler:
        """
        Get a ``(body) -> ConsumeOutcome`` coroutine function for a routing key.

        Raises:
            UnknownRoutingKeyError: If nothing is registered for the key
        """
        if routing_key not in self._routes:
            raise UnknownRoutingKeyError(routing_key)

        async def handle_message(body: bytes) -> ConsumeOutcome:
            return await self.handle(routing_key, body)

        return handle_message

    async def handle(self, routing_key: str, body: bytes) -> ConsumeOutcome:
        """
        Decode and apply one message.

        Returns:
            ConsumeOutcome: APPLIED, STALE or MALFORMED

        Raises:
            UnknownRoutingKeyError: If nothing is registered for the key
            Exception: Database errors propagate after rollback so the
                message can be redelivered
        """
        try:
            event_model, apply = self._routes[routing_key]
        except KeyError:
            raise UnknownRoutingKeyError(routing_key) from None

        with structlog.contextvars.bound_contextvars(routing_key=routing_key):
            try:
                event = event_model.model_validate_json(body)
            except ValidationError as e:
                metrics.record_event_consumed(routing_key, ConsumeOutcome.MALFORMED.value)
                logger.warning("event_malformed", error_count=e.error_count(), error=str(e))
                return ConsumeOutcome.MALFORMED

            with structlog.contextvars.bound_contextvars(order_id=getattr(event, "order_id", None)):
                return await self._apply(routing_key, apply, event)

    async def _apply(self, routing_key: str, apply: ApplyFn, event: BaseModel) -> ConsumeOutcome:
        start_time = time.time()
        try:
            async with self.session_factory() as db:
                try:
                    matched = await apply(db, event)
                    await db.commit()
                except BaseException:
                    await db.rollback()
                    raise
        except Exception as e:
            metrics.record_event_consumed(routing_key, "error", time.time() - start_time)
            logger.error("event_processing_failed", error=str(e), exc_info=True)
            raise

        outcome = ConsumeOutcome.APPLIED if matched else ConsumeOutcome.STALE
        metrics.record_event_consumed(routing_key, outcome.value, time.time() - start_time)
        if outcome is ConsumeOutcome.APPLIED:
            logger.info("event_applied")
        else:
            logger.info("event_stale")
        return outcome
