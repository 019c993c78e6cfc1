"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- RabbitMQ connectivity
"""
from typing import Any, Dict, Optional

import aio_pika
import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from order_service.config import get_settings
from order_service.database.connection import get_session_factory

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - RabbitMQ connectivity check
    - Overall system health status
    """

    def __init__(
        self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    ) -> None:
        """Initialize health check service."""
        self.settings = get_settings()
        self.session_factory = session_factory

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict[str, Any]: Database health status

        Raises:
            HealthCheckError: If database check fails
        """
        try:
            session_factory = self.session_factory or get_session_factory()
            async with session_factory() as db:
                result = await db.execute(text("SELECT 1"))
                result.scalar()

                return {
                    "status": "healthy",
                    "service": "database",
                    "message": "Database connection successful",
                }

        except Exception as e:
            logger.error("database_health_check_failed", error=str(e))
            raise HealthCheckError(f"Database health check failed: {str(e)}")

    async def check_broker(self) -> Dict[str, Any]:
        """
        Check RabbitMQ connectivity.

        Returns:
            Dict[str, Any]: Broker health status

        Raises:
            HealthCheckError: If broker check fails
        """
        try:
            connection = await aio_pika.connect(self.settings.rabbitmq_url, timeout=5)
            await connection.close()

            return {
                "status": "healthy",
                "service": "rabbitmq",
                "message": "RabbitMQ connection successful",
            }

        except Exception as e:
            logger.error("broker_health_check_failed", error=str(e))
            raise HealthCheckError(f"RabbitMQ health check failed: {str(e)}")

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        for name, check in (
            ("database", self.check_database),
            ("rabbitmq", self.check_broker),
        ):
            try:
                checks[name] = await check()
            except HealthCheckError as e:
                checks[name] = {
                    "status": "unhealthy",
                    "service": name,
                    "error": str(e),
                }
                all_healthy = False

        return {
            "status": "healthy" if all_healthy else "unhealthy",
            "checks": checks,
        }

    async def liveness(self) -> Dict[str, Any]:
        """
        Liveness probe endpoint.

        Does not check external dependencies.
        """
        return {
            "status": "alive",
            "message": "Application is running",
        }

    async def readiness(self) -> Dict[str, Any]:
        """
        Readiness probe endpoint.

        Checks if application is ready to accept traffic.
        """
        return await self.check_all()
