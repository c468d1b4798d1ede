"""
Health check endpoints for Kubernetes readiness/liveness probes.

Checks:
- Database connectivity
- Gateway circuit breaker state (no outbound call)
"""
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from checkout_reconciliation.database.connection import get_session_factory
from checkout_reconciliation.integrations.gateway import PaymentGateway

logger = structlog.get_logger(__name__)


class HealthCheckError(Exception):
    """Raised when health check fails."""

    pass


class HealthCheck:
    """
    Health check service for monitoring system dependencies.

    Provides:
    - Database connectivity check
    - Gateway availability check
    - Overall system health status
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gateway: Optional[PaymentGateway] = None,
    ) -> None:
        """Initialize health check service."""
        self.session_factory = session_factory
        self.gateway = gateway

    async def check_database(self) -> Dict[str, Any]:
        """
        Check database connectivity.

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

    async def check_gateway(self) -> Dict[str, Any]:
        """
        Report the gateway circuit breaker state.

        Raises:
            HealthCheckError: If the circuit is open
        """
        breaker = getattr(self.gateway, "circuit_breaker", None)
        state = breaker.state if breaker is not None else "closed"
        if state == "open":
            logger.warning("gateway_health_check_failed", circuit_state=state)
            raise HealthCheckError("Gateway circuit breaker is open")
        return {
            "status": "healthy",
            "service": "gateway",
            "provider": getattr(self.gateway, "provider", None),
            "circuit_state": state,
        }

    async def check_all(self) -> Dict[str, Any]:
        """
        Run all health checks.

        Returns:
            Dict[str, Any]: Overall health status
        """
        checks = {}
        all_healthy = True

        for name, check in (("database", self.check_database), ("gateway", self.check_gateway)):
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
        """Readiness probe endpoint: all dependencies must be available."""
        return await self.check_all()
